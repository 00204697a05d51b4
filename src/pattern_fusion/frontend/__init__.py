"""torch.fx graph capture"""

from .fx_tracer import BufferProxyTracer, FXTracer, trace_model

__all__ = ['BufferProxyTracer', 'FXTracer', 'trace_model']
