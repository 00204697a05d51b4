"""
Frontend module for PyTorch graph capture using torch.fx
"""

import torch
import torch.fx as fx
from typing import Sequence, Union


ExampleInputs = Union[torch.Tensor, Sequence[torch.Tensor]]


def as_input_tuple(example_input: ExampleInputs) -> tuple:
    """Normalize a single tensor or a sequence of tensors to a tuple."""
    if isinstance(example_input, torch.Tensor):
        return (example_input,)
    return tuple(example_input)


class BufferProxyTracer(fx.Tracer):
    """
    torch.fx tracer that records buffer reads as ``get_attr`` nodes.

    With the stock tracer, arithmetic on buffers runs eagerly during tracing
    and only its result reaches the graph as a tensor constant.
    """

    proxy_buffer_attributes = True


class FXTracer:
    """
    Wrapper around torch.fx for tracing PyTorch models.

    Weight dequantization written in ``forward`` (convert, subtract zero
    point, multiply by scale, reshape, transpose) is captured as individual
    graph nodes, which is what the fusion passes look for.
    """

    SUPPORTED_OPS = {
        'placeholder',    # Input
        'get_attr',       # Parameter/buffer access
        'call_function',  # Functional operations
        'call_method',    # Tensor method calls
        'call_module',    # Module calls
        'output',         # Output
    }

    def trace_model(
        self,
        model: torch.nn.Module,
        example_input: ExampleInputs
    ) -> fx.GraphModule:
        """
        Trace a PyTorch model to extract its computational graph.

        Args:
            model: The PyTorch nn.Module to trace
            example_input: Example input tensor(s) to check the trace with

        Returns:
            fx.GraphModule: The traced graph module

        Raises:
            RuntimeError: If tracing fails or the trace disagrees with the model
        """
        inputs = as_input_tuple(example_input)
        try:
            model.eval()
            tracer = BufferProxyTracer()
            graph = tracer.trace(model)
            traced = fx.GraphModule(tracer.root, graph, model.__class__.__name__)

            with torch.no_grad():
                original_output = model(*inputs)
                traced_output = traced(*inputs)

            if not torch.allclose(original_output, traced_output, rtol=1e-5, atol=1e-5):
                raise RuntimeError(
                    "Traced model output doesn't match original model output. "
                    "The model may contain dynamic control flow that torch.fx cannot trace."
                )

            self.validate_graph(traced)
            return traced

        except Exception as e:
            raise RuntimeError(f"Failed to trace model: {e}") from e

    def print_graph(self, graph_module: fx.GraphModule) -> str:
        """
        Generate a human-readable representation of the FX graph.

        Args:
            graph_module: The traced graph module

        Returns:
            String representation of the graph
        """
        lines = ["FX Graph:"]
        lines.append(str(graph_module.graph))
        lines.append("\nNode Details:")

        for node in graph_module.graph.nodes:
            lines.append(f"\nNode: {node.name}")
            lines.append(f"  Op: {node.op}")
            lines.append(f"  Target: {node.target}")
            lines.append(f"  Args: {node.args}")
            if node.users:
                lines.append(f"  Users: {[u.name for u in node.users]}")

        return "\n".join(lines)

    def validate_graph(self, graph_module: fx.GraphModule) -> bool:
        """
        Check that every FX node kind can be lowered.

        Raises:
            ValueError: If the graph contains unsupported node kinds
        """
        for node in graph_module.graph.nodes:
            if node.op not in self.SUPPORTED_OPS:
                raise ValueError(f"Unsupported operation type: {node.op} in node {node.name}")
        return True


def trace_model(model: torch.nn.Module, example_input: ExampleInputs) -> fx.GraphModule:
    """
    Convenience function to trace a PyTorch model.

    Args:
        model: The PyTorch nn.Module to trace
        example_input: Example input tensor(s)

    Returns:
        The traced FX GraphModule
    """
    tracer = FXTracer()
    return tracer.trace_model(model, example_input)
