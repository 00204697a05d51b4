"""Lowering from torch.fx graphs to the IR"""

from .lower import Lowering, lower_fx_graph

__all__ = ['Lowering', 'lower_fx_graph']
