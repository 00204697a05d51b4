"""
Compiler passes for IR optimization.

Usage:
    from src.pattern_fusion.passes import (
        ConvertFullyConnectedToCompressed,
        EliminateDeadNodesPass,
    )

    ir_graph = compile_model(model, example_input, passes=[])

    fuse_pass = ConvertFullyConnectedToCompressed()
    optimized_ir = fuse_pass.apply(ir_graph)
    optimized_ir = EliminateDeadNodesPass().apply(optimized_ir)
"""

from .base import IRPass, MatcherPass, PassInvariantError, check_invariant
from .convert_fc_to_compressed import ConvertFullyConnectedToCompressed
from .eliminate_dead_nodes import EliminateDeadNodesPass

__all__ = [
    'IRPass',
    'MatcherPass',
    'PassInvariantError',
    'check_invariant',
    'ConvertFullyConnectedToCompressed',
    'EliminateDeadNodesPass',
]
