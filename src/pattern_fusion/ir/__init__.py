"""Intermediate Representation (IR) module"""

from .node import IRNode
from .graph import IRGraph
from .ops import (
    NARROW_INTEGER_TYPES,
    ParameterNode,
    ConstantNode,
    ConvertNode,
    SubtractNode,
    MultiplyNode,
    ReshapeNode,
    TransposeNode,
    FullyConnectedNode,
    FullyConnectedCompressedNode,
    decompress_weights,
)

__all__ = [
    'IRNode',
    'IRGraph',
    'NARROW_INTEGER_TYPES',
    'ParameterNode',
    'ConstantNode',
    'ConvertNode',
    'SubtractNode',
    'MultiplyNode',
    'ReshapeNode',
    'TransposeNode',
    'FullyConnectedNode',
    'FullyConnectedCompressedNode',
    'decompress_weights',
]
