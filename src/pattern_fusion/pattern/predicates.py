"""
Predicates attached to pattern nodes.

A predicate takes the candidate node and returns a bool. Shape-based
predicates return False when the shape is not statically known.
"""

from typing import Sequence

from ..ir.node import IRNode
from ..ir.ops import NARROW_INTEGER_TYPES
from .op import Predicate


DEFAULT_COMPRESSED_TYPES = NARROW_INTEGER_TYPES


def _named(predicate: Predicate, name: str) -> Predicate:
    predicate.__name__ = name
    predicate.__qualname__ = name
    return predicate


def consumers_count(count: int) -> Predicate:
    """Output is read by exactly ``count`` input edges."""
    return _named(lambda node: node.consumers_count == count, f"consumers_count({count})")


def type_matches(*dtypes: str) -> Predicate:
    """Output element type is one of ``dtypes``."""
    return _named(lambda node: node.dtype in dtypes, f"type_matches{dtypes}")


def has_static_rank(node: IRNode) -> bool:
    return node.rank is not None


def rank_equals(rank: int) -> Predicate:
    """Output rank is known and equal to ``rank``."""
    return _named(lambda node: node.rank == rank, f"rank_equals({rank})")


def all_of(*predicates: Predicate) -> Predicate:
    """Conjunction, evaluated left to right with short-circuit."""
    name = " & ".join(getattr(p, '__name__', repr(p)) for p in predicates)
    return _named(lambda node: all(p(node) for p in predicates), name)


def compressed_constant(types: Sequence[str] = DEFAULT_COMPRESSED_TYPES) -> Predicate:
    """
    Narrow-integer constant with a single consumer.

    Fusing a weight that is read elsewhere would leave the dequantized copy
    alive, so exactly one consumer is required.
    """
    types = tuple(types)
    return all_of(type_matches(*types), consumers_count(1))


def reshape_3d_to_2d(node: IRNode) -> bool:
    """Node takes a rank-3 input and produces a rank-2 output."""
    if not node.inputs:
        return False
    input_shape = node.get_input_shape(0)
    output_shape = node.output_shape
    if input_shape is None or output_shape is None:
        return False
    return len(input_shape) == 3 and len(output_shape) == 2
