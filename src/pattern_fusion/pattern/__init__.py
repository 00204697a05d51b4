"""Pattern language: pattern nodes, predicates and the structural matcher"""

from .op import PatternNode, AnyInput, WrapType, Or, any_input, wrap_type
from .predicates import (
    DEFAULT_COMPRESSED_TYPES,
    consumers_count,
    type_matches,
    has_static_rank,
    rank_equals,
    all_of,
    compressed_constant,
    reshape_3d_to_2d,
)
from .matcher import Matcher, MatchContext

__all__ = [
    'PatternNode',
    'AnyInput',
    'WrapType',
    'Or',
    'any_input',
    'wrap_type',
    'DEFAULT_COMPRESSED_TYPES',
    'consumers_count',
    'type_matches',
    'has_static_rank',
    'rank_equals',
    'all_of',
    'compressed_constant',
    'reshape_3d_to_2d',
    'Matcher',
    'MatchContext',
]
