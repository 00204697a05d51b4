"""
Pattern nodes - the building blocks of a pattern DAG

A pattern mirrors the shape of the subgraph to find. Pattern nodes refer to
their inputs by object reference, so one pattern node can be shared by
several parents; matching binds each pattern node to exactly one graph node.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Sequence, Tuple, Type, Union, TYPE_CHECKING

from ..ir.node import IRNode

if TYPE_CHECKING:
    from .matcher import Matcher


Predicate = Callable[[IRNode], bool]
Bindings = Dict['PatternNode', IRNode]


class PatternNode(ABC):
    """
    Base class for pattern nodes.

    Pattern nodes are compared by identity; they are built once and never
    modified afterwards.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name

    @abstractmethod
    def match_value(self, matcher: 'Matcher', node: IRNode, bindings: Bindings) -> Optional[Bindings]:
        """
        Try to match this pattern node against ``node``.

        Args:
            matcher: The matcher driving the recursion
            node: Candidate graph node
            bindings: Bindings accumulated so far (never modified)

        Returns:
            Extended bindings on success, None otherwise
        """
        pass

    def __repr__(self) -> str:
        label = f" '{self.name}'" if self.name else ""
        return f"<{self.__class__.__name__}{label}>"


class AnyInput(PatternNode):
    """Wildcard: matches any node (optionally filtered by a predicate)."""

    def __init__(self, predicate: Optional[Predicate] = None, name: Optional[str] = None):
        super().__init__(name)
        self.predicate = predicate

    def match_value(self, matcher: 'Matcher', node: IRNode, bindings: Bindings) -> Optional[Bindings]:
        if self.predicate is not None and not self.predicate(node):
            return None
        result = dict(bindings)
        result[self] = node
        return result


class WrapType(PatternNode):
    """
    Typed pattern node.

    Matches a node of one of ``op_types`` whose positional inputs match
    ``inputs``. With no inputs declared the node's inputs are not inspected.
    """

    def __init__(
        self,
        op_types: Union[Type[IRNode], Tuple[Type[IRNode], ...]],
        inputs: Optional[Sequence[PatternNode]] = None,
        predicate: Optional[Predicate] = None,
        name: Optional[str] = None
    ):
        super().__init__(name)
        self.op_types = op_types if isinstance(op_types, tuple) else (op_types,)
        self.inputs = list(inputs or [])
        self.predicate = predicate

    def match_value(self, matcher: 'Matcher', node: IRNode, bindings: Bindings) -> Optional[Bindings]:
        if not isinstance(node, self.op_types):
            return None
        if self.predicate is not None and not self.predicate(node):
            return None
        if self.inputs and len(node.inputs) != len(self.inputs):
            return None

        result = bindings
        for input_pattern, input_node in zip(self.inputs, node.inputs):
            result = matcher.match_value(input_pattern, input_node, result)
            if result is None:
                return None

        result = dict(result)
        result[self] = node
        return result

    def __repr__(self) -> str:
        types = "|".join(t.__name__ for t in self.op_types)
        label = f" '{self.name}'" if self.name else ""
        return f"<WrapType[{types}]{label}>"


class Or(PatternNode):
    """
    Alternation: the first alternative that matches wins.

    Only the winning alternative contributes bindings; the alternation
    itself is bound to the node as well.
    """

    def __init__(self, alternatives: Sequence[PatternNode], name: Optional[str] = None):
        super().__init__(name)
        self.alternatives = list(alternatives)

    def match_value(self, matcher: 'Matcher', node: IRNode, bindings: Bindings) -> Optional[Bindings]:
        for alternative in self.alternatives:
            result = matcher.match_value(alternative, node, bindings)
            if result is not None:
                result = dict(result)
                result[self] = node
                return result
        return None


def any_input(predicate: Optional[Predicate] = None, name: Optional[str] = None) -> AnyInput:
    """Create a wildcard pattern node."""
    return AnyInput(predicate, name)


def wrap_type(
    op_types: Union[Type[IRNode], Tuple[Type[IRNode], ...]],
    inputs: Optional[Sequence[PatternNode]] = None,
    predicate: Optional[Predicate] = None,
    name: Optional[str] = None
) -> WrapType:
    """Create a typed pattern node."""
    return WrapType(op_types, inputs, predicate, name)
