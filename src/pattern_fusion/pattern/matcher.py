"""
Matcher - Matches a pattern DAG against IR nodes
"""

from typing import Dict, Iterator, List, Optional

from ..ir.node import IRNode
from .op import Bindings, PatternNode


class MatchContext:
    """
    Result of one successful match.

    Maps pattern nodes (by identity) to the graph nodes they matched.
    Pattern nodes on branches that did not match have no entry.
    """

    def __init__(self, matcher_name: str, root: PatternNode, bindings: Dict[PatternNode, IRNode]):
        self.matcher_name = matcher_name
        self.root_pattern = root
        self._bindings = dict(bindings)

    @property
    def root(self) -> IRNode:
        """The anchor node matched by the root pattern."""
        return self._bindings[self.root_pattern]

    @property
    def pattern_value_map(self) -> Dict[PatternNode, IRNode]:
        return dict(self._bindings)

    @property
    def matched_nodes(self) -> List[IRNode]:
        """Distinct matched graph nodes, in binding order."""
        nodes: List[IRNode] = []
        for node in self._bindings.values():
            if not any(node is seen for seen in nodes):
                nodes.append(node)
        return nodes

    def get(self, pattern: PatternNode, default: Optional[IRNode] = None) -> Optional[IRNode]:
        return self._bindings.get(pattern, default)

    def __contains__(self, pattern: PatternNode) -> bool:
        return pattern in self._bindings

    def __getitem__(self, pattern: PatternNode) -> IRNode:
        return self._bindings[pattern]

    def __iter__(self) -> Iterator[PatternNode]:
        return iter(self._bindings)

    def __len__(self) -> int:
        return len(self._bindings)

    def __repr__(self) -> str:
        return f"MatchContext('{self.matcher_name}', root='{self.root.name}', bindings={len(self)})"


class Matcher:
    """
    Matches a pattern rooted at ``pattern`` against anchor nodes.

    Matching is recursive descent over node inputs; the only backtracking
    happens inside ``Or``, whose alternatives are tried in declaration order.
    The graph is never modified.
    """

    def __init__(self, pattern: PatternNode, name: str):
        """
        Initialize the matcher.

        Args:
            pattern: Root of the pattern DAG
            name: Name used in logs and match contexts
        """
        self.pattern = pattern
        self.name = name

    def match(self, node: IRNode) -> Optional[MatchContext]:
        """
        Match the pattern with ``node`` as anchor.

        Args:
            node: The IRNode to try

        Returns:
            A fresh MatchContext, or None if the pattern does not match
        """
        bindings = self.match_value(self.pattern, node, {})
        if bindings is None:
            return None
        return MatchContext(self.name, self.pattern, bindings)

    def match_value(self, pattern: PatternNode, node: IRNode, bindings: Bindings) -> Optional[Bindings]:
        """
        Match a single pattern node, reusing an earlier binding if one exists.

        A shared pattern node already bound in this attempt only matches the
        same graph node again.
        """
        if pattern in bindings:
            return bindings if bindings[pattern] is node else None
        return pattern.match_value(self, node, bindings)

    def __repr__(self) -> str:
        return f"Matcher('{self.name}', root={self.pattern!r})"
