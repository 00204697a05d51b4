"""
Base classes for IR optimization passes.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Any, List, Optional, Tuple

from ..ir.graph import IRGraph
from ..ir.node import IRNode
from ..pattern.matcher import Matcher, MatchContext


MatcherCallback = Callable[[IRGraph, MatchContext], bool]
TransformationCallback = Callable[[IRNode], bool]


class PassInvariantError(RuntimeError):
    """A successful match broke an assumption the rewrite relies on."""


def check_invariant(condition: bool, message: str) -> None:
    """Raise PassInvariantError if ``condition`` is false."""
    if not condition:
        raise PassInvariantError(message)


class IRPass(ABC):
    """
    Abstract base class for IR optimization passes.

    All passes should inherit from this class and implement the apply() method.
    """

    def __init__(self, verbose: bool = False):
        """
        Initialize the pass.

        Args:
            verbose: If True, print information about optimizations applied
        """
        self.verbose = verbose
        self.stats: Dict[str, Any] = {}

    @abstractmethod
    def apply(self, ir_graph: IRGraph) -> IRGraph:
        """
        Apply the optimization pass to the IR graph.

        Args:
            ir_graph: The IR graph to optimize

        Returns:
            The optimized IR graph (modified in-place)
        """
        pass

    def get_stats(self) -> Dict[str, Any]:
        """
        Get statistics about the last pass application.

        Returns:
            Dictionary with pass statistics
        """
        return self.stats

    def _log(self, message: str):
        """Print message if verbose mode is enabled."""
        if self.verbose:
            print(f"[{self.__class__.__name__}] {message}")


class MatcherPass(IRPass):
    """
    Pass driven by registered (matcher, callback) pairs.

    Every node of the graph is tried as an anchor, in topological order.
    When a matcher succeeds its callback gets the graph and the match
    context and returns True if it rewrote the graph. The first callback
    that rewrites a node ends the attempts for that node.

    ``transformation_callback`` is the host's opt-out hook: given a node a
    rule is about to rewrite, returning True skips the rewrite.
    """

    def __init__(
        self,
        verbose: bool = False,
        transformation_callback: Optional[TransformationCallback] = None
    ):
        super().__init__(verbose)
        self.transformation_callback = transformation_callback
        self._matchers: List[Tuple[Matcher, MatcherCallback]] = []
        self._reset_stats()

    def register_matcher(self, matcher: Matcher, callback: MatcherCallback) -> None:
        """
        Register a matcher and the rewrite to run on each of its matches.

        Args:
            matcher: Matcher built around the pattern root
            callback: Rewrite; returns True if the graph was modified
        """
        self._matchers.append((matcher, callback))

    def skip_node(self, node: IRNode) -> bool:
        """Ask the transformation callback whether ``node`` must be left alone."""
        if self.transformation_callback is None:
            return False
        return bool(self.transformation_callback(node))

    def _reset_stats(self):
        self.stats = {
            'candidates': 0,
            'matched': 0,
            'rewritten': 0,
            'declined': 0,
            'rewritten_nodes': []
        }

    def apply_to_node(self, ir_graph: IRGraph, node: IRNode) -> bool:
        """
        Try every registered matcher with ``node`` as anchor.

        Args:
            ir_graph: The graph containing ``node``
            node: Anchor node

        Returns:
            True if a callback rewrote the graph
        """
        self.stats['candidates'] += 1

        for matcher, callback in self._matchers:
            match = matcher.match(node)
            if match is None:
                continue

            self.stats['matched'] += 1
            if callback(ir_graph, match):
                self.stats['rewritten'] += 1
                self.stats['rewritten_nodes'].append(node.name)
                self._log(f"{matcher.name}: rewrote '{node.name}'")
                return True

            self.stats['declined'] += 1
            self._log(f"{matcher.name}: declined '{node.name}'")

        return False

    def apply(self, ir_graph: IRGraph) -> IRGraph:
        """
        Run the registered matchers over every node of the graph.

        Args:
            ir_graph: The IR graph to optimize

        Returns:
            The optimized IR graph
        """
        self._reset_stats()

        for node in ir_graph.topological_sort():
            # Skip nodes replaced earlier in this sweep
            if not ir_graph.contains(node):
                continue
            self.apply_to_node(ir_graph, node)

        if self.stats['rewritten'] > 0:
            self._log(f"Total: rewrote {self.stats['rewritten']} of "
                      f"{self.stats['matched']} matched nodes")

        return ir_graph
