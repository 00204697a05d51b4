"""
Reference executor: evaluates an IR graph with numpy.

Each node computes its own output through ``IRNode.evaluate``; the
executor only walks the graph in topological order and feeds inputs.
"""

from typing import Any, Dict, List

import numpy as np

from ..ir.graph import IRGraph
from ..ir.node import IRNode
from ..ir.ops import ParameterNode, numpy_dtype


class GraphExecutor:
    """
    Runs an IRGraph on concrete inputs.

    Intended for checking that a rewrite preserves results, not for speed.
    """

    def __init__(self, ir_graph: IRGraph):
        """
        Initialize the executor.

        Args:
            ir_graph: The graph to evaluate
        """
        self.ir_graph = ir_graph

    def run(self, feeds: Dict[str, Any]) -> List[np.ndarray]:
        """
        Evaluate the graph.

        Args:
            feeds: Graph input name -> value

        Returns:
            Values of the graph outputs, in ``ir_graph.outputs`` order

        Raises:
            ValueError: If a graph input has no value in ``feeds``
        """
        values = self.evaluate_all(feeds)
        return [values[node.name] for node in self.ir_graph.outputs]

    def evaluate_all(self, feeds: Dict[str, Any]) -> Dict[str, np.ndarray]:
        """Evaluate every node; returns node name -> value."""
        values: Dict[IRNode, Any] = {}

        for node in self.ir_graph.topological_sort():
            if isinstance(node, ParameterNode):
                if node.name not in feeds:
                    raise ValueError(f"No value provided for graph input '{node.name}'")
                values[node] = np.asarray(feeds[node.name], dtype=numpy_dtype(node.dtype))
            else:
                values[node] = node.evaluate([values[inp] for inp in node.inputs])

        return {node.name: value for node, value in values.items()}


def run_graph(ir_graph: IRGraph, feeds: Dict[str, Any]) -> List[np.ndarray]:
    """
    Convenience function to evaluate a graph.

    Args:
        ir_graph: The graph to evaluate
        feeds: Graph input name -> value

    Returns:
        Values of the graph outputs
    """
    return GraphExecutor(ir_graph).run(feeds)
