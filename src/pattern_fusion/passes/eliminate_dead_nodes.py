"""
Pass to remove nodes whose output nobody reads.

After ConvertFullyConnectedToCompressed rewires a layer, the old
dequantization chain stays in the graph with no consumers:

    weights -> convert -> subtract -> multiply -> transpose   (no users)

This pass deletes such nodes. Removing a node can leave its producers
without users, so removal repeats until nothing changes. Graph inputs and
outputs are always kept.
"""

from typing import List

from .base import IRPass
from ..ir.graph import IRGraph
from ..ir.node import IRNode


class EliminateDeadNodesPass(IRPass):
    """Removes nodes with no users that are neither graph inputs nor outputs."""

    def apply(self, ir_graph: IRGraph) -> IRGraph:
        """
        Apply dead node elimination.

        Args:
            ir_graph: The IR graph to optimize

        Returns:
            The optimized IR graph
        """
        self.stats = {
            'nodes_removed': 0,
            'removed_nodes': []
        }

        dead = self._find_dead_nodes(ir_graph)
        while dead:
            for node in dead:
                ir_graph.remove_node(node)
                self.stats['nodes_removed'] += 1
                self.stats['removed_nodes'].append(node.name)
                self._log(f"Removed: {node.name} [{node.op_type}]")
            dead = self._find_dead_nodes(ir_graph)

        if self.stats['nodes_removed'] > 0:
            self._log(f"Total: Removed {self.stats['nodes_removed']} nodes")

        return ir_graph

    def _find_dead_nodes(self, ir_graph: IRGraph) -> List[IRNode]:
        return [
            node for node in ir_graph.nodes
            if not node.users
            and node not in ir_graph.outputs
            and node not in ir_graph.inputs
        ]
