"""
IRGraph - Container for the intermediate representation
"""

from typing import Iterable, List, Dict, Optional, Tuple

from .node import IRNode


class IRGraph:
    """
    Represents the complete computational graph in IR form.

    Maintains:
    - List of nodes (insertion order, producers before consumers)
    - Input and output nodes
    - Name -> node lookup (names are unique)
    """

    def __init__(self):
        """Initialize an empty IR graph."""
        self.nodes: List[IRNode] = []
        self.inputs: List[IRNode] = []   # Input placeholder nodes
        self.outputs: List[IRNode] = []  # Output nodes
        self._node_map: Dict[str, IRNode] = {}  # name -> node lookup

    def add_node(self, node: IRNode) -> None:
        """
        Add a node to the graph.

        Args:
            node: The IRNode to add
        """
        if node.name in self._node_map:
            raise ValueError(f"Node with name '{node.name}' already exists in graph")

        self.nodes.append(node)
        self._node_map[node.name] = node

    def add_nodes(self, nodes: Iterable[IRNode]) -> None:
        """Add several nodes in order."""
        for node in nodes:
            self.add_node(node)

    def get_node_by_name(self, name: str) -> Optional[IRNode]:
        """
        Retrieve a node by its name.

        Args:
            name: The name of the node to retrieve

        Returns:
            The IRNode if found, None otherwise
        """
        return self._node_map.get(name)

    def contains(self, node: IRNode) -> bool:
        """True if this exact node object is part of the graph."""
        return self._node_map.get(node.name) is node

    def mark_input(self, node: IRNode) -> None:
        """Mark a node as a graph input."""
        if node not in self.inputs:
            self.inputs.append(node)

    def mark_output(self, node: IRNode) -> None:
        """Mark a node as a graph output."""
        if node not in self.outputs:
            self.outputs.append(node)

    def topological_sort(self) -> List[IRNode]:
        """
        Perform topological sort on the graph.

        Returns:
            List of nodes in topologically sorted order

        Raises:
            ValueError: If the graph contains a cycle
        """
        visited = set()
        temp_mark = set()
        sorted_nodes = []

        def visit(node: IRNode):
            if node in temp_mark:
                raise ValueError(f"Graph contains a cycle at node '{node.name}'")
            if node in visited:
                return

            temp_mark.add(node)
            for input_node in node.inputs:
                visit(input_node)
            temp_mark.remove(node)
            visited.add(node)
            sorted_nodes.append(node)

        for node in self.nodes:
            if node not in visited:
                visit(node)

        return sorted_nodes

    def validate(self) -> bool:
        """
        Validate the graph structure.

        Returns:
            True if valid, raises exception otherwise
        """
        # Check for cycles
        try:
            self.topological_sort()
        except ValueError as e:
            raise ValueError(f"Graph validation failed: {e}")

        for node in self.nodes:
            for input_node in node.inputs:
                if not self.contains(input_node):
                    raise ValueError(
                        f"Node '{node.name}' has input '{input_node.name}' "
                        f"which is not in the graph"
                    )
                if input_node.users.count(node) != node.inputs.count(input_node):
                    raise ValueError(
                        f"Edge '{input_node.name}' -> '{node.name}' is not double-linked"
                    )

        return True

    def copy_provenance(self, source_nodes: Iterable[IRNode], target_node: IRNode) -> None:
        """
        Merge the provenance of ``source_nodes`` onto ``target_node``.

        Order follows ``source_nodes``; duplicates are dropped.
        """
        merged: List[str] = []
        for source in source_nodes:
            for origin in source.provenance:
                if origin not in merged:
                    merged.append(origin)
        target_node.metadata['provenance'] = merged

    def _collect_new_nodes(self, new_node: IRNode, old_node: IRNode) -> List[IRNode]:
        """Nodes reachable from ``new_node`` through inputs that are not yet in the graph."""
        collected: List[IRNode] = []
        seen = set()

        def visit(node: IRNode):
            if node in seen or self.contains(node):
                return
            if node is old_node:
                raise ValueError(f"Replacement for '{old_node.name}' depends on the node it replaces")
            seen.add(node)
            for input_node in node.inputs:
                visit(input_node)
            collected.append(node)

        visit(new_node)
        return collected

    def _check_replacement(self, old_node: IRNode, new_node: IRNode) -> List[IRNode]:
        if not self.contains(old_node):
            raise ValueError(f"Node '{old_node.name}' is not in the graph")

        new_nodes = self._collect_new_nodes(new_node, old_node)
        names = [node.name for node in new_nodes]
        for name in names:
            existing = self._node_map.get(name)
            if names.count(name) > 1 or (existing is not None and existing is not old_node):
                raise ValueError(f"Node with name '{name}' already exists in graph")
        return new_nodes

    def _release(self, new_node: IRNode) -> None:
        """Drop the user edges a rejected replacement added to graph nodes."""
        pending, seen = [new_node], set()
        while pending:
            node = pending.pop()
            if node in seen or self.contains(node):
                continue
            seen.add(node)
            for inp in node.inputs:
                if self.contains(inp):
                    while node in inp.users:
                        inp.users.remove(node)
                else:
                    pending.append(inp)

    def replace_node(self, old_node: IRNode, new_node: IRNode) -> None:
        """
        Replace ``old_node`` with ``new_node``, rewiring every consumer.

        Any node feeding ``new_node`` that is not in the graph yet is inserted
        just before it. All checks run before the first mutation, so the graph
        is either fully rewired or left untouched.

        Args:
            old_node: Node currently in the graph
            new_node: Replacement (its inputs already wired)

        Raises:
            ValueError: If the replacement is inconsistent with the graph
        """
        if self.contains(new_node):
            raise ValueError(f"Replacement node '{new_node.name}' is already in the graph")
        try:
            new_nodes = self._check_replacement(old_node, new_node)
        except ValueError:
            self._release(new_node)
            raise

        # Commit
        idx = self.nodes.index(old_node)
        self.nodes[idx:idx + 1] = new_nodes
        del self._node_map[old_node.name]
        for node in new_nodes:
            self._node_map[node.name] = node

        for user in set(old_node.users):
            for i, inp in enumerate(user.inputs):
                if inp is old_node:
                    user.inputs[i] = new_node
        new_node.users.extend(old_node.users)

        for inp in old_node.inputs:
            while old_node in inp.users:
                inp.users.remove(old_node)

        for i, out_node in enumerate(self.outputs):
            if out_node is old_node:
                self.outputs[i] = new_node

        old_node.inputs = []
        old_node.users = []

    def remove_node(self, node: IRNode) -> None:
        """
        Remove a node that has no users.

        Raises:
            ValueError: If the node is still consumed or is a graph output
        """
        if node.users:
            raise ValueError(f"Cannot remove '{node.name}': it still has users")
        if node in self.outputs:
            raise ValueError(f"Cannot remove '{node.name}': it is a graph output")

        for inp in node.inputs:
            while node in inp.users:
                inp.users.remove(node)
        node.inputs = []

        self.nodes.remove(node)
        del self._node_map[node.name]
        if node in self.inputs:
            self.inputs.remove(node)

    def structure(self) -> Tuple:
        """
        Hashable snapshot of nodes, types, shapes and edges.

        Two graphs with equal snapshots are structurally identical.
        """
        return tuple(
            (node.name, node.op_type, node.dtype, node.output_shape,
             tuple(inp.name for inp in node.inputs))
            for node in self.nodes
        )

    def __repr__(self) -> str:
        return (f"IRGraph(nodes={len(self.nodes)}, "
                f"inputs={len(self.inputs)}, "
                f"outputs={len(self.outputs)})")

    def print_graph(self) -> str:
        """
        Generate a human-readable representation of the graph.

        Returns:
            String representation of the graph structure
        """
        lines = ["IRGraph:"]
        lines.append(f"  Inputs: {[n.name for n in self.inputs]}")
        lines.append(f"  Outputs: {[n.name for n in self.outputs]}")
        lines.append("  Nodes:")

        for node in self.nodes:
            inputs_str = ", ".join([inp.name for inp in node.inputs])
            users_str = ", ".join([usr.name for usr in node.users])
            lines.append(f"    {node.name} [{node.op_type}]")
            lines.append(f"      inputs: [{inputs_str}]")
            lines.append(f"      users: [{users_str}]")
            lines.append(f"      shape: {node.output_shape}, dtype: {node.dtype}")

        return "\n".join(lines)
