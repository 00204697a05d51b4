"""
IRNode - Intermediate Representation Node with double-linking
"""

from typing import List, Dict, Any, Optional, Tuple


Shape = Optional[Tuple[Optional[int], ...]]


class IRNode:
    """
    Represents a single operation in the IR graph.

    Double-linked: maintains both inputs and users for bidirectional traversal.
    Edges are positional and may repeat (``x * x`` lists ``x`` twice), so
    ``users`` holds one entry per consuming input edge.

    Every node has exactly one output. ``output_shape`` is None when the rank
    is unknown; individual dimensions may be None when they are dynamic.
    """

    def __init__(
        self,
        name: str,
        op_type: str,
        output_shape: Shape = None,
        dtype: str = "float32",
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize an IR node.

        Args:
            name: Unique name for this node (friendly name)
            op_type: Type tag of the operation (e.g., 'constant', 'multiply')
            output_shape: Shape of the output tensor (None if rank is unknown)
            dtype: Element type of the output ('float32', 'int8', 'uint4', ...)
            metadata: Additional operation-specific data (provenance, attributes)
        """
        self.name = name
        self.op_type = op_type
        self.output_shape = output_shape
        self.dtype = dtype
        self.metadata = metadata or {}

        # Double-linking: both inputs and users
        self.inputs: List[IRNode] = []  # Nodes that this node depends on
        self.users: List[IRNode] = []   # Nodes that depend on this node

    @property
    def rank(self) -> Optional[int]:
        """Output rank, or None when it is not statically known."""
        if self.output_shape is None:
            return None
        return len(self.output_shape)

    @property
    def has_static_shape(self) -> bool:
        """True if the rank and every dimension are known."""
        return self.output_shape is not None and all(d is not None for d in self.output_shape)

    @property
    def consumers_count(self) -> int:
        """Number of input edges reading this node's output."""
        return len(self.users)

    @property
    def provenance(self) -> List[str]:
        """
        Names of the original nodes this node was derived from.

        Defaults to the node's own name until provenance is copied onto it.
        """
        return list(self.metadata.get('provenance', [self.name]))

    def get_input_shape(self, index: int) -> Shape:
        """Output shape of the producer feeding input ``index``."""
        return self.inputs[index].output_shape

    def add_input(self, input_node: 'IRNode') -> None:
        """
        Append an input edge to this node.
        Automatically updates the input node's users list.

        Args:
            input_node: The node that this node depends on
        """
        self.inputs.append(input_node)
        input_node.users.append(self)

    def remove_input(self, input_node: 'IRNode') -> None:
        """Remove every input edge coming from ``input_node``."""
        while input_node in self.inputs:
            self.inputs.remove(input_node)
            input_node.users.remove(self)

    def replace_input(self, index: int, new_input: 'IRNode') -> None:
        """Rewire input ``index`` to read from ``new_input``."""
        old_input = self.inputs[index]
        old_input.users.remove(self)
        self.inputs[index] = new_input
        new_input.users.append(self)

    def clone_with_new_inputs(self, inputs: List['IRNode'], name: Optional[str] = None) -> 'IRNode':
        """
        Create a node of the same kind and attributes reading ``inputs``.

        Subclasses in the op catalog override this.
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} ('{self.op_type}') cannot be cloned"
        )

    def evaluate(self, values: List[Any]) -> Any:
        """
        Compute this node's output from its input values (numpy arrays).

        Subclasses in the op catalog override this.
        """
        raise NotImplementedError(
            f"{self.__class__.__name__} ('{self.op_type}') has no reference evaluation"
        )

    def validate_input_dtypes(self) -> bool:
        """
        Validate that input dtypes are compatible with this operation.

        Base implementation accepts anything; subclasses override.

        Returns:
            True if valid

        Raises:
            TypeError: If input dtypes are incompatible
        """
        return True

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(name='{self.name}', op_type='{self.op_type}', "
                f"shape={self.output_shape}, dtype='{self.dtype}')")

    def __str__(self) -> str:
        inputs_str = ", ".join([inp.name for inp in self.inputs])
        return f"{self.name} = {self.op_type}({inputs_str})"
