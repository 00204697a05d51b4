"""
Lowering pass: Convert torch.fx graph to custom IR
"""

import operator
from typing import Any, Dict, List, Optional, Sequence, Set

import numpy as np
import torch
import torch.fx as fx
import torch.nn.functional as F

from ..frontend.fx_tracer import ExampleInputs, as_input_tuple
from ..ir.graph import IRGraph
from ..ir.node import IRNode
from ..ir.ops import (
    ParameterNode,
    ConstantNode,
    ConvertNode,
    SubtractNode,
    MultiplyNode,
    ReshapeNode,
    TransposeNode,
    FullyConnectedNode,
    numpy_dtype,
)


TORCH_DTYPES = {
    torch.float64: 'float64',
    torch.float32: 'float32',
    torch.float16: 'float16',
    torch.int64: 'int64',
    torch.int32: 'int32',
    torch.int8: 'int8',
    torch.uint8: 'uint8',
}

FUNCTION_OPS = {
    operator.sub: 'sub',
    torch.sub: 'sub',
    operator.mul: 'mul',
    torch.mul: 'mul',
    F.linear: 'linear',
    torch.reshape: 'reshape',
    torch.transpose: 'transpose',
    torch.permute: 'permute',
    torch.t: 't',
}

METHOD_OPS = {
    'sub': 'sub',
    'mul': 'mul',
    'reshape': 'reshape',
    'view': 'reshape',
    'transpose': 'transpose',
    'permute': 'permute',
    't': 't',
    'to': 'to',
    'float': 'float',
    'half': 'half',
}


def ir_dtype(dtype: torch.dtype) -> str:
    """Map a torch dtype to an IR element type."""
    if dtype not in TORCH_DTYPES:
        raise ValueError(f"Unsupported torch dtype: {dtype}")
    return TORCH_DTYPES[dtype]


def _fetch_attr(module: torch.nn.Module, target: str) -> torch.Tensor:
    """Resolve a dotted get_attr target (parameters and buffers)."""
    obj: Any = module
    for atom in target.split('.'):
        if not hasattr(obj, atom):
            raise ValueError(f"Attribute '{target}' not found on the traced module")
        obj = getattr(obj, atom)
    return obj


class Lowering:
    """
    Converts a torch.fx GraphModule to our custom IR.

    Key responsibilities:
    - Map FX nodes to IR op nodes (one FX node -> one IR node)
    - Turn parameters, buffers and scalar operands into constants
    - Build double-linking between nodes
    - Preserve FX node names so lowered layers are recognisable
    """

    def __init__(self):
        """Initialize the lowering pass."""
        self.ir_graph = IRGraph()
        self.node_map: Dict[fx.Node, IRNode] = {}  # FX node -> IR node
        self.attr_constants: Dict[str, IRNode] = {}  # qualified attribute -> constant
        self._reserved_names: Set[str] = set()
        self._example_inputs: tuple = ()

    def lower_fx_graph(
        self,
        fx_graph_module: fx.GraphModule,
        example_input: Optional[ExampleInputs] = None
    ) -> IRGraph:
        """
        Convert an FX graph to IR graph.

        Args:
            fx_graph_module: The traced FX GraphModule
            example_input: Example input(s); give graph inputs a static shape

        Returns:
            IRGraph: The lowered IR graph
        """
        self._example_inputs = as_input_tuple(example_input) if example_input is not None else ()
        # FX names are kept as they are; synthesized constants must not take them
        self._reserved_names = {fx_node.name for fx_node in fx_graph_module.graph.nodes}

        # torch.fx guarantees topological order, so we can iterate directly
        for fx_node in fx_graph_module.graph.nodes:
            self._lower_node(fx_node, fx_graph_module)

        self.ir_graph.validate()

        return self.ir_graph

    def _lower_node(self, fx_node: fx.Node, fx_graph_module: fx.GraphModule) -> None:
        if fx_node.op == 'placeholder':
            self._lower_placeholder(fx_node)

        elif fx_node.op == 'get_attr':
            self._lower_get_attr(fx_node, fx_graph_module)

        elif fx_node.op == 'call_module':
            self._lower_call_module(fx_node, fx_graph_module)

        elif fx_node.op == 'call_function':
            kind = FUNCTION_OPS.get(fx_node.target)
            if kind is None:
                raise ValueError(f"Unsupported function '{fx_node.target}' in node {fx_node.name}")
            self._emit(kind, fx_node, list(fx_node.args), dict(fx_node.kwargs))

        elif fx_node.op == 'call_method':
            kind = METHOD_OPS.get(fx_node.target)
            if kind is None:
                raise ValueError(f"Unsupported method '{fx_node.target}' in node {fx_node.name}")
            self._emit(kind, fx_node, list(fx_node.args), dict(fx_node.kwargs))

        elif fx_node.op == 'output':
            self._lower_output(fx_node)

        else:
            raise ValueError(f"Unsupported FX node operation: {fx_node.op}")

    def _add(self, ir_node: IRNode, fx_node: Optional[fx.Node] = None) -> IRNode:
        self.ir_graph.add_node(ir_node)
        if fx_node is not None:
            self.node_map[fx_node] = ir_node
        return ir_node

    def _unique_name(self, base: str) -> str:
        """``base``, suffixed if it is taken by an IR node or a pending FX node."""
        name, index = base, 1
        while name in self._reserved_names or self.ir_graph.get_node_by_name(name) is not None:
            name = f"{base}_{index}"
            index += 1
        return name

    def _add_constant(self, base_name: str, data: np.ndarray, dtype: str) -> IRNode:
        """Add a constant synthesized by the lowering (no FX counterpart)."""
        return self._add(ConstantNode(self._unique_name(base_name), data, dtype))

    def _attr_constant(self, target: str, tensor: torch.Tensor, name: str) -> IRNode:
        """Constant for a module parameter or buffer, shared by every read of it."""
        if target not in self.attr_constants:
            data = tensor.detach().cpu().numpy()
            self.attr_constants[target] = self._add(ConstantNode(name, data, ir_dtype(tensor.dtype)))
        return self.attr_constants[target]

    def _lower_placeholder(self, fx_node: fx.Node) -> None:
        """Lower a placeholder (input) node."""
        position = len(self.ir_graph.inputs)
        shape, dtype = None, 'float32'
        if position < len(self._example_inputs):
            example = self._example_inputs[position]
            shape, dtype = tuple(example.shape), ir_dtype(example.dtype)

        ir_node = self._add(ParameterNode(fx_node.name, shape, dtype), fx_node)
        self.ir_graph.mark_input(ir_node)

    def _lower_get_attr(self, fx_node: fx.Node, fx_graph_module: fx.GraphModule) -> None:
        """Lower a get_attr node (parameter or buffer access) to a constant."""
        tensor = _fetch_attr(fx_graph_module, fx_node.target)
        self.node_map[fx_node] = self._attr_constant(fx_node.target, tensor, fx_node.name)

    def _lower_call_module(self, fx_node: fx.Node, fx_graph_module: fx.GraphModule) -> None:
        """Lower a call_module node. Only bias-free nn.Linear is supported."""
        module = fx_graph_module.get_submodule(fx_node.target)

        if not isinstance(module, torch.nn.Linear):
            raise ValueError(f"Unsupported module type: {type(module).__name__}")
        if module.bias is not None:
            raise ValueError(f"Linear module '{fx_node.target}' has a bias, which is not supported")

        weight_node = self._attr_constant(
            f"{fx_node.target}.weight",
            module.weight,
            self._unique_name(f"{fx_node.name}_weight")
        )
        data = self._node(fx_node.args[0])
        self._add(FullyConnectedNode(fx_node.name, data, weight_node), fx_node)

    def _emit(self, kind: str, fx_node: fx.Node, args: List[Any], kwargs: Dict[str, Any]) -> None:
        """Lower a function or method call; ``args[0]`` is the main tensor."""
        name = fx_node.name

        if kind in ('sub', 'mul'):
            if kwargs.get('alpha', 1) != 1:
                raise ValueError(f"'{name}': sub with alpha is not supported")
            lhs, rhs = self._binary_operands(name, args[0], args[1])
            node_cls = SubtractNode if kind == 'sub' else MultiplyNode
            self._add(node_cls(name, lhs, rhs), fx_node)
            return

        data = self._node(args[0])

        if kind == 'linear':
            weight = args[1] if len(args) > 1 else kwargs['weight']
            bias = args[2] if len(args) > 2 else kwargs.get('bias')
            if bias is not None:
                raise ValueError(f"'{name}': linear with bias is not supported")
            self._add(FullyConnectedNode(name, data, self._node(weight)), fx_node)

        elif kind == 'reshape':
            dims = self._int_list(name, args[1:] or [kwargs.get('shape')])
            shape = self._add_constant(f"{name}_shape", np.array(dims, dtype=np.int64), 'int64')
            self._add(ReshapeNode(name, data, shape), fx_node)

        elif kind in ('transpose', 'permute', 't'):
            order = self._transpose_order(kind, name, data, args[1:])
            order_node = self._add_constant(f"{name}_order", np.array(order, dtype=np.int64), 'int64')
            self._add(TransposeNode(name, data, order_node), fx_node)

        elif kind in ('to', 'float', 'half'):
            if kind == 'float':
                destination = 'float32'
            elif kind == 'half':
                destination = 'float16'
            else:
                destination = self._conversion_type(name, args[1:], kwargs)
            self._add(ConvertNode(name, data, destination), fx_node)

        else:
            raise ValueError(f"Unsupported operation '{kind}' in node {name}")

    def _node(self, arg: Any) -> IRNode:
        if not isinstance(arg, fx.Node) or arg not in self.node_map:
            raise ValueError(f"Expected a lowered tensor operand, got {arg!r}")
        return self.node_map[arg]

    def _binary_operands(self, name: str, lhs: Any, rhs: Any):
        """Resolve operands; Python scalars become constants of the tensor operand's type."""
        if isinstance(lhs, fx.Node):
            like = self._node(lhs)
        elif isinstance(rhs, fx.Node):
            like = self._node(rhs)
        else:
            raise ValueError(f"'{name}': at least one operand must be a tensor")

        def operand(arg: Any, suffix: str) -> IRNode:
            if isinstance(arg, fx.Node):
                return self._node(arg)
            data = np.array(arg, dtype=numpy_dtype(like.dtype))
            return self._add_constant(f"{name}_{suffix}", data, like.dtype)

        return operand(lhs, 'lhs'), operand(rhs, 'rhs')

    @staticmethod
    def _int_list(name: str, items: Sequence[Any]) -> List[int]:
        if len(items) == 1 and isinstance(items[0], (list, tuple, torch.Size)):
            items = items[0]
        dims = []
        for item in items:
            if isinstance(item, fx.Node):
                raise ValueError(f"'{name}': shapes computed at runtime are not supported")
            dims.append(int(item))
        return dims

    def _transpose_order(self, kind: str, name: str, data: IRNode, args: Sequence[Any]) -> List[int]:
        if kind == 'permute':
            return self._int_list(name, args)

        rank = data.rank
        if rank is None:
            raise ValueError(f"'{name}': transpose of a tensor with unknown rank")
        order = list(range(rank))
        if kind == 't':
            return list(reversed(order)) if rank == 2 else order

        dim0, dim1 = (int(d) % rank for d in args[:2])
        order[dim0], order[dim1] = order[dim1], order[dim0]
        return order

    @staticmethod
    def _conversion_type(name: str, args: Sequence[Any], kwargs: Dict[str, Any]) -> str:
        candidates = list(args) + [kwargs.get('dtype')]
        for candidate in candidates:
            if isinstance(candidate, torch.dtype):
                return ir_dtype(candidate)
        raise ValueError(f"'{name}': only dtype conversions are supported by Tensor.to")

    def _lower_output(self, fx_node: fx.Node) -> None:
        """Mark output nodes in the IR graph."""
        for arg in fx_node.args:
            items = arg if isinstance(arg, (list, tuple)) else [arg]
            for item in items:
                if isinstance(item, fx.Node) and item in self.node_map:
                    self.ir_graph.mark_output(self.node_map[item])


def lower_fx_graph(
    fx_graph_module: fx.GraphModule,
    example_input: Optional[ExampleInputs] = None
) -> IRGraph:
    """
    Convenience function to lower an FX graph to IR.

    Args:
        fx_graph_module: The traced FX GraphModule
        example_input: Example input(s) for graph input shapes (optional)

    Returns:
        The lowered IR graph
    """
    lowering = Lowering()
    return lowering.lower_fx_graph(fx_graph_module, example_input)
