"""
Operation catalog for the IR.

Each op is a separate IRNode subclass. Constructors wire the inputs
(double-linking) and infer the output shape and element type; unknown
shapes propagate as None instead of failing.
"""

from abc import ABC, abstractmethod
from itertools import zip_longest
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from .node import IRNode, Shape


NUMPY_DTYPES = {
    'float64': np.float64,
    'float32': np.float32,
    'float16': np.float16,
    'int64': np.int64,
    'int32': np.int32,
    'int8': np.int8,
    'uint8': np.uint8,
    # 4-bit values are carried unpacked, one per byte
    'int4': np.int8,
    'uint4': np.uint8,
}

NARROW_INTEGER_TYPES = ('uint8', 'int8', 'uint4', 'int4')


def numpy_dtype(dtype: str):
    """Map an IR element type to the numpy dtype used to hold it."""
    if dtype not in NUMPY_DTYPES:
        raise ValueError(f"Unsupported element type: {dtype}")
    return NUMPY_DTYPES[dtype]


def broadcast_shapes(lhs: Shape, rhs: Shape) -> Shape:
    """
    Numpy-style broadcast of two possibly-dynamic shapes.

    Returns None if either rank is unknown.

    Raises:
        ValueError: If two static dimensions are incompatible
    """
    if lhs is None or rhs is None:
        return None

    result = []
    for dl, dr in zip_longest(reversed(lhs), reversed(rhs), fillvalue=1):
        if dl == 1:
            result.append(dr)
        elif dr == 1:
            result.append(dl)
        elif dl is None:
            result.append(dr)
        elif dr is None or dl == dr:
            result.append(dl)
        else:
            raise ValueError(f"Shapes {lhs} and {rhs} cannot be broadcast")
    return tuple(reversed(result))


class ParameterNode(IRNode):
    """Graph input placeholder. Its value is supplied by the executor."""

    def __init__(self, name: str, shape: Shape = None, dtype: str = 'float32'):
        super().__init__(
            name=name,
            op_type='parameter',
            output_shape=tuple(shape) if shape is not None else None,
            dtype=dtype
        )

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return ParameterNode(name or self.name, self.output_shape, self.dtype)


class ConstantNode(IRNode):
    """
    Constant tensor embedded in the graph.

    Data is kept as a numpy array; sub-byte types ('int4', 'uint4') are
    stored one value per byte and declared through ``dtype``.
    """

    def __init__(self, name: str, data: Any, dtype: Optional[str] = None):
        data = np.asarray(data)
        if dtype is None:
            dtype = data.dtype.name
        super().__init__(
            name=name,
            op_type='constant',
            output_shape=tuple(int(d) for d in data.shape),
            dtype=dtype
        )
        self.data = data

    def reshaped(self, new_shape: Sequence[int], name: Optional[str] = None) -> 'ConstantNode':
        """
        New constant holding the same data reinterpreted with ``new_shape``.

        Raises:
            ValueError: If the element counts differ
        """
        new_shape = tuple(int(d) for d in new_shape)
        return ConstantNode(name or self.name, self.data.reshape(new_shape), dtype=self.dtype)

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return ConstantNode(name or self.name, self.data, dtype=self.dtype)

    def evaluate(self, values: List[Any]) -> Any:
        return self.data

    def __repr__(self) -> str:
        return (f"ConstantNode(name='{self.name}', shape={self.output_shape}, "
                f"dtype='{self.dtype}')")


class ConvertNode(IRNode):
    """Elementwise element-type conversion."""

    def __init__(self, name: str, data: IRNode, destination_type: str):
        super().__init__(
            name=name,
            op_type='convert',
            output_shape=data.output_shape,
            dtype=destination_type,
            metadata={'destination_type': destination_type}
        )
        self.add_input(data)

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return ConvertNode(name or self.name, inputs[0], self.dtype)

    def evaluate(self, values: List[Any]) -> Any:
        return np.asarray(values[0]).astype(numpy_dtype(self.dtype))


class _BinaryElementwiseNode(IRNode, ABC):
    """Shared shape/type inference for broadcasting binary ops."""

    OP_TYPE = ''

    def __init__(self, name: str, lhs: IRNode, rhs: IRNode):
        super().__init__(
            name=name,
            op_type=self.OP_TYPE,
            output_shape=broadcast_shapes(lhs.output_shape, rhs.output_shape),
            dtype=lhs.dtype
        )
        self.add_input(lhs)
        self.add_input(rhs)

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return self.__class__(name or self.name, inputs[0], inputs[1])

    @abstractmethod
    def _compute(self, lhs, rhs):
        pass

    def evaluate(self, values: List[Any]) -> Any:
        result = self._compute(np.asarray(values[0]), np.asarray(values[1]))
        return result.astype(numpy_dtype(self.dtype))


class SubtractNode(_BinaryElementwiseNode):
    OP_TYPE = 'subtract'

    def _compute(self, lhs, rhs):
        return np.subtract(lhs, rhs)


class MultiplyNode(_BinaryElementwiseNode):
    OP_TYPE = 'multiply'

    def _compute(self, lhs, rhs):
        return np.multiply(lhs, rhs)


class ReshapeNode(IRNode):
    """
    Reshape with a shape operand.

    The target may contain one -1 (inferred) and, with ``special_zero``,
    zeros meaning "copy the input dimension at this position".
    """

    def __init__(self, name: str, data: IRNode, target_shape: IRNode, special_zero: bool = False):
        super().__init__(
            name=name,
            op_type='reshape',
            dtype=data.dtype,
            metadata={'special_zero': special_zero}
        )
        self.add_input(data)
        self.add_input(target_shape)
        self.output_shape = self._infer_shape()

    @property
    def special_zero(self) -> bool:
        return self.metadata['special_zero']

    def _resolve_target(self, target: List[int], input_shape: Shape) -> List[Optional[int]]:
        dims: List[Optional[int]] = []
        for i, d in enumerate(target):
            if d == 0 and self.special_zero:
                dims.append(input_shape[i] if input_shape is not None else None)
            else:
                dims.append(d)
        return dims

    def _infer_shape(self) -> Shape:
        target_node = self.inputs[1]
        if not isinstance(target_node, ConstantNode):
            return None

        input_shape = self.get_input_shape(0)
        dims = self._resolve_target([int(v) for v in target_node.data.flatten()], input_shape)

        if -1 in dims:
            idx = dims.index(-1)
            others = [d for i, d in enumerate(dims) if i != idx]
            static_input = input_shape is not None and all(d is not None for d in input_shape)
            if static_input and all(d is not None for d in others):
                known = int(np.prod(others)) if others else 1
                total = int(np.prod(input_shape)) if input_shape else 1
                dims[idx] = total // known if known else 0
            else:
                dims[idx] = None
        return tuple(dims)

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return ReshapeNode(name or self.name, inputs[0], inputs[1], self.special_zero)

    def evaluate(self, values: List[Any]) -> Any:
        data = np.asarray(values[0])
        target = self._resolve_target([int(v) for v in np.asarray(values[1]).flatten()], data.shape)
        return np.reshape(data, target)


class TransposeNode(IRNode):
    """Axis permutation. An empty order reverses all axes."""

    def __init__(self, name: str, data: IRNode, order: IRNode):
        super().__init__(
            name=name,
            op_type='transpose',
            dtype=data.dtype
        )
        self.add_input(data)
        self.add_input(order)
        self.output_shape = self._infer_shape()

    @staticmethod
    def _normalize_order(order: List[int], rank: int) -> List[int]:
        if not order:
            return list(reversed(range(rank)))
        return [axis + rank if axis < 0 else axis for axis in order]

    def _infer_shape(self) -> Shape:
        input_shape = self.get_input_shape(0)
        if input_shape is None:
            return None
        order_node = self.inputs[1]
        if not isinstance(order_node, ConstantNode):
            return tuple(None for _ in input_shape)
        order = self._normalize_order([int(v) for v in order_node.data.flatten()], len(input_shape))
        if sorted(order) != list(range(len(input_shape))):
            raise ValueError(
                f"Transpose '{self.name}': order {order} is not a permutation "
                f"of rank {len(input_shape)}"
            )
        return tuple(input_shape[axis] for axis in order)

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return TransposeNode(name or self.name, inputs[0], inputs[1])

    def evaluate(self, values: List[Any]) -> Any:
        data = np.asarray(values[0])
        order = self._normalize_order([int(v) for v in np.asarray(values[1]).flatten()], data.ndim)
        return np.transpose(data, order)


def _fully_connected_shape(data_shape: Shape, weights_shape: Shape) -> Shape:
    """[..., K] x [N, K] -> [..., N]."""
    if data_shape is None or weights_shape is None:
        return None
    if len(weights_shape) < 2:
        raise ValueError(f"Fully connected weights must be at least 2-D, got {weights_shape}")
    return tuple(data_shape[:-1]) + (weights_shape[-2],)


class FullyConnectedNode(IRNode):
    """
    Linear layer: ``data @ weights^T``.

    Weights are laid out [out_features, in_features].
    """

    def __init__(self, name: str, data: IRNode, weights: IRNode, output_type: Optional[str] = None):
        output_type = output_type or data.dtype
        super().__init__(
            name=name,
            op_type='fully_connected',
            output_shape=_fully_connected_shape(data.output_shape, weights.output_shape),
            dtype=output_type,
            metadata={'output_type': output_type}
        )
        self.add_input(data)
        self.add_input(weights)

    @property
    def output_type(self) -> str:
        return self.dtype

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        return FullyConnectedNode(name or self.name, inputs[0], inputs[1], self.output_type)

    def evaluate(self, values: List[Any]) -> Any:
        data = np.asarray(values[0], dtype=np.float32)
        weights = np.asarray(values[1], dtype=np.float32)
        result = np.matmul(data, np.swapaxes(weights, -1, -2))
        return result.astype(numpy_dtype(self.output_type))


def _expand_groups(param: Any, weights_shape: Tuple[int, ...]) -> np.ndarray:
    """Repeat a per-group scale/zero point along the input-feature axis."""
    param = np.asarray(param, dtype=np.float32)
    if param.ndim == len(weights_shape) and param.shape[-1] not in (1, weights_shape[-1]):
        groups = param.shape[-1]
        if weights_shape[-1] % groups:
            raise ValueError(
                f"Cannot split {weights_shape[-1]} input features into {groups} groups"
            )
        param = np.repeat(param, weights_shape[-1] // groups, axis=-1)
    return param


def decompress_weights(weights: Any, scale: Any, zero_point: Any = None) -> np.ndarray:
    """
    Reconstruct float weights: ``(weights - zero_point) * scale``.

    Scale and zero point are either broadcastable to the weights or carry
    one column per group of consecutive input features.
    """
    weights = np.asarray(weights).astype(np.float32)
    if zero_point is not None:
        weights = weights - _expand_groups(zero_point, weights.shape)
    return weights * _expand_groups(scale, weights.shape)


class FullyConnectedCompressedNode(IRNode):
    """
    Linear layer consuming compressed weights directly.

    Inputs: data, weights (narrow integer), scale and an optional zero point.
    """

    def __init__(
        self,
        name: str,
        data: IRNode,
        weights: IRNode,
        scale: IRNode,
        zero_point: Optional[IRNode] = None,
        output_type: Optional[str] = None
    ):
        output_type = output_type or data.dtype
        super().__init__(
            name=name,
            op_type='fully_connected_compressed',
            output_shape=_fully_connected_shape(data.output_shape, weights.output_shape),
            dtype=output_type,
            metadata={'output_type': output_type}
        )
        self.add_input(data)
        self.add_input(weights)
        self.add_input(scale)
        if zero_point is not None:
            self.add_input(zero_point)

    @property
    def output_type(self) -> str:
        return self.dtype

    @property
    def has_zero_point(self) -> bool:
        return len(self.inputs) == 4

    def validate_input_dtypes(self) -> bool:
        """
        Weights must be a narrow integer type.

        Raises:
            TypeError: If the weights input is not compressed
        """
        weights = self.inputs[1]
        if weights.dtype not in NARROW_INTEGER_TYPES:
            raise TypeError(
                f"FullyConnectedCompressedNode '{self.name}' expects compressed weights, "
                f"got '{weights.dtype}' from '{weights.name}'"
            )
        return True

    def clone_with_new_inputs(self, inputs: List[IRNode], name: Optional[str] = None) -> IRNode:
        zero_point = inputs[3] if len(inputs) > 3 else None
        return FullyConnectedCompressedNode(
            name or self.name, inputs[0], inputs[1], inputs[2], zero_point, self.output_type
        )

    def evaluate(self, values: List[Any]) -> Any:
        zero_point = values[3] if len(values) > 3 else None
        weights = decompress_weights(values[1], values[2], zero_point)
        data = np.asarray(values[0], dtype=np.float32)
        result = np.matmul(data, np.swapaxes(weights, -1, -2))
        return result.astype(numpy_dtype(self.output_type))
