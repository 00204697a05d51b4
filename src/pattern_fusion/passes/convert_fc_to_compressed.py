"""
Pass to fold weight dequantization into the fully connected layer.

Detects a fully connected layer whose weights are dequantized in the graph:

    weights (u8/i8/u4/i4 const) -> convert -> [subtract zero_point] -> multiply scale
        -> [reshape 3D->2D] -> [transpose] -> fully_connected

and replaces it with a single FullyConnectedCompressedNode reading the
compressed weights, the scale and the optional zero point directly:

    fully_connected_compressed(data, weights, scale[, zero_point])

3-D weights, scales and zero points (grouped quantization) are reshaped
to 2-D. If the original chain transposed the weights, the scale and zero
point are transposed the same way.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..ir.graph import IRGraph
from ..ir.node import IRNode, Shape
from ..ir.ops import (
    ConstantNode,
    ConvertNode,
    SubtractNode,
    MultiplyNode,
    ReshapeNode,
    TransposeNode,
    FullyConnectedNode,
    FullyConnectedCompressedNode,
)
from ..pattern import (
    DEFAULT_COMPRESSED_TYPES,
    Matcher,
    MatchContext,
    Or,
    any_input,
    compressed_constant,
    consumers_count,
    reshape_3d_to_2d,
    wrap_type,
)
from .base import MatcherPass, TransformationCallback, check_invariant


def is_grouped(scale_shape: Shape) -> bool:
    """More than one scale dimension has extent > 1 (per-group quantization)."""
    return sum(1 for d in scale_shape if d is not None and d > 1) > 1


def merged_2d_shape(shape: Sequence[int], has_transpose: bool, grouped: bool) -> Tuple[int, int]:
    """
    2-D shape of a 3-D weights/scale/zero point tensor.

    With a transpose downstream, or per-tensor/per-channel quantization, the
    first two axes are merged: [d0 * d1, d2]. Otherwise (grouped, no
    transpose) the last two: [d0, d1 * d2].
    """
    d0, d1, d2 = shape
    if has_transpose or not grouped:
        return (d0 * d1, d2)
    return (d0, d1 * d2)


def reshape_const_to_2d(node: IRNode, has_transpose: bool, grouped: bool, name: str) -> ConstantNode:
    """
    Express a 2-D or 3-D constant as 2-D; 2-D constants are returned as is.

    Raises:
        PassInvariantError: If ``node`` is not a constant of rank 2 or 3
    """
    check_invariant(isinstance(node, ConstantNode), f"'{node.name}' is not a constant")
    shape = node.output_shape
    if len(shape) == 2:
        return node
    check_invariant(len(shape) == 3, f"Constant '{node.name}' has rank {len(shape)}, expected 2 or 3")

    return node.reshaped(merged_2d_shape(shape, has_transpose, grouped), name=name)


def swapped_last_axes_order(rank: int) -> List[int]:
    """Identity permutation over ``rank`` axes with the last two swapped."""
    order = list(range(rank))
    order[-1], order[-2] = order[-2], order[-1]
    return order


class ConvertFullyConnectedToCompressed(MatcherPass):
    """
    Replaces dequantize -> fully connected chains with FullyConnectedCompressedNode.

    Pattern alternatives are ordered: the multiply with a zero point
    subtraction is tried before the multiply without one, and for the
    weights input a reshape is tried before a transpose before the bare
    multiply.
    """

    MATCHER_NAME = "ConvertFullyConnectedToCompressed"

    def __init__(
        self,
        compressed_types: Sequence[str] = DEFAULT_COMPRESSED_TYPES,
        transformation_callback: Optional[TransformationCallback] = None,
        verbose: bool = False
    ):
        """
        Initialize the pass.

        Args:
            compressed_types: Element types accepted for the compressed weights
            transformation_callback: Opt-out hook; returns True to keep a node unfused
            verbose: If True, print information about rewrites
        """
        super().__init__(verbose=verbose, transformation_callback=transformation_callback)
        self.compressed_types = tuple(compressed_types)
        self._build_pattern()
        self.register_matcher(Matcher(self.fully_connected_m, self.MATCHER_NAME), self._rewrite)

    def _build_pattern(self):
        self.weights_m = wrap_type(ConstantNode, predicate=compressed_constant(self.compressed_types),
                                   name="weights")
        self.convert_m = wrap_type(ConvertNode, [self.weights_m], name="convert")

        self.sub_const_m = wrap_type(ConstantNode, predicate=consumers_count(1), name="zero_point")
        self.subtract_m = wrap_type(SubtractNode, [self.convert_m, self.sub_const_m], name="subtract")

        self.mul_const_m = wrap_type(ConstantNode, predicate=consumers_count(1), name="scale")
        self.mul_with_sub_m = wrap_type(MultiplyNode, [self.subtract_m, self.mul_const_m],
                                        name="multiply_with_zero_point")
        self.mul_no_sub_m = wrap_type(MultiplyNode, [self.convert_m, self.mul_const_m],
                                      name="multiply")
        self.mul_m = Or([self.mul_with_sub_m, self.mul_no_sub_m], name="dequantized_weights")

        self.reshape_const_m = wrap_type(ConstantNode, name="reshape_shape")
        self.reshape_m = wrap_type(ReshapeNode, [self.mul_m, self.reshape_const_m],
                                   predicate=reshape_3d_to_2d, name="reshape")

        self.transpose_input_m = Or([self.reshape_m, self.mul_m], name="transpose_input")
        self.transpose_const_m = wrap_type(ConstantNode, name="transpose_order")
        self.transpose_m = wrap_type(TransposeNode, [self.transpose_input_m, self.transpose_const_m],
                                     name="transpose")

        self.data_m = any_input(name="data")
        self.weights_input_m = Or([self.reshape_m, self.transpose_m, self.mul_m], name="fc_weights")
        self.fully_connected_m = wrap_type(FullyConnectedNode, [self.data_m, self.weights_input_m],
                                           name="fully_connected")

    def _rewrite(self, ir_graph: IRGraph, match: MatchContext) -> bool:
        for pattern in (self.fully_connected_m, self.mul_const_m, self.weights_m, self.convert_m):
            check_invariant(pattern in match, f"{self.MATCHER_NAME}: no binding for {pattern!r}")

        fc = match[self.fully_connected_m]
        if not isinstance(fc, FullyConnectedNode) or self.skip_node(fc):
            return False

        has_transpose = self.transpose_m in match
        with_zero_point = self.subtract_m in match
        grouped = is_grouped(match[self.mul_const_m].output_shape)

        self._log(f"'{fc.name}': transpose={has_transpose}, grouped={grouped}, "
                  f"zero_point={with_zero_point}")

        data = fc.inputs[0]
        scale = reshape_const_to_2d(match[self.mul_const_m], has_transpose, grouped,
                                    name=f"{fc.name}/scale")
        zero_point = None
        if with_zero_point:
            zero_point = reshape_const_to_2d(match[self.sub_const_m], has_transpose, grouped,
                                             name=f"{fc.name}/zero_point")
        weights = reshape_const_to_2d(match[self.weights_m], has_transpose, grouped,
                                      name=f"{fc.name}/weights")

        if has_transpose:
            transpose = match[self.transpose_m]
            order = match[self.transpose_const_m]
            rank = weights.rank
            if order.data.size != rank:
                order = ConstantNode(f"{fc.name}/transpose_order",
                                     np.array(swapped_last_axes_order(rank), dtype=np.int32),
                                     dtype='int32')

            # The weights-derived order is applied to scale and zero point as well
            weights = transpose.clone_with_new_inputs([weights, order], name=f"{fc.name}/weights_transpose")
            scale = transpose.clone_with_new_inputs([scale, order], name=f"{fc.name}/scale_transpose")
            if with_zero_point:
                zero_point = transpose.clone_with_new_inputs([zero_point, order],
                                                             name=f"{fc.name}/zero_point_transpose")

        compressed_fc = FullyConnectedCompressedNode(
            name=fc.name,
            data=data,
            weights=weights,
            scale=scale,
            zero_point=zero_point,
            output_type=fc.output_type
        )

        ir_graph.copy_provenance(match.matched_nodes, compressed_fc)
        ir_graph.replace_node(fc, compressed_fc)
        return True
