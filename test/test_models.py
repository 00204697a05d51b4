"""
Test model definitions and IR graph builders for the test suite
"""

import os
import sys

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from src.pattern_fusion.ir import (
    IRGraph,
    ParameterNode,
    ConstantNode,
    ConvertNode,
    SubtractNode,
    MultiplyNode,
    ReshapeNode,
    TransposeNode,
    FullyConnectedNode,
)


# ============================================================================
# PyTorch models with weight dequantization written out in forward()
# ============================================================================

class GroupedCompressedLinear(nn.Module):
    """
    Grouped uint8 weights with zero point, reshaped to 2-D before the linear:

        (w.float() - zp) * scale -> reshape(N, K) -> linear
    """

    def __init__(self, in_features=64, out_features=16, group_size=16, seed=0):
        super().__init__()
        generator = torch.Generator().manual_seed(seed)
        groups = in_features // group_size
        self.in_features = in_features
        self.out_features = out_features

        self.register_buffer('weight', torch.randint(
            0, 16, (out_features, groups, group_size), dtype=torch.uint8, generator=generator))
        self.register_buffer('zero_point', torch.randint(
            0, 16, (out_features, groups, 1), dtype=torch.uint8, generator=generator))
        self.register_buffer('scale', torch.rand(
            out_features, groups, 1, generator=generator) * 0.1 + 0.01)

    def forward(self, x):
        w = (self.weight.float() - self.zero_point) * self.scale
        w = w.reshape(self.out_features, self.in_features)
        return F.linear(x, w)


class TransposedCompressedLinear(nn.Module):
    """
    Weights stored [groups, group_size, out_features] and transposed after
    the reshape:

        (w.float() - zp) * scale -> reshape(K, N) -> t() -> linear
    """

    def __init__(self, in_features=32, out_features=8, group_size=8, seed=1):
        super().__init__()
        generator = torch.Generator().manual_seed(seed)
        groups = in_features // group_size
        self.in_features = in_features
        self.out_features = out_features

        self.register_buffer('weight', torch.randint(
            0, 256, (groups, group_size, out_features), dtype=torch.uint8, generator=generator))
        self.register_buffer('zero_point', torch.full(
            (groups, 1, out_features), 128, dtype=torch.uint8))
        self.register_buffer('scale', torch.rand(
            groups, 1, out_features, generator=generator) * 0.01 + 0.001)

    def forward(self, x):
        w = (self.weight.float() - self.zero_point) * self.scale
        w = w.reshape(self.in_features, self.out_features).t()
        return F.linear(x, w)


class PerChannelCompressedLinear(nn.Module):
    """Symmetric int8 weights with one scale per output channel, no zero point."""

    def __init__(self, in_features=24, out_features=12, seed=2):
        super().__init__()
        generator = torch.Generator().manual_seed(seed)
        self.register_buffer('weight', torch.randint(
            -128, 128, (out_features, in_features), dtype=torch.int8, generator=generator))
        self.register_buffer('scale', torch.rand(out_features, 1, generator=generator) * 0.02)

    def forward(self, x):
        return F.linear(x, self.weight.to(torch.float32) * self.scale)


class CompressedMLP(nn.Module):
    """Two compressed layers in sequence."""

    def __init__(self):
        super().__init__()
        self.encoder = GroupedCompressedLinear(in_features=64, out_features=32, group_size=16)
        self.head = PerChannelCompressedLinear(in_features=32, out_features=10)

    def forward(self, x):
        return self.head(self.encoder(x))


class FloatLinear(nn.Module):
    """Plain bias-free linear layer; nothing to fuse."""

    def __init__(self, in_features=16, out_features=4):
        super().__init__()
        self.fc = nn.Linear(in_features, out_features, bias=False)

    def forward(self, x):
        return self.fc(x)


class ScalarZeroPoint(nn.Module):
    """Zero point given as a Python number, so it lowers to a rank-0 constant."""

    def __init__(self):
        super().__init__()
        self.register_buffer('weight', torch.randint(0, 16, (4, 8), dtype=torch.uint8))
        self.register_buffer('scale', torch.full((4, 1), 0.5))

    def forward(self, x):
        return F.linear(x, (self.weight.float() - 8) * self.scale)


class SharedLinearWeight(nn.Module):
    """Calls a linear module and also reads its weight directly."""

    def __init__(self, in_features=8, out_features=4, weight_first=False):
        super().__init__()
        self.fc = nn.Linear(in_features, out_features, bias=False)
        self.weight_first = weight_first

    def forward(self, x):
        if self.weight_first:
            return F.linear(x, self.fc.weight) * self.fc(x)
        return self.fc(x) * F.linear(x, self.fc.weight)


# ============================================================================
# Hand-built IR graphs
# ============================================================================

def build_dequant_fc_graph(
    weights,
    scale,
    zero_point=None,
    weights_dtype='uint8',
    reshape_to=None,
    transpose_order=None,
    batch=2,
    fc_name='fc'
):
    """
    Build ``x -> fc(x, dequantize(weights))`` where dequantize is

        convert -> [subtract zero_point] -> multiply scale -> [reshape] -> [transpose]

    Node names: x, weights, convert, zero_point, subtract, scale, multiply,
    reshape_shape, reshape, transpose_order, transpose and ``fc_name``.
    """
    ir_graph = IRGraph()

    w = ConstantNode('weights', np.asarray(weights), weights_dtype)
    dequantized = ConvertNode('convert', w, 'float32')
    nodes = [w, dequantized]

    if zero_point is not None:
        zp = ConstantNode('zero_point', np.asarray(zero_point), weights_dtype)
        dequantized = SubtractNode('subtract', dequantized, zp)
        nodes += [zp, dequantized]

    sc = ConstantNode('scale', np.asarray(scale, dtype=np.float32))
    dequantized = MultiplyNode('multiply', dequantized, sc)
    nodes += [sc, dequantized]

    if reshape_to is not None:
        target = ConstantNode('reshape_shape', np.array(reshape_to, dtype=np.int64))
        dequantized = ReshapeNode('reshape', dequantized, target)
        nodes += [target, dequantized]

    if transpose_order is not None:
        order = ConstantNode('transpose_order', np.array(transpose_order, dtype=np.int64))
        dequantized = TransposeNode('transpose', dequantized, order)
        nodes += [order, dequantized]

    x = ParameterNode('x', (batch, dequantized.output_shape[-1]))
    fc = FullyConnectedNode(fc_name, x, dequantized)

    ir_graph.add_nodes([x] + nodes + [fc])
    ir_graph.mark_input(x)
    ir_graph.mark_output(fc)
    return ir_graph


def grouped_weights(out_features=8, groups=4, group_size=4, seed=0):
    """uint8 weights [N, G, gs], scale [N, G, 1] and zero point [N, G, 1]."""
    rng = np.random.default_rng(seed)
    weights = rng.integers(0, 16, size=(out_features, groups, group_size), dtype=np.uint8)
    scale = rng.uniform(0.01, 0.1, size=(out_features, groups, 1)).astype(np.float32)
    zero_point = rng.integers(0, 16, size=(out_features, groups, 1), dtype=np.uint8)
    return weights, scale, zero_point


def transposed_grouped_weights(out_features=8, groups=4, group_size=4, seed=0):
    """uint8 weights [G, gs, N], scale [G, 1, N] and zero point [G, 1, N]."""
    rng = np.random.default_rng(seed)
    weights = rng.integers(0, 16, size=(groups, group_size, out_features), dtype=np.uint8)
    scale = rng.uniform(0.01, 0.1, size=(groups, 1, out_features)).astype(np.float32)
    zero_point = rng.integers(0, 16, size=(groups, 1, out_features), dtype=np.uint8)
    return weights, scale, zero_point


def per_channel_weights(out_features=6, in_features=10, seed=0):
    """int8 weights [N, K] and scale [N, 1]."""
    rng = np.random.default_rng(seed)
    weights = rng.integers(-128, 128, size=(out_features, in_features), dtype=np.int8)
    scale = rng.uniform(0.001, 0.02, size=(out_features, 1)).astype(np.float32)
    return weights, scale
