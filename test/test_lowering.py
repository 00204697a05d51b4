"""
Tests for the frontend and the lowering pass (FX graph to IR graph conversion)
"""

import os
import sys

import numpy as np
import pytest
import torch
import torch.nn as nn
import torch.nn.functional as F

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from src.pattern_fusion.frontend.fx_tracer import FXTracer, trace_model
from src.pattern_fusion.lowering.lower import Lowering, lower_fx_graph
from src.pattern_fusion.runtime import run_graph
from src.pattern_fusion.ir import (
    ConstantNode,
    ConvertNode,
    FullyConnectedNode,
    ParameterNode,
    SubtractNode,
    TransposeNode,
)
from test_models import (
    CompressedMLP,
    FloatLinear,
    GroupedCompressedLinear,
    PerChannelCompressedLinear,
    ScalarZeroPoint,
    SharedLinearWeight,
    TransposedCompressedLinear,
)


class WithRelu(nn.Module):
    def forward(self, x):
        return torch.relu(x)


class LinearWithBias(nn.Module):
    def __init__(self):
        super().__init__()
        self.fc = nn.Linear(8, 4)

    def forward(self, x):
        return self.fc(x)


class ShapeNamedBuffer(nn.Module):
    """Buffer whose FX name is what a synthesized reshape constant would be called."""

    def __init__(self):
        super().__init__()
        self.register_buffer('reshape_shape', torch.full((2, 4), 2.0))

    def forward(self, x):
        return x.reshape(2, 4) * self.reshape_shape


class TestFrontend:
    """Test graph capture with torch.fx."""

    def test_trace_captures_dequantization(self):
        """Each dequantization step is its own FX node."""
        fx_graph = trace_model(GroupedCompressedLinear(), torch.randn(2, 64))
        targets = [str(node.target) for node in fx_graph.graph.nodes]

        assert 'float' in targets
        assert 'reshape' in targets
        assert any('linear' in target for target in targets)

    def test_print_graph(self):
        tracer = FXTracer()
        fx_graph = tracer.trace_model(FloatLinear(), torch.randn(1, 16))
        text = tracer.print_graph(fx_graph)
        assert text.startswith("FX Graph:")
        assert "Node: fc" in text


class TestLowering:
    """Test the lowering pass."""

    def test_lower_grouped_model(self):
        """Dequantization chain is lowered one node per step."""
        model = GroupedCompressedLinear()
        example_input = torch.randn(3, 64)

        fx_graph = trace_model(model, example_input)
        ir_graph = Lowering().lower_fx_graph(fx_graph, example_input)

        op_types = [node.op_type for node in ir_graph.nodes]
        for op_type in ('parameter', 'constant', 'convert', 'subtract', 'multiply',
                        'reshape', 'fully_connected'):
            assert op_type in op_types

        x = ir_graph.inputs[0]
        assert isinstance(x, ParameterNode)
        assert x.output_shape == (3, 64)
        assert ir_graph.outputs[0].output_shape == (3, 16)

    def test_buffers_become_constants(self):
        """get_attr nodes keep their FX names and tensor dtypes."""
        fx_graph = trace_model(GroupedCompressedLinear(), torch.randn(1, 64))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(1, 64))

        weight = ir_graph.get_node_by_name('weight')
        zero_point = ir_graph.get_node_by_name('zero_point')
        scale = ir_graph.get_node_by_name('scale')

        assert isinstance(weight, ConstantNode) and weight.dtype == 'uint8'
        assert weight.output_shape == (16, 4, 16)
        assert zero_point.dtype == 'uint8'
        assert scale.dtype == 'float32'

    def test_double_linking(self):
        """Test that nodes are properly double-linked."""
        fx_graph = trace_model(CompressedMLP(), torch.randn(1, 64))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(1, 64))

        for node in ir_graph.nodes:
            for input_node in node.inputs:
                assert node in input_node.users, \
                    f"Node {node.name} is not in users of input {input_node.name}"
            for user_node in node.users:
                assert node in user_node.inputs, \
                    f"Node {node.name} is not in inputs of user {user_node.name}"

    def test_nested_buffer_names(self):
        fx_graph = trace_model(CompressedMLP(), torch.randn(1, 64))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(1, 64))

        assert isinstance(ir_graph.get_node_by_name('encoder_weight'), ConstantNode)
        assert isinstance(ir_graph.get_node_by_name('head_weight'), ConstantNode)

    def test_transpose_order(self):
        """``t()`` becomes a transpose with an explicit [1, 0] order."""
        fx_graph = trace_model(TransposedCompressedLinear(), torch.randn(2, 32))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(2, 32))

        transposes = [n for n in ir_graph.nodes if isinstance(n, TransposeNode)]
        assert len(transposes) == 1
        order = transposes[0].inputs[1]
        assert list(order.data) == [1, 0]
        assert transposes[0].output_shape == (8, 32)

    def test_to_dtype_becomes_convert(self):
        fx_graph = trace_model(PerChannelCompressedLinear(), torch.randn(2, 24))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(2, 24))

        converts = [n for n in ir_graph.nodes if isinstance(n, ConvertNode)]
        assert len(converts) == 1
        assert converts[0].dtype == 'float32'
        assert converts[0].inputs[0].dtype == 'int8'

    def test_linear_module(self):
        """Bias-free nn.Linear becomes a weight constant and a fully connected node."""
        model = FloatLinear()
        fx_graph = trace_model(model, torch.randn(1, 16))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(1, 16))

        fc = ir_graph.get_node_by_name('fc')
        assert isinstance(fc, FullyConnectedNode)
        weight = ir_graph.get_node_by_name('fc_weight')
        assert fc.inputs[1] is weight
        np.testing.assert_array_equal(weight.data, model.fc.weight.detach().numpy())

    def test_scalar_operand(self):
        """Python numbers become constants of the tensor operand's type."""
        fx_graph = trace_model(ScalarZeroPoint(), torch.randn(1, 8))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(1, 8))

        sub = next(n for n in ir_graph.nodes if isinstance(n, SubtractNode))
        constant = sub.inputs[1]
        assert isinstance(constant, ConstantNode)
        assert constant.dtype == 'float32'
        assert float(constant.data) == 8.0

    def test_unsupported_function(self):
        fx_graph = trace_model(WithRelu(), torch.randn(1, 4))
        with pytest.raises(ValueError):
            lower_fx_graph(fx_graph)

    def test_linear_bias_rejected(self):
        fx_graph = trace_model(LinearWithBias(), torch.randn(1, 8))
        with pytest.raises(ValueError):
            lower_fx_graph(fx_graph)

    def test_lowered_graph_validates(self):
        fx_graph = trace_model(TransposedCompressedLinear(), torch.randn(2, 32))
        ir_graph = lower_fx_graph(fx_graph, torch.randn(2, 32))
        assert ir_graph.validate()

    @pytest.mark.parametrize('weight_first', [False, True])
    def test_linear_module_weight_read_directly(self, weight_first):
        """A weight used by a linear module and read in forward() becomes one constant."""
        torch.manual_seed(0)
        model = SharedLinearWeight(weight_first=weight_first)
        example_input = torch.randn(2, 8)

        fx_graph = trace_model(model, example_input)
        ir_graph = lower_fx_graph(fx_graph, example_input)

        constants = [n for n in ir_graph.nodes if isinstance(n, ConstantNode)]
        assert len(constants) == 1
        fcs = [n for n in ir_graph.nodes if isinstance(n, FullyConnectedNode)]
        assert len(fcs) == 2
        assert all(fc.inputs[1] is constants[0] for fc in fcs)

        with torch.no_grad():
            expected = model(example_input).numpy()
        outputs = run_graph(ir_graph, {ir_graph.inputs[0].name: example_input.numpy()})
        np.testing.assert_allclose(outputs[0], expected, rtol=1e-5, atol=1e-5)

    def test_synthesized_constant_avoids_fx_names(self):
        """Lowering-made constants step aside for FX node names."""
        example_input = torch.randn(8)
        fx_graph = trace_model(ShapeNamedBuffer(), example_input)
        ir_graph = lower_fx_graph(fx_graph, example_input)

        buffer = ir_graph.get_node_by_name('reshape_shape')
        assert buffer.output_shape == (2, 4)
        assert buffer.dtype == 'float32'

        reshape = ir_graph.get_node_by_name('reshape')
        assert reshape.inputs[1].name == 'reshape_shape_1'
        assert list(reshape.inputs[1].data) == [2, 4]
        assert ir_graph.validate()
