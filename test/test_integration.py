"""
Integration tests for the complete pipeline: trace, lower, fuse, execute
"""

import os
import sys

import numpy as np
import pytest
import torch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from src.pattern_fusion.compiler import PatternFusionCompiler, compile_model
from src.pattern_fusion.ir import FullyConnectedCompressedNode, FullyConnectedNode
from src.pattern_fusion.passes import ConvertFullyConnectedToCompressed, PassInvariantError
from src.pattern_fusion.runtime import GraphExecutor
from test_models import (
    CompressedMLP,
    FloatLinear,
    GroupedCompressedLinear,
    PerChannelCompressedLinear,
    ScalarZeroPoint,
    TransposedCompressedLinear,
)


MODELS = [
    (GroupedCompressedLinear, 64, 1),
    (TransposedCompressedLinear, 32, 1),
    (PerChannelCompressedLinear, 24, 1),
    (CompressedMLP, 64, 2),
    (FloatLinear, 16, 0),
]


def _count_compressed(ir_graph):
    return sum(1 for node in ir_graph.nodes if isinstance(node, FullyConnectedCompressedNode))


def _run(ir_graph, example_input):
    return GraphExecutor(ir_graph).run({ir_graph.inputs[0].name: example_input.numpy()})[0]


class TestIntegration:
    """End-to-end tests of the compilation pipeline."""

    @pytest.mark.parametrize('model_cls,in_features,expected_compressed', MODELS)
    def test_fused_graph_matches_pytorch(self, model_cls, in_features, expected_compressed):
        """The fused graph computes what the PyTorch model computes."""
        torch.manual_seed(0)
        model = model_cls()
        example_input = torch.randn(4, in_features)

        ir_graph = compile_model(model, example_input)

        assert _count_compressed(ir_graph) == expected_compressed
        with torch.no_grad():
            expected = model(example_input).numpy()
        np.testing.assert_allclose(_run(ir_graph, example_input), expected, rtol=1e-4, atol=1e-4)

    def test_no_dequantization_left(self):
        """After fusion and dead node elimination only the fused layers remain."""
        model = CompressedMLP()
        ir_graph = compile_model(model, torch.randn(1, 64))

        op_types = {node.op_type for node in ir_graph.nodes}
        assert 'convert' not in op_types
        assert 'subtract' not in op_types
        assert 'multiply' not in op_types
        assert 'fully_connected' not in op_types

    def test_without_passes(self):
        """An empty pass list returns the lowered graph."""
        model = GroupedCompressedLinear()
        example_input = torch.randn(2, 64)

        ir_graph = compile_model(model, example_input, passes=[])

        assert _count_compressed(ir_graph) == 0
        with torch.no_grad():
            expected = model(example_input).numpy()
        np.testing.assert_allclose(_run(ir_graph, example_input), expected, rtol=1e-4, atol=1e-4)

    def test_transformation_callback(self):
        """The host can keep selected layers unfused."""
        model = CompressedMLP()
        ir_graph = compile_model(
            model, torch.randn(1, 64),
            transformation_callback=lambda node: node.name == 'linear'
        )

        assert _count_compressed(ir_graph) == 1
        assert isinstance(ir_graph.get_node_by_name('linear'), FullyConnectedNode)

    def test_compiler_transformation_callback(self):
        """The compiler hands the callback to its default fusion pass."""
        compiler = PatternFusionCompiler(transformation_callback=lambda node: True)
        ir_graph = compiler.compile(CompressedMLP(), torch.randn(1, 64))
        assert _count_compressed(ir_graph) == 0

    def test_callback_with_explicit_passes_rejected(self):
        """An explicit pass list carries its own callbacks."""
        with pytest.raises(ValueError):
            compile_model(
                GroupedCompressedLinear(), torch.randn(1, 64),
                passes=[ConvertFullyConnectedToCompressed()],
                transformation_callback=lambda node: True
            )

    def test_scalar_zero_point_aborts(self):
        """A Python-number zero point lowers to a rank-0 constant, which the fusion refuses."""
        with pytest.raises(PassInvariantError, match="rank 0"):
            compile_model(ScalarZeroPoint(), torch.randn(1, 8))

    def test_scalar_zero_point_lowers_without_passes(self):
        model = ScalarZeroPoint()
        example_input = torch.randn(2, 8)

        ir_graph = compile_model(model, example_input, passes=[])

        with torch.no_grad():
            expected = model(example_input).numpy()
        np.testing.assert_allclose(_run(ir_graph, example_input), expected, rtol=1e-5, atol=1e-5)

    def test_fused_names_preserved(self):
        """Fused layers keep the name of the layer they replace."""
        model = GroupedCompressedLinear()
        lowered = compile_model(model, torch.randn(1, 64), passes=[])
        fc_names = [n.name for n in lowered.nodes if isinstance(n, FullyConnectedNode)]

        fused = compile_model(model, torch.randn(1, 64))
        compressed_names = [n.name for n in fused.nodes if isinstance(n, FullyConnectedCompressedNode)]

        assert compressed_names == fc_names

    def test_custom_pass_list(self):
        """Without dead node elimination the dequantization chain stays in the graph."""
        compiler = PatternFusionCompiler(passes=[ConvertFullyConnectedToCompressed()])
        ir_graph = compiler.compile(PerChannelCompressedLinear(), torch.randn(1, 24))

        op_types = {node.op_type for node in ir_graph.nodes}
        assert 'fully_connected_compressed' in op_types
        assert 'multiply' in op_types

    def test_verbose_logging(self, capsys):
        compile_model(GroupedCompressedLinear(), torch.randn(1, 64), verbose=True)
        out = capsys.readouterr().out

        assert "[1/3] Tracing model" in out
        assert "[ConvertFullyConnectedToCompressed]" in out
        assert "Compilation completed successfully!" in out

    def test_quiet_by_default(self, capsys):
        compile_model(GroupedCompressedLinear(), torch.randn(1, 64))
        assert capsys.readouterr().out == ""
