"""
Example: Fusing a weight-compressed linear layer

A 4-bit grouped-quantized linear layer is written the way a quantization
tool exports it: the uint8 weights are converted, shifted by a zero point,
scaled and reshaped in forward(). The compiler folds that chain into one
fully_connected_compressed op and the reference executor checks that the
result still matches PyTorch.
"""

import torch
import torch.nn as nn
import torch.nn.functional as F
import sys
import os

# Add src to path so we can import the compiler
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from src.pattern_fusion.compiler import compile_model
from src.pattern_fusion.runtime import run_graph


class CompressedLinear(nn.Module):
    """Linear layer with 4-bit weights, one scale and zero point per group of inputs."""

    def __init__(self, in_features=128, out_features=32, group_size=32):
        super().__init__()
        groups = in_features // group_size
        self.in_features = in_features
        self.out_features = out_features

        self.register_buffer('weight', torch.randint(0, 16, (out_features, groups, group_size), dtype=torch.uint8))
        self.register_buffer('zero_point', torch.full((out_features, groups, 1), 8, dtype=torch.uint8))
        self.register_buffer('scale', torch.rand(out_features, groups, 1) * 0.05)

    def forward(self, x):
        w = (self.weight.float() - self.zero_point) * self.scale
        w = w.reshape(self.out_features, self.in_features)
        return F.linear(x, w)


def main():
    """Main example function."""
    print("=" * 60)
    print("Pattern Fusion - Compressed Linear Example")
    print("=" * 60)
    print()

    model = CompressedLinear()
    model.eval()
    example_input = torch.randn(2, 128)

    with torch.no_grad():
        pytorch_output = model(example_input)

    print("Lowered graph (no passes):")
    lowered = compile_model(model, example_input, passes=[])
    print(lowered.print_graph())

    print("\n" + "=" * 60)
    print("Fusing...")
    print("=" * 60)
    ir_graph = compile_model(model, example_input, verbose=True)

    outputs = run_graph(ir_graph, {ir_graph.inputs[0].name: example_input.numpy()})
    max_diff = abs(outputs[0] - pytorch_output.numpy()).max()

    print(f"\nNodes before fusion: {len(lowered.nodes)}")
    print(f"Nodes after fusion:  {len(ir_graph.nodes)}")
    print(f"Max difference vs PyTorch: {max_diff:.2e}")

    for node in ir_graph.nodes:
        if node.op_type == 'fully_connected_compressed':
            print(f"\n{node}")
            print(f"  derived from: {node.provenance}")


if __name__ == "__main__":
    main()
