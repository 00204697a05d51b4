"""
Main entry point: capture a PyTorch model and run the fusion passes on it
"""

import torch
from typing import List, Optional

from .frontend.fx_tracer import ExampleInputs, FXTracer
from .lowering.lower import Lowering
from .ir.graph import IRGraph
from .ir.ops import FullyConnectedCompressedNode
from .passes.base import IRPass, TransformationCallback
from .passes.convert_fc_to_compressed import ConvertFullyConnectedToCompressed
from .passes.eliminate_dead_nodes import EliminateDeadNodesPass


def default_passes(
    verbose: bool = False,
    transformation_callback: Optional[TransformationCallback] = None
) -> List[IRPass]:
    """Fuse compressed fully connected layers, then drop the dead dequantization chains."""
    return [
        ConvertFullyConnectedToCompressed(
            transformation_callback=transformation_callback,
            verbose=verbose
        ),
        EliminateDeadNodesPass(verbose=verbose),
    ]


class PatternFusionCompiler:
    """
    Orchestrates the pipeline.

    Pipeline:
    1. Frontend: Trace PyTorch model with torch.fx
    2. Lowering: Convert FX graph to the IR op catalog
    3. Passes: Run the rewrite passes in order
    """

    def __init__(
        self,
        passes: Optional[List[IRPass]] = None,
        verbose: bool = False,
        transformation_callback: Optional[TransformationCallback] = None
    ):
        """
        Initialize the compiler.

        Args:
            passes: Passes to run after lowering (None for the default fusion pipeline,
                    [] to only trace and lower)
            verbose: If True, print detailed compilation information
            transformation_callback: Opt-out hook for the default fusion pass

        Raises:
            ValueError: If both ``passes`` and ``transformation_callback`` are given
        """
        if passes is not None and transformation_callback is not None:
            raise ValueError(
                "transformation_callback only applies to the default passes; "
                "pass it to the fusion pass when giving an explicit pass list"
            )
        self.verbose = verbose
        self.tracer = FXTracer()
        if passes is None:
            self.passes = default_passes(verbose, transformation_callback)
        else:
            self.passes = list(passes)

    def compile(self, model: torch.nn.Module, example_input: ExampleInputs) -> IRGraph:
        """
        Trace, lower and optimize a PyTorch model.

        Args:
            model: The PyTorch nn.Module to compile
            example_input: Example input tensor(s) for tracing

        Returns:
            The optimized IR graph
        """
        self._log("=" * 60)
        self._log("Pattern fusion compiler")
        self._log("=" * 60)

        # Step 1: Frontend - Trace with torch.fx
        self._log("\n[1/3] Tracing model with torch.fx...")
        fx_graph = self.tracer.trace_model(model, example_input)
        self._log(f"  ✓ Traced {len(list(fx_graph.graph.nodes))} nodes")

        if self.verbose:
            self._log("\nFX Graph:")
            self._log(self.tracer.print_graph(fx_graph))

        # Step 2: Lowering - one IR node per FX node
        self._log("\n[2/3] Lowering FX graph to IR...")
        ir_graph = Lowering().lower_fx_graph(fx_graph, example_input)
        self._log(f"  ✓ Created {len(ir_graph.nodes)} IR nodes")

        # Step 3: Passes
        self._log(f"\n[3/3] Running {len(self.passes)} passes...")
        for ir_pass in self.passes:
            ir_graph = ir_pass.apply(ir_graph)
            self._log(f"  ✓ {ir_pass.__class__.__name__}: {self._summarize(ir_pass.get_stats())}")

        ir_graph.validate()
        for node in ir_graph.nodes:
            node.validate_input_dtypes()
        self._log("  ✓ IR graph validated")

        if self.verbose:
            self._log("\nIR Graph:")
            self._log(ir_graph.print_graph())

        compressed = sum(1 for node in ir_graph.nodes if isinstance(node, FullyConnectedCompressedNode))
        self._log("\n" + "=" * 60)
        self._log("Compilation completed successfully!")
        self._log("=" * 60)
        self._log(f"  Number of operations: {len(ir_graph.nodes)}")
        self._log(f"  Compressed fully connected layers: {compressed}")

        return ir_graph

    @staticmethod
    def _summarize(stats: dict) -> str:
        return ", ".join(f"{key}={value}" for key, value in stats.items() if not isinstance(value, list))

    def _log(self, message: str) -> None:
        """Print a log message if verbose mode is enabled."""
        if self.verbose:
            print(message)


def compile_model(
    model: torch.nn.Module,
    example_input: ExampleInputs,
    passes: Optional[List[IRPass]] = None,
    verbose: bool = False,
    transformation_callback: Optional[TransformationCallback] = None
) -> IRGraph:
    """
    Convenience function to compile a PyTorch model.

    Args:
        model: The PyTorch nn.Module to compile
        example_input: Example input tensor(s) for tracing
        passes: Passes to run (None for the default pipeline, [] for none)
        verbose: If True, print compilation progress
        transformation_callback: Opt-out hook for the default fusion pass;
                                 cannot be combined with ``passes``

    Returns:
        The IR graph

    Example:
        >>> model = CompressedLinear(...)
        >>> example_input = torch.randn(2, 64)
        >>> ir_graph = compile_model(model, example_input)

        # Lowered graph only (no rewrites)
        >>> ir_graph = compile_model(model, example_input, passes=[])
    """
    compiler = PatternFusionCompiler(
        passes=passes,
        verbose=verbose,
        transformation_callback=transformation_callback
    )
    return compiler.compile(model, example_input)
