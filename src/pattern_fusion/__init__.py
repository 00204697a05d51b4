"""
Pattern-based graph fusion for compressed linear layers

Finds dequantize -> multiply -> fully connected chains in an IR graph and
rewrites them into a single fully connected op that consumes compressed
weights, scale and zero point directly.
"""

__version__ = "0.1.0"
