"""Reference execution of IR graphs"""

from .executor import GraphExecutor, run_graph

__all__ = ['GraphExecutor', 'run_graph']
