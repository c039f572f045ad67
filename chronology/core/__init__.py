"""
Core Analysis Layer

RESPONSIBILITY: Structural analysis of one file's operation history
ALLOWED INPUTS: Sorted operation sequences from the repository index
OUTPUTS: OperationDependencyGraph

WHAT THIS LAYER MUST NOT DO:
============================
- Mutate operations or the index
- Interpret code semantically (no AST-level analysis)
"""

from .dependency import (
    DependencyEdge,
    DependencyGraphBuilder,
    DependencyType,
    OperationDependencyGraph,
)

__all__ = [
    'DependencyEdge',
    'DependencyGraphBuilder',
    'DependencyType',
    'OperationDependencyGraph',
]
