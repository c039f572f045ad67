"""
Repository Layer

RESPONSIBILITY: Aggregate durable logs into a navigable file hierarchy
ALLOWED INPUTS: Decoded operation logs from the history store
OUTPUTS: HierarchicalIndex, RebuildReport, repository change notifications

WHAT THIS LAYER MUST NOT DO:
============================
- Write or delete durable logs
- Reconstruct text (that belongs to the temporal layer)
- Let readers observe a half-built index
"""

from .index import (
    DEFAULT_PACKAGE,
    UNKNOWN,
    FileNode,
    HierarchicalIndex,
    PackageNode,
    ProjectNode,
    file_key,
    file_name,
    package_key,
    package_name,
    project_name,
)
from .aggregator import (
    AggregatorConfig,
    CancellationToken,
    RebuildReport,
    RepositoryAggregator,
)

__all__ = [
    'DEFAULT_PACKAGE',
    'UNKNOWN',
    'FileNode',
    'HierarchicalIndex',
    'PackageNode',
    'ProjectNode',
    'file_key',
    'file_name',
    'package_key',
    'package_name',
    'project_name',
    'AggregatorConfig',
    'CancellationToken',
    'RebuildReport',
    'RepositoryAggregator',
]
