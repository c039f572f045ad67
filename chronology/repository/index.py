"""
Hierarchical Index
==================

Workspace ⊇ Project ⊇ Package ⊇ File view over all routed operations.

INVARIANTS:
- Every File node ever created lives in the arena, evicted or not
- Lookup (by key, by project/package) only reaches live nodes
- moved_from / moved_to are arena handles, never owning references
- A node is never linked to itself
- After repair_consistency(), each File's operations are ordered by
  (timestamp, sequence_number) and every cached time range is exact

Keys:
    project  "P"
    package  "P%K"
    file     "P%K%F"
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import hashlib

from ..contracts.base import TimeRange
from ..contracts.operations import Operation, operation_sort_key

UNKNOWN = "Unknown"
DEFAULT_PACKAGE = "(default package)"
KEY_SEPARATOR = "%"
SOURCE_MARKER = "/src/"


# =============================================================================
# PATH DERIVATION
# =============================================================================

def project_name(path: Optional[str]) -> str:
    """'/Proj/src/a/B.java' -> 'Proj'."""
    if path is None:
        return UNKNOWN
    start = 1 if path.startswith("/") else 0
    end = path.find("/", start)
    if end == -1:
        return UNKNOWN
    return path[start:end]


def package_name(path: Optional[str]) -> str:
    """'/Proj/src/a/b/C.java' -> 'a.b'; no '/src/' -> 'Unknown'."""
    if path is None:
        return UNKNOWN
    marker = path.find(SOURCE_MARKER)
    if marker == -1:
        return UNKNOWN
    segments = path[marker + len(SOURCE_MARKER):].split("/")[:-1]
    joined = ".".join(s for s in segments if s)
    return joined or DEFAULT_PACKAGE


def file_name(path: Optional[str]) -> str:
    if path is None:
        return UNKNOWN
    return path.rsplit("/", 1)[-1] or UNKNOWN


def package_key(project: str, package: str) -> str:
    return f"{project}{KEY_SEPARATOR}{package}"


def file_key(path: Optional[str]) -> str:
    return KEY_SEPARATOR.join((project_name(path), package_name(path), file_name(path)))


# =============================================================================
# NODES
# =============================================================================

class FileNode:
    """
    One file's operation history.

    Owned by the index arena. Lineage links are handles into that arena,
    resolved on demand.
    """

    def __init__(self, handle: int, path: Optional[str], arena: List['FileNode']):
        self.handle = handle
        self.path = path
        self.key = file_key(path)
        self.name = file_name(path)
        self.project = project_name(path)
        self.package = package_name(path)
        self.moved_from: Optional[int] = None
        self.moved_to: Optional[int] = None
        self.evicted = False
        self._arena = arena
        self._operations: List[Operation] = []
        self._range: Optional[TimeRange] = None

    @property
    def operations(self) -> Tuple[Operation, ...]:
        return tuple(self._operations)

    @property
    def operation_count(self) -> int:
        return len(self._operations)

    @property
    def time_range(self) -> Optional[TimeRange]:
        return self._range

    @property
    def first_time(self) -> Optional[int]:
        return self._range.start if self._range else None

    @property
    def last_time(self) -> Optional[int]:
        return self._range.end if self._range else None

    def append(self, op: Operation) -> None:
        self._operations.append(op)

    def compute_range(self) -> Optional[TimeRange]:
        return TimeRange.covering(op.timestamp for op in self._operations)

    def is_sorted(self) -> bool:
        ops = self._operations
        return all(ops[i].order_key <= ops[i + 1].order_key for i in range(len(ops) - 1))

    def predecessor(self) -> Optional['FileNode']:
        return self._arena[self.moved_from] if self.moved_from is not None else None

    def successor(self) -> Optional['FileNode']:
        return self._arena[self.moved_to] if self.moved_to is not None else None

    def lineage(self) -> List['FileNode']:
        """This node and its rename/move ancestors, oldest first."""
        chain = [self]
        seen = {self.handle}
        node = self.predecessor()
        while node is not None and node.handle not in seen:
            chain.append(node)
            seen.add(node.handle)
            node = node.predecessor()
        chain.reverse()
        return chain

    def full_history(self) -> Tuple[Operation, ...]:
        """Operations of the whole lineage, oldest node first."""
        history: List[Operation] = []
        for node in self.lineage():
            history.extend(node._operations)
        return tuple(history)

    def __repr__(self) -> str:
        return f"FileNode({self.key!r}, ops={len(self._operations)}, evicted={self.evicted})"


class PackageNode:
    def __init__(self, project: str, name: str):
        self.project = project
        self.name = name
        self.key = package_key(project, name)
        self.files: Dict[str, FileNode] = {}
        self._range: Optional[TimeRange] = None

    @property
    def time_range(self) -> Optional[TimeRange]:
        return self._range

    @property
    def first_time(self) -> Optional[int]:
        return self._range.start if self._range else None

    @property
    def last_time(self) -> Optional[int]:
        return self._range.end if self._range else None

    def compute_range(self) -> Optional[TimeRange]:
        result: Optional[TimeRange] = None
        for f in self.files.values():
            if f.time_range is not None:
                result = f.time_range.union(result)
        return result


class ProjectNode:
    def __init__(self, name: str):
        self.name = name
        self.key = name
        self.packages: Dict[str, PackageNode] = {}
        self._range: Optional[TimeRange] = None

    @property
    def time_range(self) -> Optional[TimeRange]:
        return self._range

    @property
    def first_time(self) -> Optional[int]:
        return self._range.start if self._range else None

    @property
    def last_time(self) -> Optional[int]:
        return self._range.end if self._range else None

    def compute_range(self) -> Optional[TimeRange]:
        result: Optional[TimeRange] = None
        for p in self.packages.values():
            if p.time_range is not None:
                result = p.time_range.union(result)
        return result


# =============================================================================
# INDEX
# =============================================================================

class HierarchicalIndex:
    """
    Arena-backed project/package/file index.

    Written only by the repository aggregator while building; read-only
    for every other consumer.
    """

    def __init__(self):
        self._projects: Dict[str, ProjectNode] = {}
        self._files: Dict[str, FileNode] = {}
        self._arena: List[FileNode] = []

    # -------------------------------------------------------------------------
    # Mutation (aggregator only)
    # -------------------------------------------------------------------------

    def get_or_create_file(self, path: Optional[str]) -> FileNode:
        key = file_key(path)
        node = self._files.get(key)
        if node is not None:
            return node

        node = FileNode(len(self._arena), path, self._arena)
        self._arena.append(node)
        self._files[key] = node

        project = self._projects.get(node.project)
        if project is None:
            project = ProjectNode(node.project)
            self._projects[node.project] = project
        package = project.packages.get(node.package)
        if package is None:
            package = PackageNode(node.project, node.package)
            project.packages[node.package] = package
        package.files[key] = node
        return node

    def evict(self, node: FileNode) -> None:
        """Remove a node from lookup; it stays reachable through lineage."""
        if self._files.get(node.key) is node:
            del self._files[node.key]
            package = self._projects[node.project].packages[node.package]
            package.files.pop(node.key, None)
        node.evicted = True

    def link(self, origin: FileNode, destination: FileNode) -> bool:
        """Record a move/rename. Returns False when origin is destination."""
        if origin is destination:
            return False
        origin.moved_to = destination.handle
        destination.moved_from = origin.handle
        return True

    def finalize(self) -> None:
        """Compute and cache time ranges bottom-up."""
        for node in self._arena:
            node._range = node.compute_range()
        for project in self._projects.values():
            for package in project.packages.values():
                package._range = package.compute_range()
            project._range = project.compute_range()

    def repair_consistency(self) -> int:
        """
        Re-sort out-of-order files and fix stale cached ranges.

        Returns the number of repairs; 0 on a consistent index.
        """
        repairs = 0
        for node in self._arena:
            if not node.is_sorted():
                node._operations.sort(key=operation_sort_key)
                repairs += 1
            expected = node.compute_range()
            if node._range != expected:
                node._range = expected
                repairs += 1
        for project in self._projects.values():
            for package in project.packages.values():
                expected = package.compute_range()
                if package._range != expected:
                    package._range = expected
                    repairs += 1
            expected = project.compute_range()
            if project._range != expected:
                project._range = expected
                repairs += 1
        return repairs

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_projects(self) -> List[ProjectNode]:
        return [self._projects[name] for name in sorted(self._projects)]

    def get_project(self, project: str) -> Optional[ProjectNode]:
        return self._projects.get(project)

    def list_packages(self, project: str) -> List[PackageNode]:
        node = self._projects.get(project)
        if node is None:
            return []
        return [node.packages[name] for name in sorted(node.packages)]

    def list_files(self, project: str, package: str) -> List[FileNode]:
        node = self._projects.get(project)
        if node is None or package not in node.packages:
            return []
        files = node.packages[package].files
        return [files[key] for key in sorted(files)]

    def get_file(self, key: str) -> Optional[FileNode]:
        return self._files.get(key)

    def find_file(self, path: Optional[str]) -> Optional[FileNode]:
        return self._files.get(file_key(path))

    def node(self, handle: int) -> FileNode:
        return self._arena[handle]

    def all_files(self) -> Tuple[FileNode, ...]:
        return tuple(self._arena)

    def operations(self) -> Tuple[Operation, ...]:
        ops: List[Operation] = []
        for node in self._arena:
            ops.extend(node._operations)
        ops.sort(key=operation_sort_key)
        return tuple(ops)

    @property
    def file_count(self) -> int:
        return len(self._arena)

    @property
    def operation_count(self) -> int:
        return sum(n.operation_count for n in self._arena)

    def is_empty(self) -> bool:
        return not self._arena and not self._projects

    def content_digest(self) -> str:
        """Stable digest of structure, links and operations."""
        h = hashlib.sha256()
        for node in self._arena:
            h.update(
                f"{node.handle}|{node.key}|{node.evicted}|"
                f"{node.moved_from}|{node.moved_to}|{node._range}\n".encode()
            )
            for op in node._operations:
                h.update(f"  {op!r}\n".encode())
        for project in self.list_projects():
            h.update(f"P {project.key} {project.time_range}\n".encode())
            for package in self.list_packages(project.name):
                h.update(f"K {package.key} {package.time_range} {sorted(package.files)}\n".encode())
        return h.hexdigest()
