"""
Operation Dependency Graph
==========================

Which operations of one file build on which others.

Nodes are Operations (keyed by identity string; the children of a
Compound count as their parent). Edges point from the earlier operation
to the one that depends on it:

- TEXT:       b deletes characters that a inserted
- CLIPBOARD:  a paste inserts exactly what the latest copy/cut captured

FENCE POST:
===========
This graph records PROVENANCE (which characters came from where), not
INTENT. Offsets and verbatim text are the only inputs; there is no
semantic or syntactic analysis.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple
import logging

import networkx as nx

from ..contracts.operations import (
    Compound, Copy, EditSubtype, Operation, TextEdit,
    is_base_state, operation_sort_key,
)

logger = logging.getLogger(__name__)


class DependencyType(Enum):
    TEXT = "text"
    CLIPBOARD = "clipboard"


@dataclass(frozen=True)
class DependencyEdge:
    source: Operation
    target: Operation
    relations: Tuple[DependencyType, ...]


class OperationDependencyGraph:
    """Read-only view over a built networkx.DiGraph."""

    def __init__(self, graph: nx.DiGraph, operations: Dict[str, Operation]):
        self._graph = graph
        self._operations = operations

    @property
    def graph(self) -> nx.DiGraph:
        return self._graph

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def predecessors(self, op: Operation) -> List[Operation]:
        node_id = op.identity_string()
        if node_id not in self._graph:
            return []
        return self._sorted(self._graph.predecessors(node_id))

    def successors(self, op: Operation) -> List[Operation]:
        node_id = op.identity_string()
        if node_id not in self._graph:
            return []
        return self._sorted(self._graph.successors(node_id))

    def ancestors(self, op: Operation) -> List[Operation]:
        node_id = op.identity_string()
        if node_id not in self._graph:
            return []
        return self._sorted(nx.ancestors(self._graph, node_id))

    def relations(self, source: Operation, target: Operation) -> Tuple[DependencyType, ...]:
        data = self._graph.get_edge_data(source.identity_string(), target.identity_string())
        if data is None:
            return ()
        return tuple(sorted(data['relations'], key=lambda r: r.value))

    def edges(self) -> List[DependencyEdge]:
        result = [
            DependencyEdge(
                source=self._operations[u],
                target=self._operations[v],
                relations=tuple(sorted(data['relations'], key=lambda r: r.value))
            )
            for u, v, data in self._graph.edges(data=True)
        ]
        result.sort(key=lambda e: (e.target.order_key, e.source.order_key))
        return result

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self._graph)

    def _sorted(self, node_ids) -> List[Operation]:
        return sorted((self._operations[n] for n in node_ids), key=operation_sort_key)


class DependencyGraphBuilder:
    """
    Replays a file's operations while tracking, per character, which
    operation inserted it.

    Edits before the first Open/Save have no text to land in and are
    skipped. An edit that does not fit the tracked text is skipped too;
    the graph is best effort where replay itself would fail.
    """

    def build(self, ops: Sequence[Operation]) -> OperationDependencyGraph:
        ordered = sorted(ops, key=operation_sort_key)
        graph = nx.DiGraph()
        by_id: Dict[str, Operation] = {}
        for op in ordered:
            node_id = op.identity_string()
            by_id[node_id] = op
            graph.add_node(node_id, kind=op.kind.value, timestamp=op.timestamp)

        text: Optional[str] = None
        owners: List[Optional[str]] = []
        clipboard: Optional[Tuple[str, str]] = None

        for op in ordered:
            node_id = op.identity_string()
            payload = op.payload

            if is_base_state(op):
                if payload.snapshot != text:
                    text = payload.snapshot
                    owners = [None] * len(text)
            elif isinstance(payload, Copy):
                clipboard = (payload.copied_text, node_id)
            elif isinstance(payload, (TextEdit, Compound)):
                children = payload.children if isinstance(payload, Compound) else (payload,)
                for edit in children:
                    clipboard = self._clipboard_edge(graph, edit, node_id, clipboard)
                    if text is not None:
                        text, owners = self._apply(graph, text, owners, edit, node_id)

        logger.debug("Dependency graph: %d nodes, %d edges",
                     graph.number_of_nodes(), graph.number_of_edges())
        return OperationDependencyGraph(graph, by_id)

    def _apply(
        self,
        graph: nx.DiGraph,
        text: str,
        owners: List[Optional[str]],
        edit: TextEdit,
        node_id: str
    ) -> Tuple[str, List[Optional[str]]]:
        start = edit.start_offset
        end = start + len(edit.deleted_text)
        if end > len(text):
            logger.debug("Edit %s does not fit tracked text, skipped", node_id)
            return text, owners

        sources: Set[str] = {o for o in owners[start:end] if o is not None and o != node_id}
        for source in sources:
            self._add_edge(graph, source, node_id, DependencyType.TEXT)

        text = text[:start] + edit.inserted_text + text[end:]
        owners = owners[:start] + [node_id] * len(edit.inserted_text) + owners[end:]
        return text, owners

    def _clipboard_edge(
        self,
        graph: nx.DiGraph,
        edit: TextEdit,
        node_id: str,
        clipboard: Optional[Tuple[str, str]]
    ) -> Optional[Tuple[str, str]]:
        if edit.subtype == EditSubtype.PASTE and clipboard is not None:
            clip_text, clip_id = clipboard
            if clip_id != node_id and edit.inserted_text == clip_text:
                self._add_edge(graph, clip_id, node_id, DependencyType.CLIPBOARD)
        if edit.subtype == EditSubtype.CUT:
            return (edit.deleted_text, node_id)
        return clipboard

    @staticmethod
    def _add_edge(graph: nx.DiGraph, source: str, target: str, relation: DependencyType) -> None:
        if graph.has_edge(source, target):
            graph[source][target]['relations'].add(relation)
        else:
            graph.add_edge(source, target, relations={relation})
