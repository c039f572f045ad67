"""
API Mapper
==========

Transforms index nodes and operations into response DTOs.
Exposes raw recorded data: offsets and verbatim text, no summarising.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..contracts.base import Error, format_millis
from ..contracts.events import FocalChangedEvent
from ..contracts.operations import (
    Command, Compound, Copy, FileLifecycle, Operation, ResourceChange, TextEdit
)
from ..repository import FileNode, PackageNode, ProjectNode, RebuildReport


class ProjectDTO(BaseModel):
    name: str
    first_time: Optional[int] = None
    last_time: Optional[int] = None
    package_count: int = 0


class PackageDTO(BaseModel):
    key: str
    project: str
    name: str
    first_time: Optional[int] = None
    last_time: Optional[int] = None
    file_count: int = 0


class FileDTO(BaseModel):
    key: str
    name: str
    path: Optional[str] = None
    project: str
    package: str
    first_time: Optional[int] = None
    last_time: Optional[int] = None
    operation_count: int = 0
    evicted: bool = False
    moved_from: Optional[str] = None
    moved_to: Optional[str] = None


class OperationDTO(BaseModel):
    index: int
    timestamp: int
    time: str
    sequence_number: int
    author: str
    file_path: Optional[str] = None
    kind: str
    detail: Dict[str, Any]


class OperationPageDTO(BaseModel):
    file_key: str
    total: int
    offset: int
    operations: List[OperationDTO]


class TextDTO(BaseModel):
    file_key: str
    index: int
    timestamp: int
    text: str


class ErrorDTO(BaseModel):
    code: str
    message: str


class FocalDTO(BaseModel):
    file_key: str
    index: Optional[int] = None
    time: Optional[int] = None
    text: Optional[str] = None
    error: Optional[ErrorDTO] = None


class LineageDTO(BaseModel):
    file_key: str
    nodes: List[FileDTO]


class RefreshDTO(BaseModel):
    rebuilt: bool
    success: bool = True
    files_scanned: int = 0
    skipped_files: List[str] = []
    operations_routed: int = 0
    duplicate_operations: int = 0
    error: Optional[ErrorDTO] = None


def map_project(node: ProjectNode) -> ProjectDTO:
    return ProjectDTO(
        name=node.name,
        first_time=node.first_time,
        last_time=node.last_time,
        package_count=len(node.packages)
    )


def map_package(node: PackageNode) -> PackageDTO:
    return PackageDTO(
        key=node.key,
        project=node.project,
        name=node.name,
        first_time=node.first_time,
        last_time=node.last_time,
        file_count=len(node.files)
    )


def map_file(node: FileNode) -> FileDTO:
    predecessor = node.predecessor()
    successor = node.successor()
    return FileDTO(
        key=node.key,
        name=node.name,
        path=node.path,
        project=node.project,
        package=node.package,
        first_time=node.first_time,
        last_time=node.last_time,
        operation_count=node.operation_count,
        evicted=node.evicted,
        moved_from=predecessor.key if predecessor else None,
        moved_to=successor.key if successor else None
    )


def map_operation(index: int, op: Operation) -> OperationDTO:
    return OperationDTO(
        index=index,
        timestamp=op.timestamp,
        time=format_millis(op.timestamp),
        sequence_number=op.sequence_number,
        author=op.author,
        file_path=op.file_path,
        kind=op.kind.value,
        detail=_payload_detail(op.payload)
    )


def map_error(error: Optional[Error]) -> Optional[ErrorDTO]:
    if error is None:
        return None
    return ErrorDTO(code=error.code.name, message=error.message)


def map_focal(file_key: str, event: Optional[FocalChangedEvent]) -> FocalDTO:
    if event is None:
        return FocalDTO(file_key=file_key)
    return FocalDTO(
        file_key=file_key,
        index=event.index,
        time=event.time,
        text=event.text,
        error=map_error(event.error)
    )


def map_refresh(report: Optional[RebuildReport]) -> RefreshDTO:
    if report is None:
        return RefreshDTO(rebuilt=False)
    return RefreshDTO(
        rebuilt=True,
        success=report.success,
        files_scanned=report.files_scanned,
        skipped_files=list(report.skipped_files),
        operations_routed=report.operations_routed,
        duplicate_operations=report.duplicate_operations,
        error=map_error(report.error)
    )


def _edit_detail(edit: TextEdit) -> Dict[str, Any]:
    return {
        "subtype": edit.subtype.value,
        "offset": edit.start_offset,
        "inserted": edit.inserted_text,
        "deleted": edit.deleted_text,
    }


def _payload_detail(payload) -> Dict[str, Any]:
    if isinstance(payload, TextEdit):
        return _edit_detail(payload)
    if isinstance(payload, Copy):
        return {"offset": payload.start_offset, "copied": payload.copied_text}
    if isinstance(payload, Compound):
        return {
            "group": payload.group_type,
            "children": [_edit_detail(child) for child in payload.children],
        }
    if isinstance(payload, FileLifecycle):
        return {"action": payload.action.value, "snapshot": payload.snapshot}
    if isinstance(payload, Command):
        return {"command": payload.command_id}
    if isinstance(payload, ResourceChange):
        return {
            "target": payload.target.value,
            "change": payload.change_kind.value,
            "side": payload.side.value,
            "identical_path": payload.identical_path,
            "snapshot": payload.snapshot,
        }
    return {}
