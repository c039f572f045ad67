"""
Log Codec
=========

Converts an OperationLog to and from its durable XML document.

FORMAT:
=======
    <history version="1.0">
      <edit time=".." seq=".." path=".." author=".." offset=".." subtype="Edit">
        <inserted>..</inserted>
        <deleted>..</deleted>
      </edit>
      <compound time=".." group="..">
        <edit offset=".." subtype=".."> .. </edit>
      </compound>
      <file time=".." action="Open"><snapshot>..</snapshot></file>
      <copy ..><copied>..</copied></copy>
      <command .. command=".."/>
      <resource .. target="File" change="Renamed" identical=".." side="Destination"/>
    </history>

- The element tag is the variant discriminant
- Scalars live in attributes; text payloads live in child elements
- An absent optional value has no attribute/child; an empty string does
- Text XML cannot carry verbatim (carriage returns, control characters)
  is stored base64-encoded with enc="base64"

GUARANTEES:
- decode(encode(log)) == log, field for field
- decode never raises on malformed input; it returns None
"""

from __future__ import annotations
import base64
import logging
import re
from typing import Callable, Dict, Optional, Union
import xml.etree.ElementTree as ET

from ..contracts.operations import (
    Command, Compound, Copy, EditSubtype, FileAction, FileLifecycle,
    Operation, OperationKind, ResourceChange, ResourceChangeKind,
    ResourceSide, ResourceTarget, TextEdit,
)
from ..temporal.operation_log import OperationLog

logger = logging.getLogger(__name__)

ROOT_TAG = "history"
FORMAT_VERSION = "1.0"

# Characters that survive an XML 1.0 round trip verbatim inside element text.
# Carriage returns are excluded: parsers normalize them to line feeds.
_XML_UNSAFE = re.compile(r'[^\t\n\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]')


class CodecError(ValueError):
    """Malformed document content (raised internally, surfaced as None)."""
    pass


# =============================================================================
# ENCODING
# =============================================================================

def encode(log: OperationLog) -> ET.Element:
    """Encode a log into its document root element."""
    root = ET.Element(ROOT_TAG, {"version": FORMAT_VERSION})
    for op in log.operations():
        root.append(_encode_operation(op))
    return root


def to_bytes(log: OperationLog, encoding: str = "utf-8") -> bytes:
    """Serialize a log into a complete XML document in the given charset."""
    root = encode(log)
    ET.indent(root)
    return ET.tostring(root, encoding=encoding, xml_declaration=True)


def _encode_operation(op: Operation) -> ET.Element:
    elem = ET.Element(op.kind.value)
    elem.set("time", str(op.timestamp))
    elem.set("seq", str(op.sequence_number))
    if op.file_path is not None:
        elem.set("path", op.file_path)
    elem.set("author", op.author)

    payload = op.payload
    if isinstance(payload, TextEdit):
        _encode_edit_fields(elem, payload)
    elif isinstance(payload, Copy):
        elem.set("offset", str(payload.start_offset))
        _add_text(elem, "copied", payload.copied_text)
    elif isinstance(payload, Compound):
        elem.set("group", payload.group_type)
        for child in payload.children:
            child_elem = ET.SubElement(elem, OperationKind.TEXT_EDIT.value)
            _encode_edit_fields(child_elem, child)
    elif isinstance(payload, FileLifecycle):
        elem.set("action", payload.action.value)
        if payload.snapshot is not None:
            _add_text(elem, "snapshot", payload.snapshot)
    elif isinstance(payload, Command):
        elem.set("command", payload.command_id)
    elif isinstance(payload, ResourceChange):
        elem.set("target", payload.target.value)
        elem.set("change", payload.change_kind.value)
        elem.set("side", payload.side.value)
        if payload.identical_path is not None:
            elem.set("identical", payload.identical_path)
        if payload.snapshot is not None:
            _add_text(elem, "snapshot", payload.snapshot)
    return elem


def _encode_edit_fields(elem: ET.Element, edit: TextEdit) -> None:
    elem.set("offset", str(edit.start_offset))
    elem.set("subtype", edit.subtype.value)
    _add_text(elem, "inserted", edit.inserted_text)
    _add_text(elem, "deleted", edit.deleted_text)


def _add_text(parent: ET.Element, tag: str, text: str) -> None:
    child = ET.SubElement(parent, tag)
    if _XML_UNSAFE.search(text):
        child.set("enc", "base64")
        child.text = base64.b64encode(text.encode("utf-8", "surrogatepass")).decode("ascii")
    else:
        child.text = text


# =============================================================================
# DECODING
# =============================================================================

def decode(document: Union[ET.Element, ET.ElementTree, None]) -> Optional[OperationLog]:
    """
    Decode a document into a log.

    Returns None for a missing or malformed document; the caller treats
    that as a recoverable, per-file failure.
    """
    if document is None:
        return None
    root = document.getroot() if isinstance(document, ET.ElementTree) else document
    if root.tag != ROOT_TAG:
        logger.debug("Unexpected root element <%s>", root.tag)
        return None

    log = OperationLog()
    try:
        for elem in root:
            log.append(_decode_operation(elem))
    except (CodecError, KeyError, ValueError, TypeError) as e:
        logger.debug("Malformed operation element: %s", e)
        return None
    return log


def from_bytes(data: bytes) -> Optional[OperationLog]:
    """Parse and decode a serialized document; None if unreadable."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        logger.debug("Unparseable history document: %s", e)
        return None
    return decode(root)


def _decode_operation(elem: ET.Element) -> Operation:
    try:
        kind = OperationKind(elem.tag)
    except ValueError:
        raise CodecError(f"unknown operation element <{elem.tag}>")

    payload = _PAYLOAD_DECODERS[kind](elem)
    return Operation(
        timestamp=int(_attr(elem, "time")),
        file_path=elem.get("path"),
        payload=payload,
        sequence_number=int(elem.get("seq", "0")),
        author=elem.get("author", "")
    )


def _decode_edit(elem: ET.Element) -> TextEdit:
    return TextEdit(
        start_offset=int(_attr(elem, "offset")),
        inserted_text=_get_text(elem, "inserted") or "",
        deleted_text=_get_text(elem, "deleted") or "",
        subtype=EditSubtype(elem.get("subtype", EditSubtype.EDIT.value))
    )


def _decode_copy(elem: ET.Element) -> Copy:
    return Copy(
        start_offset=int(_attr(elem, "offset")),
        copied_text=_get_text(elem, "copied") or ""
    )


def _decode_compound(elem: ET.Element) -> Compound:
    children = []
    for child in elem.findall(OperationKind.TEXT_EDIT.value):
        children.append(_decode_edit(child))
    return Compound(children=tuple(children), group_type=elem.get("group", ""))


def _decode_file(elem: ET.Element) -> FileLifecycle:
    return FileLifecycle(
        action=FileAction(_attr(elem, "action")),
        snapshot=_get_text(elem, "snapshot")
    )


def _decode_command(elem: ET.Element) -> Command:
    return Command(command_id=_attr(elem, "command"))


def _decode_resource(elem: ET.Element) -> ResourceChange:
    return ResourceChange(
        target=ResourceTarget(_attr(elem, "target")),
        change_kind=ResourceChangeKind(_attr(elem, "change")),
        identical_path=elem.get("identical"),
        snapshot=_get_text(elem, "snapshot"),
        side=ResourceSide(elem.get("side", ResourceSide.DESTINATION.value))
    )


_PAYLOAD_DECODERS: Dict[OperationKind, Callable[[ET.Element], object]] = {
    OperationKind.TEXT_EDIT: _decode_edit,
    OperationKind.COPY: _decode_copy,
    OperationKind.COMPOUND: _decode_compound,
    OperationKind.FILE: _decode_file,
    OperationKind.COMMAND: _decode_command,
    OperationKind.RESOURCE: _decode_resource,
}


def _attr(elem: ET.Element, name: str) -> str:
    value = elem.get(name)
    if value is None:
        raise CodecError(f"<{elem.tag}> is missing attribute '{name}'")
    return value


def _get_text(parent: ET.Element, tag: str) -> Optional[str]:
    """Text of a payload child: None if absent, '' if present but empty."""
    child = parent.find(tag)
    if child is None:
        return None
    text = child.text or ""
    if child.get("enc") == "base64":
        try:
            raw = base64.b64decode(text.encode("ascii"), validate=True)
            return raw.decode("utf-8", "surrogatepass")
        except (ValueError, UnicodeError) as e:
            raise CodecError(f"bad base64 payload in <{tag}>: {e}")
    return text
