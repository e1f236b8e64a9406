"""
XML helpers for TwinCAT automation interface documents.

Tree items in the TwinCAT System Manager exchange their configuration as
XML strings (``ITcSmTreeItem.ProduceXml`` / ``ConsumeXml``).  The helpers in
this module check those strings with lxml and patch single fields by
splicing the new text into the original string, so every other byte of the
document is returned as it came in.

Real-time task XML (``TIRT^<Task>``)::

    <TreeItem>
        <ItemName>PlcTask</ItemName>
        <Disabled>false</Disabled>
        <TaskDef>
            <AutoStart>true</AutoStart>
            ...
        </TaskDef>
    </TreeItem>

PLC project XML (``TIPC^<Project>``)::

    <TreeItem>
        <PlcProjectDef>
            <AdsPort>851</AdsPort>
            ...
        </PlcProjectDef>
    </TreeItem>

Lookups that do not find their element return a sentinel (``""`` or
``None``).  A document that cannot be parsed raises
:class:`lxml.etree.XMLSyntaxError`.
"""

from __future__ import annotations

import logging
import os
import re
from typing import NamedTuple, Optional

from lxml import etree

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TREE_ITEM = "TreeItem"
DISABLED_PATH = "TreeItem/Disabled"
AUTOSTART_PATH = "TreeItem/TaskDef/AutoStart"
ITEM_NAME_PATH = "TreeItem/ItemName"
PLC_PROJECT_DEF_PATH = "TreeItem/PlcProjectDef"
ADS_PORT_PATH = "TreeItem/PlcProjectDef/AdsPort"
COMPILER_DEFINES_TAG = "CompilerDefines"

TWINCAT_PROJECT_ROOT = "TcSmProject"
TC_VERSION_FIXED_ATTR = "TcVersionFixed"

# lxml refuses str input that carries an encoding declaration, so the
# declaration is split off before parsing.
_XML_DECLARATION_RE = re.compile(r"^\s*(<\?xml[^?]*\?>\s*)")

_UTF8_BOM = "\ufeff"


# ---------------------------------------------------------------------------
# Parsing / splicing
# ---------------------------------------------------------------------------

def _make_parser() -> etree.XMLParser:
    return etree.XMLParser(
        remove_blank_text=False,
        strip_cdata=False,
        recover=False,
    )


def _parse(xml: str) -> tuple[str, etree._Element]:
    """Parse an XML string, returning ``(declaration, root)``.

    *declaration* is the original XML declaration including any trailing
    whitespace, or ``""`` when the document has none.
    """
    if xml.startswith(_UTF8_BOM):
        xml = xml[1:]
    declaration = ""
    match = _XML_DECLARATION_RE.match(xml)
    if match:
        declaration = match.group(1)
        xml = xml[match.end():]
    root = etree.fromstring(xml.encode("utf-8"), parser=_make_parser())
    return declaration, root


# One markup token of a well-formed document.  Only used on strings lxml
# has already parsed.
_MARKUP_RE = re.compile(
    r"<!--.*?-->"
    r"|<!\[CDATA\[.*?\]\]>"
    r"|<\?.*?\?>"
    r"|<!DOCTYPE(?:[^\[>]|\[.*?\])*>"
    r"|</(?P<close>[^\s>]+)\s*>"
    r"|<(?P<open>[^\s/>!?]+)(?:[^\"'>/]|\"[^\"]*\"|'[^']*'|/(?!>))*(?P<empty>/)?>",
    re.DOTALL,
)


class _Span(NamedTuple):
    """Offsets of one element in the raw document text."""
    name: str
    start: int
    open_end: int
    text_end: int
    close_start: int
    end: int
    empty: bool


def _locate(xml: str, *paths: str) -> dict[str, _Span]:
    """Find the first element at each slash-separated *path* in *xml*.

    Paths start at the root tag, as in :func:`_select`.  Offsets refer to
    *xml* itself, so edits can be spliced into the original text and every
    other byte (quoting, empty-tag style, BOM, declaration) stays as it was.
    """
    wanted = set(paths)
    found: dict[str, _Span] = {}
    stack: list[list] = []  # [name, start, open_end, text_end]
    for m in _MARKUP_RE.finditer(xml):
        if stack and stack[-1][3] is None and not m.group().startswith("<![CDATA["):
            stack[-1][3] = m.start()
        if m.group("open"):
            name = m.group("open")
            path = "/".join([frame[0] for frame in stack] + [name])
            if not m.group("empty"):
                stack.append([name, m.start(), m.end(), None])
            elif path in wanted and path not in found:
                found[path] = _Span(name, m.start(), m.end(), m.end(),
                                    m.end(), m.end(), True)
        elif m.group("close"):
            name, start, open_end, text_end = stack.pop()
            path = "/".join([frame[0] for frame in stack] + [name])
            if path in wanted and path not in found:
                found[path] = _Span(name, start, open_end, text_end,
                                    m.start(), m.end(), False)
        if len(found) == len(wanted):
            break
    return found


def _escape_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _open_tag(xml: str, span: _Span) -> str:
    """Start tag of an empty-element tag, e.g. ``<A x='1'/>`` -> ``<A x='1'>``."""
    return xml[span.start:span.end - 2].rstrip() + ">"


def _set_text(xml: str, span: _Span, text: str) -> tuple[int, int, str]:
    """Edit replacing the leading text of *span*, like ``element.text = text``."""
    text = _escape_text(text)
    if span.empty:
        return span.start, span.end, f"{_open_tag(xml, span)}{text}</{span.name}>"
    return span.open_end, span.text_end, text


def _append_child(xml: str, span: _Span, child: str) -> tuple[int, int, str]:
    """Edit inserting the markup *child* as the last child of *span*."""
    if span.empty:
        return span.start, span.end, f"{_open_tag(xml, span)}{child}</{span.name}>"
    return span.close_start, span.close_start, child


def _splice(xml: str, edits: list[tuple[int, int, str]]) -> str:
    """Apply non-overlapping ``(start, end, replacement)`` edits to *xml*."""
    for start, end, replacement in sorted(edits, reverse=True):
        xml = xml[:start] + replacement + xml[end:]
    return xml


def _select(root: etree._Element, path: str) -> Optional[etree._Element]:
    """Resolve an absolute, slash-separated *path* starting at the root tag.

    Equivalent to the XPath ``/<path>`` for plain child steps.
    """
    root_tag, _, rest = path.partition("/")
    if root.tag != root_tag:
        return None
    if not rest:
        return root
    return root.find(rest)


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _parse_bool(text: Optional[str]) -> bool:
    """Parse ``true``/``false`` (any case, surrounding whitespace ignored)."""
    normalised = (text or "").strip().lower()
    if normalised == "true":
        return True
    if normalised == "false":
        return False
    raise ValueError(f"'{text}' is not a valid boolean value")


# ---------------------------------------------------------------------------
# Real-time task documents
# ---------------------------------------------------------------------------

def set_disabled_and_autostart(rt_xml: str, disabled: bool, autostart: bool) -> str:
    """Set the ``<Disabled>`` and ``<AutoStart>`` flags of a task document.

    Args:
        rt_xml: XML produced by a real-time task tree item.
        disabled: New value for ``/TreeItem/Disabled``.
        autostart: New value for ``/TreeItem/TaskDef/AutoStart``.

    Returns:
        The updated document, or ``""`` if either element is missing.  An
        empty result must not be written back to the tree item.

    Raises:
        etree.XMLSyntaxError: If *rt_xml* is not well-formed.
    """
    _, root = _parse(rt_xml)

    if _select(root, DISABLED_PATH) is None:
        logger.debug("No <Disabled> element in task XML")
        return ""

    if _select(root, AUTOSTART_PATH) is None:
        logger.debug("No <TaskDef>/<AutoStart> element in task XML")
        return ""

    spans = _locate(rt_xml, DISABLED_PATH, AUTOSTART_PATH)
    return _splice(rt_xml, [
        _set_text(rt_xml, spans[DISABLED_PATH], _bool_text(disabled)),
        _set_text(rt_xml, spans[AUTOSTART_PATH], _bool_text(autostart)),
    ])


def get_disabled(rt_xml: str) -> Optional[bool]:
    """Return the ``<Disabled>`` flag, or ``None`` if the element is missing."""
    _, root = _parse(rt_xml)
    node = _select(root, DISABLED_PATH)
    return None if node is None else _parse_bool(node.text)


def get_autostart(rt_xml: str) -> Optional[bool]:
    """Return the ``<AutoStart>`` flag, or ``None`` if the element is missing."""
    _, root = _parse(rt_xml)
    node = _select(root, AUTOSTART_PATH)
    return None if node is None else _parse_bool(node.text)


def get_item_name(rt_xml: str) -> str:
    """Return the ``<ItemName>`` text of a tree item, or ``""`` if missing."""
    _, root = _parse(rt_xml)
    node = _select(root, ITEM_NAME_PATH)
    if node is None:
        return ""
    return node.text or ""


# ---------------------------------------------------------------------------
# PLC project documents
# ---------------------------------------------------------------------------

def get_ams_port(plc_xml: str) -> Optional[int]:
    """Return the ADS (AMS) port of a PLC project.

    Args:
        plc_xml: XML produced by a PLC project tree item (``TIPC^<name>``).

    Returns:
        The decimal value of ``/TreeItem/PlcProjectDef/AdsPort``, or
        ``None`` if the element is missing.

    Raises:
        ValueError: If the element text is not a decimal integer.
    """
    _, root = _parse(plc_xml)
    node = _select(root, ADS_PORT_PATH)
    if node is None:
        return None
    return int((node.text or "").strip())


def add_compiler_define(plc_xml: str, compiler_define: str) -> str:
    """Append a ``<CompilerDefines>`` element under ``PlcProjectDef``.

    No duplicate check is made: calling this twice on the same document
    yields two ``<CompilerDefines>`` siblings.

    Raises:
        ValueError: If the document has no ``/TreeItem/PlcProjectDef``.
    """
    _, root = _parse(plc_xml)
    if _select(root, PLC_PROJECT_DEF_PATH) is None:
        raise ValueError("PLC project XML has no <PlcProjectDef> element")

    child = (f"<{COMPILER_DEFINES_TAG}>{_escape_text(compiler_define)}"
             f"</{COMPILER_DEFINES_TAG}>")
    span = _locate(plc_xml, PLC_PROJECT_DEF_PATH)[PLC_PROJECT_DEF_PATH]
    return _splice(plc_xml, [_append_child(plc_xml, span, child)])


# ---------------------------------------------------------------------------
# Project files
# ---------------------------------------------------------------------------

def load_xml_file(file_path: str) -> etree._Element:
    """Parse an XML file from disk and return its root element."""
    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"XML file not found: {file_path}")
    return etree.parse(file_path, parser=_make_parser()).getroot()


def is_twincat_project_pinned(tsproj_path: str) -> bool:
    """Check whether a TwinCAT project pins its TwinCAT version.

    Args:
        tsproj_path: Path to the ``*.tsproj`` file.

    Returns:
        The value of ``TcVersionFixed`` on the ``TcSmProject`` root.  A
        different root element or a missing attribute both yield ``False``.
    """
    root = load_xml_file(tsproj_path)
    if root.tag != TWINCAT_PROJECT_ROOT:
        return False
    value = root.get(TC_VERSION_FIXED_ATTR)
    if value is None:
        return False
    return _parse_bool(value)
