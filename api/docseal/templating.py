"""
Template Renderer
=================
Flat ``{{placeholder}}`` substitution for DOCX templates.

Workflow:
1. Open the DOCX package
2. Walk every paragraph of the body, header and footer parts
3. Replace placeholders with formatted values across text nodes
4. Return the populated DOCX bytes
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from io import BytesIO
from typing import Any, Callable, Iterator, List, Mapping, Optional

from docx import Document
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml.ns import qn

from .errors import TemplateError
from .logger import get_logger

log = get_logger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")

DATE_HINTS = ("data", "date", "prazo", "vencimento")
AMOUNT_HINTS = ("valor", "preco", "custo", "total", "amount", "price")
DATE_FORMAT = "%d/%m/%Y"
THOUSANDS_SEP = "."
DECIMAL_SEP = ","
MAX_FRACTION_DIGITS = 3

W_P = qn("w:p")
W_T = qn("w:t")
XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"
STORY_RELTYPES = (RT.HEADER, RT.FOOTER)


class MissingValuePolicy(str, Enum):
    EMPTY = "empty"    # substitute ""
    KEEP = "keep"      # leave the placeholder text in place
    STRICT = "strict"  # fail the item


def guess_kind(name: str) -> str:
    lowered = name.lower()
    if any(hint in lowered for hint in DATE_HINTS):
        return "date"
    if any(hint in lowered for hint in AMOUNT_HINTS):
        return "number"
    return "text"


def format_number(value) -> str:
    try:
        quantum = Decimal(1).scaleb(-MAX_FRACTION_DIGITS)
        number = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return str(value)
    text = format(number, ",f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text.replace(",", "\x00").replace(".", DECIMAL_SEP).replace("\x00", THOUSANDS_SEP)


def format_date(value) -> Optional[str]:
    if isinstance(value, (date, datetime)):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, str):
        match = ISO_DATE_RE.match(value.strip())
        if match:
            try:
                return date(*(int(part) for part in match.groups())).strftime(DATE_FORMAT)
            except ValueError:
                return None
    return None


def format_value(name: str, value: Any) -> str:
    kind = guess_kind(name)
    if kind == "date":
        formatted = format_date(value)
        if formatted is not None:
            return formatted
    elif kind == "number":
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return format_number(value)
    return str(value)


def _open(source: bytes):
    try:
        return Document(BytesIO(source))
    except Exception as exc:
        raise TemplateError(f"template container is corrupt or unreadable: {exc}") from exc


def _story_roots(doc) -> Iterator:
    """Body first, then every header and footer part of the package."""
    yield doc.element.body
    for rel in doc.part.rels.values():
        if rel.is_external or rel.reltype not in STORY_RELTYPES:
            continue
        element = getattr(rel.target_part, "element", None)
        if element is not None:
            yield element


def _owner_paragraph(node):
    parent = node.getparent()
    while parent is not None and parent.tag != W_P:
        parent = parent.getparent()
    return parent


def _iter_paragraphs(doc) -> Iterator[List]:
    """
    Yield the ``w:t`` nodes of each ``w:p``, in document order.

    Text inside hyperlinks, content controls and fields belongs to the
    enclosing paragraph; a text box carries its own paragraphs, which are
    yielded separately and never counted twice.
    """
    for root in _story_roots(doc):
        for paragraph in root.iter(W_P):
            nodes = [t for t in paragraph.iter(W_T) if _owner_paragraph(t) is paragraph]
            if nodes:
                yield nodes


def _paragraph_text(nodes) -> str:
    return "".join(t.text or "" for t in nodes)


def extract_placeholders(source: bytes) -> List[str]:
    """Ordered, unique placeholder names found anywhere in the template."""
    doc = _open(source)
    names: List[str] = []
    try:
        for nodes in _iter_paragraphs(doc):
            for match in PLACEHOLDER_RE.finditer(_paragraph_text(nodes)):
                if match.group(1) not in names:
                    names.append(match.group(1))
    except Exception as exc:
        raise TemplateError(f"template structure is corrupt: {exc}") from exc
    return names


def _replace_in_paragraph(nodes, resolve: Callable[[str], Optional[str]]) -> int:
    texts = [t.text or "" for t in nodes]
    full = "".join(texts)
    if "{{" not in full:
        return 0
    matches = list(PLACEHOLDER_RE.finditer(full))
    if not matches:
        return 0

    starts = []
    offset = 0
    for text in texts:
        starts.append(offset)
        offset += len(text)

    def node_at(position: int) -> int:
        for idx in range(len(texts) - 1, -1, -1):
            if starts[idx] <= position and (texts[idx] or idx == 0):
                return idx
        return 0

    new_texts = list(texts)
    replaced = 0
    # right to left keeps the offsets of earlier matches valid
    for match in reversed(matches):
        replacement = resolve(match.group(1))
        if replacement is None:
            continue
        start, end = match.span()
        first, last = node_at(start), node_at(end - 1)
        head = new_texts[first][: start - starts[first]]
        if first == last:
            tail = new_texts[first][end - starts[first]:]
            new_texts[first] = head + replacement + tail
        else:
            new_texts[first] = head + replacement
            for idx in range(first + 1, last):
                new_texts[idx] = ""
            new_texts[last] = new_texts[last][end - starts[last]:]
        replaced += 1

    for node, old, new in zip(nodes, texts, new_texts):
        if old != new:
            node.text = new
            node.set(XML_SPACE, "preserve")
    return replaced


class TemplateRenderer:
    """Populates DOCX templates; missing values follow ``missing``."""

    def __init__(self, missing: MissingValuePolicy = MissingValuePolicy.EMPTY):
        self.missing = MissingValuePolicy(missing)

    def _resolver(self, values: Mapping[str, Any]) -> Callable[[str], Optional[str]]:
        def resolve(name: str) -> Optional[str]:
            value = values.get(name)
            if value is None:
                if self.missing is MissingValuePolicy.KEEP:
                    return None
                if self.missing is MissingValuePolicy.STRICT:
                    raise TemplateError(f"no value supplied for placeholder '{name}'")
                return ""
            return format_value(name, value)
        return resolve

    def render(self, source: bytes, values: Mapping[str, Any]) -> bytes:
        doc = _open(source)
        resolve = self._resolver(values or {})
        try:
            count = sum(_replace_in_paragraph(p, resolve) for p in _iter_paragraphs(doc))
            out = BytesIO()
            doc.save(out)
        except TemplateError:
            raise
        except Exception as exc:
            raise TemplateError(f"template structure is corrupt: {exc}") from exc
        log.debug("Rendered template: {} placeholder(s) replaced", count)
        return out.getvalue()
