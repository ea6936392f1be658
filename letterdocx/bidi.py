"""Directional repair for text that lands in right-to-left paragraphs.

Word renders a right-to-left paragraph with the Unicode bidi algorithm, which
reorders neutral characters (slashes, periods) and digit runs relative to the
surrounding Arabic words. Wrapping each left-to-right token in an explicit
LRE..PDF embedding, flanking slashes and period runs with RLM marks, and
embedding the whole line in RLE..PDF keeps the typed order on screen.
"""
import re
from typing import List

from .ooxml import xml_safe_text

RLE = "\u202b"
LRE = "\u202a"
PDF = "\u202c"
RLM = "\u200f"
LRM = "\u200e"

DIRECTIONAL_MARKS = (RLE, LRE, PDF, RLM, LRM)
LINE_BREAK_MARKUP = "</w:t><w:br/><w:t>"

_NEEDS_FIX = re.compile(r"[A-Za-z0-9/\\]|\.{2,}")
_LTR_CHARS = r"A-Za-z0-9<>&*%$#@!+=\\?_\-^~|\[\]{}();:\"'"
_TOKENS = re.compile(
    rf"(?P<ltr>[{_LTR_CHARS}]+(?:\.[{_LTR_CHARS}]+)*)"
    r"|(?P<slash>[/\\])"
    r"|(?P<dots>\.+)(?P<space> ?)"
)
_STRIP_MARKS = re.compile("[" + "".join(DIRECTIONAL_MARKS) + "]")


def needs_shaping(text: str) -> bool:
    return bool(_NEEDS_FIX.search(text or ""))


def _wrap(match: re.Match) -> str:
    if match.group("ltr"):
        return LRE + match.group("ltr") + PDF
    if match.group("slash"):
        return RLM + match.group("slash") + RLM
    return RLM + match.group("dots") + RLM + match.group("space")


def shape_line(line: str) -> str:
    """Shape a single line; lines without LTR content come back unchanged."""
    if not needs_shaping(line):
        return line
    out = _TOKENS.sub(_wrap, line)
    if out.endswith("."):
        out = out + RLM
    return RLE + out + PDF


def shape_text(text: str) -> str:
    """Shape every line independently; newlines are kept as ``\\n``."""
    if not text:
        return ""
    text = xml_safe_text(text)
    return "\n".join(shape_line(line) for line in text.split("\n"))


def escape_markup(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def shape_markup(text: str) -> str:
    """Shaped, escaped text ready to be spliced between ``<w:t>`` tags."""
    if not text:
        return ""
    lines: List[str] = [escape_markup(shape_line(line)) for line in xml_safe_text(text).split("\n")]
    return LINE_BREAK_MARKUP.join(lines)


def strip_marks(text: str) -> str:
    return _STRIP_MARKS.sub("", text)
