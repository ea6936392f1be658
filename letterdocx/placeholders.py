import logging
import re
from typing import Dict, Optional, Pattern

from lxml import etree as LET

from .bidi import shape_text
from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .models import LetterForm
from .ooxml import set_run_text, w

logger = logging.getLogger(__name__)


class ReplacementMap:
    """Anchor spelling -> shaped value, for both the bracket and the literal conventions."""

    def __init__(self, bracket: Dict[str, str], literal: Dict[str, str], conventions: TemplateConventions):
        self.bracket = bracket
        self.literal = literal
        self.conventions = conventions
        self._lookup: Dict[str, str] = {}
        for key, value in bracket.items():
            self._lookup[f"{conventions.bracket_open}{key}{conventions.bracket_close}"] = value
        for anchor, value in literal.items():
            self._lookup.setdefault(anchor, value)
        self.pattern: Optional[Pattern[str]] = None
        if self._lookup:
            # Longest first, so an anchor that prefixes another never wins.
            keys = sorted(self._lookup, key=len, reverse=True)
            self.pattern = re.compile("|".join(re.escape(k) for k in keys))

    def value_for(self, anchor: str) -> str:
        return self._lookup[anchor]

    def sub(self, text: str) -> str:
        if self.pattern is None or not text:
            return text
        return self.pattern.sub(lambda m: self._lookup[m.group(0)], text)


def build_replacements(form: LetterForm, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> ReplacementMap:
    fields = form.text_fields()
    shaped = {key: shape_text(value) for key, value in fields.items()}
    literal: Dict[str, str] = {}
    for name, anchors in conventions.literal_anchors.items():
        value = shaped.get(name, "")
        if not value and name in conventions.never_empty_fields:
            value = " "
        for anchor in anchors:
            literal[anchor] = value
    return ReplacementMap(shaped, literal, conventions)


def replace_placeholders(root: LET._Element, replacements: ReplacementMap) -> int:
    """Substitute anchors inside every w:t of ``root``; returns the number of nodes changed."""
    changed = 0
    stray = set(replacements.conventions.stray_tokens)
    for t in list(root.iter(w("t"))):
        text = t.text or ""
        if not text:
            continue
        new_text = replacements.sub(text)
        if new_text != text:
            set_run_text(t, new_text)
            changed += 1
        elif text in stray:
            # «, key and » split across runs leave the delimiters behind.
            t.text = ""
            changed += 1
    return changed


def remaining_bracket_keys(root: LET._Element, conventions: TemplateConventions = DEFAULT_CONVENTIONS):
    pattern = re.compile(re.escape(conventions.bracket_open) + r"([^" + re.escape(conventions.bracket_close) + r"]+)" + re.escape(conventions.bracket_close))
    found = set()
    for t in root.iter(w("t")):
        found.update(pattern.findall(t.text or ""))
    return found
