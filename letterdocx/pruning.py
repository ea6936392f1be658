import copy
import logging
from typing import List, Optional, Sequence

from lxml import etree as LET

from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .ooxml import MC_NS, WP14_NS, WP_NS, nearest_ancestor, set_run_text, w

logger = logging.getLogger(__name__)

ALTERNATE_CONTENT = f"{{{MC_NS}}}AlternateContent"


# ------------ distribution ("copy to") list ------------
def _sentinel_nodes(root: LET._Element, sentinel: str) -> List[LET._Element]:
    return [t for t in root.iter(w("t")) if t.text == sentinel]


def find_list_paragraph(root: LET._Element, sentinel: str) -> Optional[LET._Element]:
    """The numbered paragraph whose final run holds only the sentinel."""
    for p in root.iter(w("p")):
        p_pr = p.find(w("pPr"))
        if p_pr is None or p_pr.find(w("numPr")) is None:
            continue
        runs = [r for r in p if r.tag == w("r")]
        if not runs:
            continue
        texts = runs[-1].findall(w("t"))
        if texts and texts[-1].text == sentinel:
            return p
    return None


def expand_distribution_list(
    root: LET._Element,
    lines: Sequence[str],
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
) -> bool:
    """Repeat (or drop) the distribution-list paragraph; False when no anchor exists in ``root``."""
    sentinel = conventions.distribution_sentinel
    paragraph = find_list_paragraph(root, sentinel)

    if lines:
        if paragraph is not None:
            parent = paragraph.getparent()
            idx = parent.index(paragraph)
            for offset, line in enumerate(lines):
                clone = copy.deepcopy(paragraph)
                for t in _sentinel_nodes(clone, sentinel):
                    set_run_text(t, line)
                parent.insert(idx + offset, clone)
            parent.remove(paragraph)
            return True
        nodes = _sentinel_nodes(root, sentinel)
        for t in nodes:
            set_run_text(t, lines[0])
        return bool(nodes)

    found = paragraph is not None
    if paragraph is not None:
        paragraph.getparent().remove(paragraph)
    for t in _sentinel_nodes(root, sentinel):
        t.text = ""
        found = True
    return found


# ------------ date box ------------
def _shape_block(anchor_el: LET._Element) -> LET._Element:
    block = nearest_ancestor(anchor_el, ALTERNATE_CONTENT)
    if block is None:
        block = nearest_ancestor(anchor_el, w("drawing"))
    return block if block is not None else anchor_el


def remove_named_shape(root: LET._Element, name: str, anchor_id: Optional[str] = None) -> int:
    """Remove the floating shape declared as ``name``, falling back to its wp14:anchorId."""
    targets = [
        _shape_block(doc_pr)
        for doc_pr in root.iter(f"{{{WP_NS}}}docPr")
        if doc_pr.get("name") == name
    ]
    if not targets and anchor_id:
        targets = [
            _shape_block(el)
            for el in root.iter(f"{{{WP_NS}}}anchor", f"{{{WP_NS}}}inline")
            if el.get(f"{{{WP14_NS}}}anchorId") == anchor_id
        ]
    removed = 0
    seen = set()
    for block in targets:
        if id(block) in seen:
            continue
        seen.add(id(block))
        parent = block.getparent()
        if parent is None:
            continue
        parent.remove(block)
        removed += 1
    return removed


# ------------ mail merge ------------
def strip_mail_merge(settings_root: LET._Element) -> int:
    blocks = settings_root.findall(w("mailMerge"))
    for block in blocks:
        settings_root.remove(block)
    return len(blocks)
