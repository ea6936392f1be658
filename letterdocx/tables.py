import copy
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from lxml import etree as LET

from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .layout import TableLayout
from .models import TableModel
from .ooxml import children, set_run_text, text_of, w

logger = logging.getLogger(__name__)

# Cell properties that would break the one-cell-per-grid-column invariant.
SPAN_PROPS = ("gridSpan", "hMerge", "vMerge")


@dataclass
class TableStyle:
    tbl_pr: Optional[LET._Element]
    declared_width: int
    header_row: LET._Element
    data_row: LET._Element
    header_cell: LET._Element
    data_cell: LET._Element


def find_fingerprint_tables(root: LET._Element, label: str) -> List[LET._Element]:
    """Innermost tables whose text carries ``label``."""
    matches = [tbl for tbl in root.iter(w("tbl")) if label in text_of(tbl)]
    return [
        tbl for tbl in matches
        if not any(other is not tbl and _is_descendant(other, tbl) for other in matches)
    ]


def _is_descendant(node: LET._Element, ancestor: LET._Element) -> bool:
    parent = node.getparent()
    while parent is not None:
        if parent is ancestor:
            return True
        parent = parent.getparent()
    return False


def extract_style(tbl: LET._Element) -> Optional[TableStyle]:
    rows = children(tbl, "tr")
    if not rows:
        return None
    header_row = rows[0]
    data_row = rows[1] if len(rows) > 1 else rows[0]
    header_cells = children(header_row, "tc")
    if not header_cells:
        return None
    data_cells = children(data_row, "tc")

    declared = 0
    grid = tbl.find(w("tblGrid"))
    if grid is not None:
        for col in children(grid, "gridCol"):
            try:
                declared += int(col.get(w("w"), "0"))
            except ValueError:
                continue

    return TableStyle(
        tbl_pr=tbl.find(w("tblPr")),
        declared_width=declared,
        header_row=header_row,
        data_row=data_row,
        header_cell=header_cells[0],
        data_cell=data_cells[0] if data_cells else header_cells[0],
    )


def notes_column_index(header: Sequence[str], label: str) -> int:
    idx = -1
    for i, text in enumerate(header):
        if text and label in text:
            idx = i
    return idx


def column_widths(
    rows: Sequence[Sequence[str]],
    notes_idx: int,
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
    declared_width: int = 0,
) -> List[int]:
    """Width in twips per column from its longest cell text.

    The notes column gets a large fixed width that never falls below the
    widest other column.
    """
    col_count = len(rows[0]) if rows else 0
    widths: List[int] = []
    for col in range(col_count):
        if col == notes_idx:
            widths.append(0)
            continue
        longest = max(len(row[col] or "") for row in rows)
        widths.append(max(longest * conventions.char_width + conventions.cell_padding, conventions.min_column_width))
    if 0 <= notes_idx < col_count:
        base = conventions.notes_column_width
        if base is None:
            base = declared_width
        others = [wd for i, wd in enumerate(widths) if i != notes_idx]
        widths[notes_idx] = max(base or 0, max(others, default=0), conventions.min_column_width)
    return widths


def _first_props(cell: LET._Element, tag: str) -> Optional[LET._Element]:
    if tag == "rPr":
        found = cell.find(f".//{w('r')}/{w('rPr')}")
        if found is not None:
            return found
    return cell.find(f".//{w(tag)}")


def build_cell(template: LET._Element, text: str, width: int, is_notes: bool, layout: TableLayout) -> LET._Element:
    tc = LET.Element(w("tc"))

    tc_pr_src = template.find(w("tcPr"))
    tc_pr = copy.deepcopy(tc_pr_src) if tc_pr_src is not None else LET.Element(w("tcPr"))
    for name in SPAN_PROPS:
        for el in tc_pr.findall(w(name)):
            tc_pr.remove(el)
    tc_w = tc_pr.find(w("tcW"))
    if tc_w is None:
        tc_w = LET.Element(w("tcW"))
        tc_pr.insert(0, tc_w)
    tc_w.attrib.clear()
    tc_w.set(w("w"), str(width))
    tc_w.set(w("type"), "dxa")
    if tc_pr_src is None:
        v_align = LET.SubElement(tc_pr, w("vAlign"))
        v_align.set(w("val"), "center")
    layout.adjust_cell_properties(tc_pr, is_notes)
    tc.append(tc_pr)

    p = LET.SubElement(tc, w("p"))
    p_pr = _first_props(template, "pPr")
    if p_pr is not None:
        p.append(copy.deepcopy(p_pr))
    else:
        p_pr = LET.SubElement(p, w("pPr"))
        jc = LET.SubElement(p_pr, w("jc"))
        jc.set(w("val"), "center")
    run = LET.SubElement(p, w("r"))
    r_pr = _first_props(template, "rPr")
    if r_pr is not None:
        run.append(copy.deepcopy(r_pr))
    t = LET.SubElement(run, w("t"))
    set_run_text(t, text or "")
    return tc


def _row_properties(row_template: LET._Element) -> LET._Element:
    tr_pr = row_template.find(w("trPr"))
    if tr_pr is not None:
        return copy.deepcopy(tr_pr)
    tr_pr = LET.Element(w("trPr"))
    jc = LET.SubElement(tr_pr, w("jc"))
    jc.set(w("val"), "center")
    return tr_pr


def build_table(
    model: TableModel,
    style: TableStyle,
    layout: TableLayout,
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
) -> LET._Element:
    rows = model.rows
    notes_idx = notes_column_index(rows[0], conventions.notes_label)
    widths = column_widths(rows, notes_idx, conventions, style.declared_width)

    tbl = LET.Element(w("tbl"))
    tbl_pr = copy.deepcopy(style.tbl_pr) if style.tbl_pr is not None else LET.Element(w("tblPr"))
    layout.apply_table_properties(tbl_pr)
    tbl.append(tbl_pr)

    grid = LET.SubElement(tbl, w("tblGrid"))
    for width in widths:
        col = LET.SubElement(grid, w("gridCol"))
        col.set(w("w"), str(width))

    for row_idx, row in enumerate(rows):
        is_header = row_idx == 0
        cell_template = style.header_cell if is_header else style.data_cell
        row_template = style.header_row if is_header else style.data_row
        tr = LET.SubElement(tbl, w("tr"))
        tr.append(_row_properties(row_template))
        for col_idx, text in enumerate(row):
            tr.append(build_cell(cell_template, text, widths[col_idx], col_idx == notes_idx, layout))
    return tbl


def synthesize_tables(
    root: LET._Element,
    model: Optional[TableModel],
    use_table: bool,
    layout: TableLayout,
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
) -> int:
    """Rebuild (or drop) every fingerprinted table; returns how many were found."""
    matches = find_fingerprint_tables(root, conventions.notes_label)
    for tbl in matches:
        parent = tbl.getparent()
        if parent is None:
            continue
        if not use_table or model is None:
            parent.remove(tbl)
            if parent.tag == w("tc") and parent.find(w("p")) is None:
                # a cell must still end in a paragraph
                LET.SubElement(parent, w("p"))
            continue
        style = extract_style(tbl)
        if style is None:
            logger.warning("table carrying %r has no header cell; left as is", conventions.notes_label)
            continue
        parent.replace(tbl, build_table(model, style, layout, conventions))
    return len(matches)
