from enum import Enum

from lxml import etree as LET

from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .ooxml import insert_in_order, w

# Elements that follow w:tblW / w:tblLayout / w:noWrap in schema order.
TBLW_SUCCESSORS = ("jc", "tblCellSpacing", "tblInd", "tblBorders", "shd", "tblLayout", "tblCellMar", "tblLook", "tblCaption", "tblDescription")
TBLLAYOUT_SUCCESSORS = ("tblCellMar", "tblLook", "tblCaption", "tblDescription")
NOWRAP_SUCCESSORS = ("tcMar", "textDirection", "tcFitText", "vAlign", "hideMark", "headers", "cellIns", "cellDel", "cellMerge", "tcPrChange")
PGSZ_SUCCESSORS = ("pgMar", "paperSrc", "pgBorders", "lnNumType", "pgNumType", "cols", "formProt", "vAlign", "noEndnote", "titlePg", "textDirection", "bidi", "rtlGutter", "docGrid", "printerSettings", "sectPrChange")


class RenderTarget(str, Enum):
    DESKTOP = "desktop"  # full-featured word processor
    MOBILE = "mobile"    # constrained LibreOffice-based engine


class TableLayout:
    """How a synthesized table declares its width and layout to the renderer."""

    layout_type = "autofit"
    no_wrap_short_columns = False
    force_page_size = False

    def __init__(self, conventions: TemplateConventions = DEFAULT_CONVENTIONS):
        self.conventions = conventions

    def apply_table_properties(self, tbl_pr: LET._Element):
        tbl_w = tbl_pr.find(w("tblW"))
        if tbl_w is None:
            tbl_w = insert_in_order(tbl_pr, LET.Element(w("tblW")), TBLW_SUCCESSORS)
        tbl_w.attrib.clear()
        tbl_w.set(w("w"), str(self.conventions.table_width_pct))
        tbl_w.set(w("type"), "pct")
        for old in tbl_pr.findall(w("tblLayout")):
            tbl_pr.remove(old)
        layout = LET.Element(w("tblLayout"))
        layout.set(w("type"), self.layout_type)
        insert_in_order(tbl_pr, layout, TBLLAYOUT_SUCCESSORS)

    def adjust_cell_properties(self, tc_pr: LET._Element, is_notes: bool):
        if not self.no_wrap_short_columns or is_notes:
            return
        if tc_pr.find(w("noWrap")) is None:
            insert_in_order(tc_pr, LET.Element(w("noWrap")), NOWRAP_SUCCESSORS)


class AutofitLayout(TableLayout):
    layout_type = "autofit"
    no_wrap_short_columns = True


class FixedLayout(TableLayout):
    layout_type = "fixed"
    force_page_size = True


def layout_for(target: RenderTarget, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> TableLayout:
    if RenderTarget(target) is RenderTarget.MOBILE:
        return FixedLayout(conventions)
    return AutofitLayout(conventions)


def enforce_page_size(root: LET._Element, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> int:
    """Force every section of ``root`` to the configured page size; returns sections touched."""
    width, height = conventions.page_size_twips
    touched = 0
    for sect in root.iter(w("sectPr")):
        pg_sz = sect.find(w("pgSz"))
        if pg_sz is None:
            pg_sz = insert_in_order(sect, LET.Element(w("pgSz")), PGSZ_SUCCESSORS)
        pg_sz.attrib.clear()
        pg_sz.set(w("w"), str(width))
        pg_sz.set(w("h"), str(height))
        touched += 1
    return touched
