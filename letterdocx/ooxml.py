import posixpath
import re
from typing import Iterable, List, Optional, Tuple

from lxml import etree as LET

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
WP14_NS = "http://schemas.microsoft.com/office/word/2010/wordprocessingDrawing"
MC_NS = "http://schemas.openxmlformats.org/markup-compatibility/2006"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
PIC_NS = "http://schemas.openxmlformats.org/drawingml/2006/picture"
XML_NS = "http://www.w3.org/XML/1998/namespace"
CONTENT_TYPES_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
EMU_PER_INCH = 914400
IMAGE_REL_TYPE = f"{R_NS}/image"
CONTENT_TYPES_PART = "[Content_Types].xml"

DRAWING_NSMAP = {"w": W_NS, "r": R_NS, "wp": WP_NS, "a": A_NS, "pic": PIC_NS}

MEDIA_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "bmp": "image/bmp",
}


def w(tag: str) -> str:
    return f"{{{W_NS}}}{tag}"


def parse_xml(data: bytes) -> LET._Element:
    parser = LET.XMLParser(remove_blank_text=False, resolve_entities=False, huge_tree=True)
    return LET.fromstring(data, parser)


def serialize_xml(root: LET._Element) -> bytes:
    return LET.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)


# Characters XML 1.0 cannot carry. \x0b is Word's manual line break.
_XML_ILLEGAL = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def xml_safe_text(text: str) -> str:
    return _XML_ILLEGAL.sub("", (text or "").replace("\x0b", "\n"))


def _preserve_space(node: LET._Element, text: str):
    if text.strip() != text or text == "":
        node.set(f"{{{XML_NS}}}space", "preserve")
    else:
        node.attrib.pop(f"{{{XML_NS}}}space", None)


def set_run_text(node: LET._Element, text: str):
    """Set a w:t node's text, turning newlines into w:br + w:t siblings inside the run."""
    parts = xml_safe_text(text).split("\n")
    node.text = parts[0]
    _preserve_space(node, parts[0])
    run = node.getparent()
    if len(parts) == 1:
        return
    if run is None or run.tag != w("r"):
        node.text = text
        return
    idx = run.index(node)
    for part in parts[1:]:
        br = LET.Element(w("br"))
        run.insert(idx + 1, br)
        t = LET.Element(w("t"))
        t.set(f"{{{XML_NS}}}space", "preserve")
        t.text = part
        run.insert(idx + 2, t)
        idx += 2


def text_of(el: LET._Element) -> str:
    return "".join(t.text or "" for t in el.iter(w("t")))


def insert_in_order(parent: LET._Element, child: LET._Element, successors: Iterable[str]) -> LET._Element:
    """Insert ``child`` before the first existing sibling whose tag is in ``successors``."""
    names = {w(s) for s in successors}
    for idx, existing in enumerate(parent):
        if existing.tag in names:
            parent.insert(idx, child)
            return child
    parent.append(child)
    return child


def nearest_ancestor(el: LET._Element, tag: str) -> Optional[LET._Element]:
    node = el.getparent()
    while node is not None:
        if node.tag == tag:
            return node
        node = node.getparent()
    return None


# ------------ relationships ------------
def part_rels_name(part: str) -> str:
    folder, base = posixpath.split(part)
    return posixpath.join(folder, "_rels", base + ".rels")


def new_rels_root() -> LET._Element:
    return LET.Element(f"{{{REL_NS}}}Relationships", nsmap={None: REL_NS})


def max_rel_id(rels_root: LET._Element) -> int:
    rid_max = 0
    for rel in rels_root.findall(f"{{{REL_NS}}}Relationship"):
        rid = rel.get("Id", "")
        if rid.startswith("rId") and rid[3:].isdigit():
            rid_max = max(rid_max, int(rid[3:]))
    return rid_max


def add_relationship(rels_root: LET._Element, target: str, rel_type: str = IMAGE_REL_TYPE) -> Tuple[str, LET._Element]:
    new_id = f"rId{max_rel_id(rels_root) + 1}"
    rel = LET.SubElement(rels_root, f"{{{REL_NS}}}Relationship")
    rel.set("Id", new_id)
    rel.set("Type", rel_type)
    rel.set("Target", target)
    return new_id, rel


def max_docpr_id(roots: Iterable[LET._Element]) -> int:
    max_id = 0
    for root in roots:
        for el in root.iter(f"{{{WP_NS}}}docPr"):
            try:
                max_id = max(max_id, int(el.get("id", "0")))
            except ValueError:
                continue
    return max_id


# ------------ content types ------------
def ensure_default_content_type(ct_root: LET._Element, ext: str) -> bool:
    ext = ext.lower()
    for node in ct_root.findall(f"{{{CONTENT_TYPES_NS}}}Default"):
        if (node.get("Extension") or "").lower() == ext:
            return False
    node = LET.SubElement(ct_root, f"{{{CONTENT_TYPES_NS}}}Default")
    node.set("Extension", ext)
    node.set("ContentType", MEDIA_CONTENT_TYPES.get(ext, f"image/{ext}"))
    return True


def remove_override(ct_root: LET._Element, part: str) -> bool:
    removed = False
    wanted = "/" + part.lstrip("/")
    for node in ct_root.findall(f"{{{CONTENT_TYPES_NS}}}Override"):
        if node.get("PartName") == wanted:
            ct_root.remove(node)
            removed = True
    return removed


# ------------ drawings ------------
def make_inline_drawing(rid: str, docpr_id: int, cx: int, cy: int, name: str) -> LET._Element:
    drawing = LET.Element(w("drawing"), nsmap=DRAWING_NSMAP)
    inline = LET.SubElement(drawing, f"{{{WP_NS}}}inline")
    for key in ("distT", "distB", "distL", "distR"):
        inline.set(key, "0")
    extent = LET.SubElement(inline, f"{{{WP_NS}}}extent")
    extent.set("cx", str(max(cx, 1)))
    extent.set("cy", str(max(cy, 1)))
    effect = LET.SubElement(inline, f"{{{WP_NS}}}effectExtent")
    for key in ("l", "t", "r", "b"):
        effect.set(key, "0")
    docpr = LET.SubElement(inline, f"{{{WP_NS}}}docPr")
    docpr.set("id", str(docpr_id))
    docpr.set("name", name)
    cNvGraphic = LET.SubElement(inline, f"{{{WP_NS}}}cNvGraphicFramePr")
    locks = LET.SubElement(cNvGraphic, f"{{{A_NS}}}graphicFrameLocks")
    locks.set("noChangeAspect", "1")
    graphic = LET.SubElement(inline, f"{{{A_NS}}}graphic")
    graphic_data = LET.SubElement(graphic, f"{{{A_NS}}}graphicData")
    graphic_data.set("uri", PIC_NS)
    pic = LET.SubElement(graphic_data, f"{{{PIC_NS}}}pic")
    nv_pic = LET.SubElement(pic, f"{{{PIC_NS}}}nvPicPr")
    cNvPr = LET.SubElement(nv_pic, f"{{{PIC_NS}}}cNvPr")
    cNvPr.set("id", str(docpr_id))
    cNvPr.set("name", name)
    LET.SubElement(nv_pic, f"{{{PIC_NS}}}cNvPicPr")
    blip_fill = LET.SubElement(pic, f"{{{PIC_NS}}}blipFill")
    blip = LET.SubElement(blip_fill, f"{{{A_NS}}}blip")
    blip.set(f"{{{R_NS}}}embed", rid)
    stretch = LET.SubElement(blip_fill, f"{{{A_NS}}}stretch")
    LET.SubElement(stretch, f"{{{A_NS}}}fillRect")
    sp_pr = LET.SubElement(pic, f"{{{PIC_NS}}}spPr")
    xfrm = LET.SubElement(sp_pr, f"{{{A_NS}}}xfrm")
    off = LET.SubElement(xfrm, f"{{{A_NS}}}off")
    off.set("x", "0")
    off.set("y", "0")
    ext = LET.SubElement(xfrm, f"{{{A_NS}}}ext")
    ext.set("cx", str(max(cx, 1)))
    ext.set("cy", str(max(cy, 1)))
    prst = LET.SubElement(sp_pr, f"{{{A_NS}}}prstGeom")
    prst.set("prst", "rect")
    LET.SubElement(prst, f"{{{A_NS}}}avLst")
    return drawing


def make_page_image_paragraph(drawing: LET._Element) -> LET._Element:
    """A centred paragraph that starts a new page and holds one drawing."""
    p = LET.Element(w("p"), nsmap={"w": W_NS})
    ppr = LET.SubElement(p, w("pPr"))
    LET.SubElement(ppr, w("pageBreakBefore"))
    jc = LET.SubElement(ppr, w("jc"))
    jc.set(w("val"), "center")
    run = LET.SubElement(p, w("r"))
    run.append(drawing)
    return p


def children(el: LET._Element, tag: str) -> List[LET._Element]:
    return [c for c in el if c.tag == w(tag)]
