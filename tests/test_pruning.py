from conftest import HEADER3, LIST_PARAGRAPH, NS_DECL, SENTINEL, SETTINGS, para, shape, xml_root
from letterdocx.conventions import DEFAULT_CONVENTIONS as CONV
from letterdocx.layout import enforce_page_size
from letterdocx.ooxml import MC_NS, WP_NS, text_of, w
from letterdocx.pruning import expand_distribution_list, find_list_paragraph, remove_named_shape, strip_mail_merge


def _doc(body):
    return xml_root(f"<w:document {NS_DECL}><w:body>{body}</w:body></w:document>")


def _paragraph_texts(root):
    return [text_of(p) for p in root.find(w("body")).findall(w("p"))]


def _shape_names(root):
    return sorted(d.get("name") for d in root.iter(f"{{{WP_NS}}}docPr"))


def test_list_paragraph_is_repeated_per_line():
    root = _doc(para("قبل") + LIST_PARAGRAPH + para("بعد"))
    assert expand_distribution_list(root, ["الإدارة العامة", "قسم الموارد & المالية", "الأرشيف"], CONV)
    assert _paragraph_texts(root) == ["قبل", "الإدارة العامة", "قسم الموارد & المالية", "الأرشيف", "بعد"]
    numbered = [p for p in root.iter(w("p")) if p.find(f"{w('pPr')}/{w('numPr')}") is not None]
    assert len(numbered) == 3
    assert SENTINEL not in text_of(root)


def test_unnumbered_sentinel_falls_back_to_first_line():
    root = _doc(para("قبل") + para(SENTINEL) + para("بعد"))
    assert find_list_paragraph(root, SENTINEL) is None
    assert expand_distribution_list(root, ["أولا", "ثانيا"], CONV)
    assert _paragraph_texts(root) == ["قبل", "أولا", "بعد"]


def test_empty_list_removes_the_paragraph_and_scrubs_the_sentinel():
    root = _doc(para("قبل") + LIST_PARAGRAPH + para(SENTINEL))
    assert expand_distribution_list(root, [], CONV)
    assert _paragraph_texts(root) == ["قبل", ""]
    assert SENTINEL not in text_of(root)


def test_missing_list_anchor_reports_false():
    root = _doc(para("نص"))
    assert not expand_distribution_list(root, ["سطر"], CONV)
    assert not expand_distribution_list(root, [], CONV)


def test_date_box_removed_by_name_only():
    root = xml_root(HEADER3)
    assert remove_named_shape(root, CONV.date_box_name, CONV.date_box_anchor_id) == 1
    assert _shape_names(root) == ["مستطيل 9"]
    assert len(list(root.iter(f"{{{MC_NS}}}AlternateContent"))) == 1


def test_date_box_falls_back_to_anchor_id():
    renamed = HEADER3.replace("مستطيل 7", "Rectangle 7")
    root = xml_root(renamed)
    assert remove_named_shape(root, CONV.date_box_name, CONV.date_box_anchor_id) == 1
    assert _shape_names(root) == ["مستطيل 9"]


def test_date_box_absent():
    root = xml_root(HEADER3.replace("مستطيل 7", "x").replace("6FBCC3A1", "00000000"))
    assert remove_named_shape(root, CONV.date_box_name, CONV.date_box_anchor_id) == 0
    assert len(_shape_names(root)) == 2


def test_only_the_innermost_shape_block_is_removed():
    inner = shape(CONV.date_box_name, "6FBCC3A1", 11)
    outer = shape("حاوية", "0F0F0F0F", 10, "").replace("<w:pict/>", "<w:pict/>" + inner)
    root = xml_root(f"<w:hdr {NS_DECL}><w:p><w:r>{outer}</w:r></w:p></w:hdr>")
    assert remove_named_shape(root, CONV.date_box_name, CONV.date_box_anchor_id) == 1
    assert _shape_names(root) == ["حاوية"]


def test_mail_merge_block_is_removed():
    root = xml_root(SETTINGS)
    assert strip_mail_merge(root) == 1
    assert root.find(w("mailMerge")) is None
    assert root.find(w("zoom")) is not None and root.find(w("defaultTabStop")) is not None


def test_page_size_forced_to_a4():
    root = _doc(para("x") + '<w:sectPr><w:pgMar w:top="1"/></w:sectPr>')
    assert enforce_page_size(root, CONV) == 1
    sect = root.find(f"{w('body')}/{w('sectPr')}")
    pg_sz = sect.find(w("pgSz"))
    assert (pg_sz.get(w("w")), pg_sz.get(w("h"))) == ("11906", "16838")
    assert list(sect).index(pg_sz) < list(sect).index(sect.find(w("pgMar")))
