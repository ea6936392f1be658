import io
import struct
import zipfile

import pytest
from PIL import Image

from letterdocx.ooxml import parse_xml

NS_DECL = (
    'xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main" '
    'xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships" '
    'xmlns:wp="http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing" '
    'xmlns:wp14="http://schemas.microsoft.com/office/word/2010/wordprocessingDrawing" '
    'xmlns:mc="http://schemas.openxmlformats.org/markup-compatibility/2006" '
    'xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main" '
    'xmlns:wps="http://schemas.microsoft.com/office/word/2010/wordprocessingShape"'
)

NOTES = "ملاحظة"
SENTINEL = "للدائرلل"


def para(text, ppr=""):
    return f'<w:p>{ppr}<w:r><w:rPr><w:rtl/></w:rPr><w:t xml:space="preserve">{text}</w:t></w:r></w:p>'


def cell(text, width):
    return (
        f'<w:tc><w:tcPr><w:tcW w:w="{width}" w:type="dxa"/><w:shd w:val="clear" w:fill="D9D9D9"/>'
        f'<w:vAlign w:val="center"/></w:tcPr>'
        f'<w:p><w:pPr><w:bidi/><w:jc w:val="center"/></w:pPr>'
        f'<w:r><w:rPr><w:b/><w:rtl/></w:rPr><w:t>{text}</w:t></w:r></w:p></w:tc>'
    )


NOTES_TABLE = (
    '<w:tbl><w:tblPr><w:tblStyle w:val="TableGrid"/><w:bidiVisual/><w:tblW w:w="0" w:type="auto"/>'
    '<w:tblLayout w:type="fixed"/><w:tblLook w:val="04A0"/></w:tblPr>'
    '<w:tblGrid><w:gridCol w:w="1000"/><w:gridCol w:w="3000"/><w:gridCol w:w="6200"/></w:tblGrid>'
    '<w:tr><w:trPr><w:tblHeader/><w:jc w:val="center"/></w:trPr>'
    + cell("م", 1000) + cell("الاسم", 3000) + cell(NOTES, 6200)
    + '</w:tr><w:tr><w:trPr><w:jc w:val="center"/></w:trPr>'
    + cell("1", 1000) + cell("", 3000) + cell("", 6200)
    + '</w:tr></w:tbl>'
)

OTHER_TABLE = (
    '<w:tbl><w:tblPr><w:tblW w:w="0" w:type="auto"/></w:tblPr>'
    '<w:tblGrid><w:gridCol w:w="2000"/></w:tblGrid>'
    '<w:tr>' + cell("جدول آخر", 2000) + '</w:tr></w:tbl>'
)

LIST_PARAGRAPH = (
    '<w:p w:rsidR="00A1"><w:pPr><w:pStyle w:val="ListParagraph"/><w:numPr><w:ilvl w:val="0"/>'
    f'<w:numId w:val="3"/></w:numPr><w:bidi/></w:pPr><w:r><w:rPr><w:rtl/></w:rPr><w:t>{SENTINEL}</w:t></w:r></w:p>'
)

INLINE_LOGO = (
    '<w:p><w:r><w:drawing><wp:inline><wp:extent cx="100" cy="100"/><wp:docPr id="7" name="Logo"/>'
    '<a:graphic><a:graphicData uri="http://schemas.openxmlformats.org/drawingml/2006/picture"/></a:graphic>'
    '</wp:inline></w:drawing></w:r></w:p>'
)

SECT_PR = (
    '<w:sectPr><w:headerReference w:type="default" r:id="rId7"/>'
    '<w:pgSz w:w="12240" w:h="15840"/><w:pgMar w:top="1440" w:right="1440" w:bottom="1440" w:left="1440"/>'
    '</w:sectPr>'
)

DEFAULT_BODY = "".join([
    para("«to»"),
    '<w:p><w:r><w:t>«</w:t></w:r><w:r><w:t>للالمحترملل</w:t></w:r><w:r><w:t>»</w:t></w:r></w:p>',
    para("للالسلام عليكم ورحمة الله وبركاتهلل"),
    '<w:p><w:r><w:t>«</w:t></w:r><w:r><w:t>للالموضوعلل</w:t></w:r><w:r><w:t>»</w:t></w:r></w:p>',
    para("«subject»"),
    NOTES_TABLE,
    OTHER_TABLE,
    para("«ending»"),
    para("للالتوقيعلل"),
    LIST_PARAGRAPH,
    para("«copy_to»"),
    INLINE_LOGO,
    SECT_PR,
])


def document_xml(body=DEFAULT_BODY):
    return f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?><w:document {NS_DECL}><w:body>{body}</w:body></w:document>'


def shape(name, anchor_id, docpr_id, text=""):
    return (
        '<mc:AlternateContent><mc:Choice Requires="wps"><w:drawing>'
        f'<wp:anchor wp14:anchorId="{anchor_id}"><wp:docPr id="{docpr_id}" name="{name}"/>'
        f'<a:graphic><a:graphicData uri="http://schemas.microsoft.com/office/word/2010/wordprocessingShape">'
        f'<wps:wsp><wps:txbx><w:txbxContent>{para(text)}</w:txbxContent></wps:txbx></wps:wsp>'
        '</a:graphicData></a:graphic></wp:anchor></w:drawing></mc:Choice>'
        '<mc:Fallback><w:pict/></mc:Fallback></mc:AlternateContent>'
    )


def header_xml(inner):
    return f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?><w:hdr {NS_DECL}>{inner}</w:hdr>'


HEADER1 = header_xml(para("للالأوللل"))
HEADER2 = header_xml(para("للالثانيلل"))
HEADER3 = header_xml(
    '<w:p><w:r>' + shape("مستطيل 7", "6FBCC3A1", 3, "التاريخ") + '</w:r>'
    '<w:r>' + shape("مستطيل 9", "1A2B3C4D", 4, "للالثالثلل") + '</w:r></w:p>'
)

SETTINGS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    f'<w:settings {NS_DECL}><w:zoom w:percent="100"/>'
    '<w:mailMerge><w:mainDocumentType w:val="formLetters"/><w:dataType w:val="textFile"/>'
    '<w:odso><w:udl w:val="x"/></w:odso></w:mailMerge><w:defaultTabStop w:val="720"/></w:settings>'
)

REL = '<Relationship Id="{id}" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/{type}" Target="{target}"/>'


def rels(*entries):
    body = "".join(REL.format(id=i, type=t, target=g) for i, t, g in entries)
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">{body}</Relationships>'
    )


DOCUMENT_RELS = rels(
    ("rId1", "styles", "styles.xml"),
    ("rId2", "settings", "settings.xml"),
    ("rId5", "image", "media/image1.png"),
    ("rId7", "header", "header1.xml"),
    ("rId8", "header", "header2.xml"),
    ("rId9", "header", "header3.xml"),
)
HEADER1_RELS = rels(("rId1", "image", "media/image2.png"))
SETTINGS_RELS = rels(("rId1", "recipientData", "recipientData.xml"))

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Default Extension="png" ContentType="image/png"/>'
    '<Override PartName="/word/document.xml" ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    '<Override PartName="/word/recipientData.xml" ContentType="application/vnd.ms-word.mailMergeRecipientData+xml"/>'
    '</Types>'
)


def image_bytes(size=(40, 20), fmt="PNG", color=(200, 30, 30)):
    bio = io.BytesIO()
    mode = "RGBA" if fmt == "PNG" else "RGB"
    Image.new(mode, size, color).save(bio, format=fmt)
    return bio.getvalue()


def default_parts():
    return {
        "[Content_Types].xml": CONTENT_TYPES,
        "_rels/.rels": rels(("rId1", "officeDocument", "word/document.xml")),
        "word/document.xml": document_xml(),
        "word/_rels/document.xml.rels": DOCUMENT_RELS,
        "word/header1.xml": HEADER1,
        "word/_rels/header1.xml.rels": HEADER1_RELS,
        "word/header2.xml": HEADER2,
        "word/header3.xml": HEADER3,
        "word/settings.xml": SETTINGS,
        "word/_rels/settings.xml.rels": SETTINGS_RELS,
        "word/recipientData.xml": '<?xml version="1.0"?><recipients/>',
        "word/styles.xml": f'<?xml version="1.0"?><w:styles {NS_DECL}/>',
        "word/media/image1.png": image_bytes(color=(1, 1, 1)),
        "word/media/image2.png": image_bytes(color=(2, 2, 2)),
    }


def build_template(overrides=None, drop=()):
    parts = default_parts()
    parts.update(overrides or {})
    bio = io.BytesIO()
    with zipfile.ZipFile(bio, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, content in parts.items():
            if name in drop:
                continue
            zf.writestr(name, content.encode("utf-8") if isinstance(content, str) else content)
    return bio.getvalue()


def read_part(docx: bytes, name: str) -> bytes:
    with zipfile.ZipFile(io.BytesIO(docx)) as zf:
        return zf.read(name)


def damage_member(docx: bytes, name: str) -> bytes:
    """Overwrite the start of a member's compressed data, leaving the directory intact."""
    with zipfile.ZipFile(io.BytesIO(docx)) as zf:
        info = zf.getinfo(name)
    raw = bytearray(docx)
    name_len, extra_len = struct.unpack("<HH", raw[info.header_offset + 26:info.header_offset + 30])
    start = info.header_offset + 30 + name_len + extra_len
    raw[start:start + 40] = b"\xff" * 40
    return bytes(raw)


def mark_encrypted(docx: bytes, name: str) -> bytes:
    """Set the encryption flag on a member's central directory entry."""
    raw = bytearray(docx)
    target = name.encode("utf-8")
    pos = raw.find(b"PK\x01\x02")
    while pos != -1:
        name_len = struct.unpack("<H", raw[pos + 28:pos + 30])[0]
        if bytes(raw[pos + 46:pos + 46 + name_len]) == target:
            flags = struct.unpack("<H", raw[pos + 8:pos + 10])[0]
            raw[pos + 8:pos + 10] = struct.pack("<H", flags | 0x1)
            return bytes(raw)
        pos = raw.find(b"PK\x01\x02", pos + 4)
    raise KeyError(name)


def part_names(docx: bytes):
    with zipfile.ZipFile(io.BytesIO(docx)) as zf:
        return zf.namelist()


def xml_root(text: str):
    return parse_xml(text.encode("utf-8"))


@pytest.fixture
def template():
    return build_template()
