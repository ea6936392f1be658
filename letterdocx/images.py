import base64
import binascii
import io
import logging
import posixpath
import urllib.parse
from typing import Iterable, List, Optional, Tuple

from lxml import etree as LET

from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .errors import CorruptPackage, PatternNotFound
from .models import AppendedImage, ImageAsset, ImageSource
from .ooxml import (
    CONTENT_TYPES_PART,
    EMU_PER_INCH,
    add_relationship,
    ensure_default_content_type,
    make_inline_drawing,
    make_page_image_paragraph,
    max_docpr_id,
    max_rel_id,
    w,
)
from .package import TemplatePackage, media_suffix

logger = logging.getLogger(__name__)

PIL_FORMATS = {"png": "PNG", "jpg": "JPEG", "jpeg": "JPEG", "gif": "GIF", "bmp": "BMP"}


def _decode_base64_payload(payload: str) -> Optional[bytes]:
    data = (payload or "").strip()
    if not data:
        return None
    padding = len(data) % 4
    if padding:
        data += "=" * (4 - padding)
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError):
        return None


def decode_image_source(source: Optional[ImageSource]) -> Optional[bytes]:
    """Raw bytes from bytes, a data URI, ``base64:``/``base64,`` text or bare base64."""
    if source is None:
        return None
    if isinstance(source, (bytes, bytearray)):
        return bytes(source) or None
    text = source.strip()
    if not text:
        return None
    if text.startswith("data:"):
        header, _, payload = text.partition(",")
        if not payload:
            return None
        if ";base64" in header:
            return _decode_base64_payload(payload)
        return urllib.parse.unquote_to_bytes(payload)
    if text.startswith("base64:"):
        _, _, payload = text.partition(":")
        return _decode_base64_payload(payload)
    if text.startswith("base64,"):
        return _decode_base64_payload(text[7:])
    return _decode_base64_payload(text)


def sniff_extension(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if data.startswith(b"\xff\xd8"):
        return "jpeg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if data.startswith(b"BM"):
        return "bmp"
    return "png"


def _flatten_on_white(img):
    from PIL import Image as PILImage

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = PILImage.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        return background
    return img.convert("RGB")


def fit_to_area(width_px: Optional[int], height_px: Optional[int], conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> Tuple[int, int]:
    """EMU extent filling the printable area while keeping the aspect ratio."""
    max_w = int(conventions.printable_width_in * EMU_PER_INCH)
    max_h = int(conventions.printable_height_in * EMU_PER_INCH)
    if not width_px or not height_px:
        return max_w, max_h
    aspect = width_px / height_px
    if aspect > max_w / max_h:
        return max_w, max(int(max_w / aspect), 1)
    return max(int(max_h * aspect), 1), max_h


def prepare_appended_image(data: bytes, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> Tuple[bytes, str, Optional[int], Optional[int]]:
    """Downscale, flatten and JPEG-encode an appended image.

    Returns ``(bytes, extension, width_px, height_px)``; an image Pillow cannot
    read is passed through untouched with unknown dimensions.
    """
    from PIL import Image as PILImage, UnidentifiedImageError

    try:
        img = PILImage.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError) as exc:
        logger.warning("appended image could not be decoded, storing as-is: %s", exc)
        return data, sniff_extension(data), None, None

    max_w, max_h = conventions.max_image_px
    width, height = img.size
    if width > max_w or height > max_h:
        ratio = width / height
        if width > max_w:
            width = max_w
            height = width / ratio
        if height > max_h:
            height = max_h
            width = height * ratio
        width, height = max(int(round(width)), 1), max(int(round(height)), 1)
        img = img.resize((width, height), PILImage.LANCZOS)

    bio = io.BytesIO()
    _flatten_on_white(img).save(bio, format="JPEG", quality=conventions.image_jpeg_quality)
    return bio.getvalue(), "jpeg", width, height


def _reencode_for_slot(data: bytes, slot: str) -> bytes:
    from PIL import Image as PILImage, UnidentifiedImageError

    ext = posixpath.splitext(slot)[1].lstrip(".").lower()
    wanted = PIL_FORMATS.get(ext)
    try:
        img = PILImage.open(io.BytesIO(data))
        if wanted is None or img.format == wanted:
            return data
        img.load()
        if wanted == "JPEG":
            img = _flatten_on_white(img)
        elif img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            img = img.convert("RGBA")
        bio = io.BytesIO()
        img.save(bio, format=wanted)
        return bio.getvalue()
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError) as exc:
        logger.warning("logo could not be decoded, writing raw bytes to %s: %s", slot, exc)
        return data


def replace_logo_slots(
    pkg: TemplatePackage,
    logo: Optional[ImageSource],
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
) -> List[str]:
    """Overwrite the fixed logo/watermark media parts in place."""
    data = decode_image_source(logo)
    if not data:
        return []
    replaced: List[str] = []
    for slot in conventions.logo_slots:
        if not pkg.has(slot):
            logger.warning("%s", PatternNotFound("logo slot", slot))
            continue
        pkg.write(slot, _reencode_for_slot(data, slot))
        replaced.append(slot)
    return replaced


def _max_media_number(pkg: TemplatePackage) -> int:
    numbers = [media_suffix(name) for name in pkg.media_names()]
    return max([n for n in numbers if n is not None], default=0)


def _all_docpr_roots(pkg: TemplatePackage, conventions: TemplateConventions) -> List[LET._Element]:
    roots = []
    for part in pkg.text_parts(conventions):
        try:
            roots.append(pkg.xml(part))
        except CorruptPackage:
            continue
    return roots


def append_images(
    pkg: TemplatePackage,
    images: Iterable[AppendedImage],
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
) -> List[ImageAsset]:
    """Append each image as its own page before the document's final section properties.

    Images are decoded one at a time; relationship ids, media numbers and
    drawing ids continue from the highest ones already in the package.
    """
    main = conventions.main_part
    root = pkg.xml(main)
    body = root.find(w("body"))
    if body is None:
        raise CorruptPackage(f"{main} has no body")
    rels = pkg.rels(main)
    ct_root = pkg.xml(CONTENT_TYPES_PART)
    main_dir = posixpath.dirname(main)

    media_number = _max_media_number(pkg)
    docpr_id = max_docpr_id(_all_docpr_roots(pkg, conventions))
    assets: List[ImageAsset] = []

    for image in images:
        data = decode_image_source(image.source)
        if not data:
            logger.warning("skipping appended image %r: no data", image.name or len(assets))
            continue
        payload, ext, width_px, height_px = prepare_appended_image(data, conventions)
        del data

        media_number += 1
        docpr_id += 1
        filename = f"addedImage{media_number}.{ext}"
        part = posixpath.join(main_dir, "media", filename)
        pkg.write(part, payload)
        ensure_default_content_type(ct_root, ext)
        rid, _ = add_relationship(rels, f"media/{filename}")
        logger.debug("appended %s as %s", part, rid)

        cx, cy = fit_to_area(width_px, height_px, conventions)
        drawing = make_inline_drawing(rid, docpr_id, cx, cy, f"AddedImage{media_number}")
        paragraph = make_page_image_paragraph(drawing)
        sect_pr = body.find(w("sectPr"))
        if sect_pr is not None:
            sect_pr.addprevious(paragraph)
        else:
            body.append(paragraph)

        assets.append(ImageAsset(
            data=payload,
            target=part,
            rel_id=rid,
            width_px=width_px or 0,
            height_px=height_px or 0,
            assumed_size=width_px is None,
        ))
    return assets


def starting_allocation(pkg: TemplatePackage, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> Tuple[int, int]:
    """(highest relationship id, highest media number) before any image is appended."""
    return max_rel_id(pkg.rels(conventions.main_part)), _max_media_number(pkg)
