"""DOCX -> PDF / JPEG conversion through LibreOffice and poppler.

Used by the export service after synthesis; the synthesis engine itself never
imports this module.
"""
import io
import logging
import os
import subprocess
import tempfile
import threading
from typing import Callable, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class RenderError(RuntimeError):
    pass


class RenderCancelled(RenderError):
    pass


def run(cmd: List[str], cwd: Optional[str] = None):
    proc = subprocess.run(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    if proc.returncode != 0:
        raise RenderError(
            f"Command failed: {' '.join(cmd)}\n"
            f"STDOUT:\n{proc.stdout.decode('utf-8', 'ignore')}\n"
            f"STDERR:\n{proc.stderr.decode('utf-8', 'ignore')}"
        )
    return proc


def parse_pages_arg(pages: str, total_pages: int) -> List[int]:
    pages = (pages or "").strip()
    if not pages or pages.lower() == "all":
        return list(range(1, total_pages + 1)) or [1]
    out: List[int] = []
    for part in pages.split(","):
        part = part.strip()
        if not part: continue
        if "-" in part:
            a, b = part.split("-", 1)
            try:
                s = max(1, int(a)); e = min(total_pages, int(b))
                if s <= e: out.extend(range(s, e+1))
            except ValueError: pass
        else:
            try:
                p = int(part)
                if 1 <= p <= total_pages: out.append(p)
            except ValueError: pass
    return sorted(list(dict.fromkeys(out))) or [1]


def libreoffice_to_pdf(input_path: str, out_dir: str) -> str:
    if not os.path.isdir(out_dir): os.makedirs(out_dir, exist_ok=True)
    soffice = os.environ.get("SOFFICE_BIN", "soffice")
    run([
        soffice, "--headless", "--nologo", "--nodefault", "--nolockcheck", "--norestore",
        "--convert-to", "pdf", "--outdir", out_dir, input_path
    ])
    base = os.path.splitext(os.path.basename(input_path))[0]
    pdf_path = os.path.join(out_dir, f"{base}.pdf")
    if not os.path.exists(pdf_path):
        for fn in os.listdir(out_dir):
            if fn.lower().endswith(".pdf"):
                pdf_path = os.path.join(out_dir, fn); break
    if not os.path.exists(pdf_path): raise RenderError("PDF not produced by LibreOffice.")
    return pdf_path


def _report(progress: Optional[ProgressCallback], done: int, total: int):
    if progress is not None and total:
        progress(int(done * 100 / total))


def _check_cancel(cancel: Optional[threading.Event]):
    if cancel is not None and cancel.is_set():
        raise RenderCancelled("rendering cancelled")


def pdf_to_jpegs(
    pdf_path: str,
    dpi: int,
    pages: List[int],
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> List[Tuple[int, bytes]]:
    out: List[Tuple[int, bytes]] = []
    for done, p in enumerate(pages, start=1):
        _check_cancel(cancel)
        prefix = f"{pdf_path}-p{p}"
        run(["pdftoppm", "-jpeg", "-r", str(dpi), "-f", str(p), "-l", str(p), pdf_path, prefix])
        jpg = f"{prefix}-1.jpg"
        if not os.path.exists(jpg):
            alt = f"{prefix}.jpg"
            jpg = alt if os.path.exists(alt) else jpg
        if not os.path.exists(jpg):
            for fn in os.listdir(os.path.dirname(pdf_path)):
                if fn.startswith(os.path.basename(prefix)) and fn.lower().endswith(".jpg"):
                    jpg = os.path.join(os.path.dirname(pdf_path), fn); break
        if not os.path.exists(jpg): raise RenderError(f"Failed to create JPEG page {p}")
        with open(jpg, "rb") as f: out.append((p, f.read()))
        try: os.remove(jpg)
        except OSError: pass
        _report(progress, done, len(pages))
    return out


def combine_jpegs(pages: List[bytes], quality: int = 90) -> bytes:
    """Stack page images vertically into one JPEG."""
    from PIL import Image as PILImage

    images = [PILImage.open(io.BytesIO(b)).convert("RGB") for b in pages]
    if not images:
        raise RenderError("no pages to combine")
    width = max(img.width for img in images)
    height = sum(img.height for img in images)
    sheet = PILImage.new("RGB", (width, height), (255, 255, 255))
    y = 0
    for img in images:
        sheet.paste(img, ((width - img.width) // 2, y))
        y += img.height
    bio = io.BytesIO()
    sheet.save(bio, format="JPEG", quality=quality)
    return bio.getvalue()


def image_to_jpeg(data: bytes, quality: int = 90) -> bytes:
    from PIL import Image as PILImage

    img = PILImage.open(io.BytesIO(data))
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        flat = PILImage.new("RGB", rgba.size, (255, 255, 255))
        flat.paste(rgba, mask=rgba.split()[3])
        img = flat
    bio = io.BytesIO()
    img.convert("RGB").save(bio, format="JPEG", quality=quality)
    return bio.getvalue()


def append_images_to_pdf(pdf_bytes: bytes, images: Iterable[bytes]) -> bytes:
    """Append each image as one extra PDF page."""
    from PIL import Image as PILImage
    from pypdf import PdfReader, PdfWriter

    writer = PdfWriter()
    writer.append(PdfReader(io.BytesIO(pdf_bytes)))
    for data in images:
        page_pdf = io.BytesIO()
        PILImage.open(io.BytesIO(image_to_jpeg(data))).save(page_pdf, format="PDF", resolution=150.0)
        writer.append(PdfReader(io.BytesIO(page_pdf.getvalue())))
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def count_pdf_pages(pdf_bytes: bytes) -> int:
    from pypdf import PdfReader  # lazy import

    return len(PdfReader(io.BytesIO(pdf_bytes)).pages)


def render_document(
    docx_bytes: bytes,
    output: str,
    jpeg_dpi: int = 150,
    jpeg_pages: str = "all",
    combine_pages: bool = False,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> List[bytes]:
    """Render a synthesized document; returns one buffer per page (or one combined buffer)."""
    if output not in {"pdf", "jpeg"}:
        raise RenderError(f"unsupported output format: {output}")
    with tempfile.TemporaryDirectory() as td:
        src = os.path.join(td, "letter.docx")
        with open(src, "wb") as f:
            f.write(docx_bytes)
        _check_cancel(cancel)
        pdf_path = libreoffice_to_pdf(src, os.path.join(td, "pdf"))
        with open(pdf_path, "rb") as f:
            pdf_bytes = f.read()
        if output == "pdf":
            _report(progress, 1, 1)
            return [pdf_bytes]
        selected = parse_pages_arg(jpeg_pages, count_pdf_pages(pdf_bytes))
        logger.debug("rasterizing pages %s at %d dpi", selected, jpeg_dpi)
        pages = [b for _, b in pdf_to_jpegs(pdf_path, jpeg_dpi, selected, progress, cancel)]
    if combine_pages and len(pages) > 1:
        return [combine_jpegs(pages)]
    return pages
