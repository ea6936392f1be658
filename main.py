import os
import re
import io
import json
import base64
import logging
import zipfile
import urllib.parse
from typing import Dict, Iterator, List, Optional

import requests
from fastapi import FastAPI, UploadFile, File, Form
from fastapi.responses import JSONResponse

from letterdocx import (
    AppendedImage,
    AssemblyFailure,
    LetterForm,
    RenderTarget,
    SynthesisError,
    synthesize_letter,
)
from letterdocx.images import decode_image_source
from letterdocx.render import (
    RenderError,
    append_images_to_pdf,
    combine_jpegs,
    image_to_jpeg,
    render_document,
)

logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("letter_export")

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
OUTPUT_MIME = {"docx": DOCX_MIME, "pdf": "application/pdf", "jpeg": "image/jpeg"}
UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|]')

app = FastAPI(title="Letter → DOCX / PDF / JPEG export API")

# ------------ light helpers ------------
def data_uri(mime: str, data: bytes) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime};base64,{b64}"

def ok(d): return JSONResponse(status_code=200, content=d)
def err(m, status=400): return JSONResponse(status_code=status, content={"error": str(m)})


def _fetch_timeout() -> float:
    try:
        return float(os.environ.get("FETCH_TIMEOUT", "20"))
    except ValueError:
        return 20.0


def sanitize_file_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return "document"
    return UNSAFE_FILENAME_RE.sub("-", name)


def _is_docx(data: Optional[bytes]) -> bool:
    if not data:
        return False
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            return any(name.startswith("word/") for name in zf.namelist())
    except zipfile.BadZipFile:
        return False


def _load_template_from_data_string(text: str) -> Optional[bytes]:
    value = (text or "").strip()
    if not value:
        return None
    if value.startswith(("data:", "base64:", "base64,")):
        return decode_image_source(value)
    return None


def _download(url: str) -> Optional[bytes]:
    source = (url or "").strip()
    if not source:
        return None
    try:
        resp = requests.get(source, timeout=_fetch_timeout())
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("download failed for %s: %s", source, exc)
        return None
    return resp.content


def _default_template() -> Optional[bytes]:
    path = os.environ.get("LETTER_TEMPLATE_PATH", "")
    if not path or not os.path.exists(path):
        return None
    with open(path, "rb") as f:
        return f.read()


def _is_url(value) -> bool:
    return isinstance(value, str) and urllib.parse.urlparse(value.strip()).scheme in {"http", "https"}


def _resolve_source(value):
    if _is_url(value):
        data = _download(value)
        if data is None:
            raise ValueError(f"could not fetch image {value}")
        return data
    return value


def parse_form(raw: str) -> LetterForm:
    try:
        payload = json.loads(raw or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"form is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("form must be a JSON object")
    for key in ("logo", "logoBase64"):
        if payload.get(key):
            payload[key] = _resolve_source(payload[key])
    images = payload.pop("added_images", None) or payload.pop("addedImages", None) or []
    payload["added_images"] = [AppendedImage(source=_resolve_source(src)) for src in images]
    return LetterForm.from_dict(payload)


def _appended_bytes(form: LetterForm) -> Iterator[bytes]:
    for image in form.added_images:
        data = decode_image_source(image.source)
        if data:
            yield data


def _log_progress(percent: int):
    logger.debug("render progress %d%%", percent)


# ------------ API ------------
@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.post("/export")
async def export(
    file: Optional[UploadFile] = File(None),
    form: str = Form("{}"),
    output: str = Form("docx"),
    target: str = Form("desktop"),
    combine_pages: bool = Form(False),
    jpeg_dpi: int = Form(150),
    jpeg_pages: str = Form("all"),
    strict: bool = Form(False),
    file_data_uri: str = Form(""),
    file_url: str = Form(""),
):
    output = (output or "docx").strip().lower()
    if output == "jpg":
        output = "jpeg"
    if output not in OUTPUT_MIME:
        return err("output must be docx, pdf or jpeg", 400)
    try:
        render_target = RenderTarget((target or "desktop").strip().lower())
    except ValueError:
        return err("target must be desktop or mobile", 400)

    try:
        template: Optional[bytes] = None
        if file is not None:
            template = await file.read()
        if not template and file_data_uri:
            template = _load_template_from_data_string(file_data_uri)
        if not template and file_url:
            template = _download(file_url)
        if not template:
            template = _default_template()
        if not template:
            return err("template must be provided via upload, data URI, URL or LETTER_TEMPLATE_PATH", 400)
        if not _is_docx(template):
            return err("template must be a .docx file", 400)

        letter = parse_form(form)
        result = synthesize_letter(
            template,
            letter,
            target=render_target,
            include_appended_images=(output == "docx"),
            strict=strict,
        )

        base_filename = sanitize_file_name(letter.subject_name)
        response: Dict[str, object] = {"warnings": result.warnings}

        if output == "docx":
            response["file_name"] = base_filename + ".docx"
            response["document_data_uri"] = data_uri(DOCX_MIME, result.document)
            return ok(response)

        if output == "pdf":
            pdf_bytes = render_document(result.document, "pdf", progress=_log_progress)[0]
            if letter.added_images:
                pdf_bytes = append_images_to_pdf(pdf_bytes, _appended_bytes(letter))
            response["file_name"] = base_filename + ".pdf"
            response["pdf_data_uri"] = data_uri("application/pdf", pdf_bytes)
            return ok(response)

        pages: List[bytes] = render_document(
            result.document, "jpeg", jpeg_dpi=jpeg_dpi, jpeg_pages=jpeg_pages, progress=_log_progress
        )
        pages.extend(image_to_jpeg(data) for data in _appended_bytes(letter))
        if combine_pages and len(pages) > 1:
            pages = [combine_jpegs(pages)]
        response["jpeg_dpi"] = jpeg_dpi
        response["jpeg_data_uris"] = [
            {"page": idx, "file_name": f"{base_filename}_{idx}.jpg", "data_uri": data_uri("image/jpeg", b)}
            for idx, b in enumerate(pages, start=1)
        ]
        return ok(response)
    except (AssemblyFailure, RenderError) as e:
        logger.exception("export failed")
        return err(str(e), 500)
    except (SynthesisError, ValueError) as e:
        logger.warning("export rejected: %s", e)
        return err(str(e), 400)


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", "8080"))
    uvicorn.run("main:app", host="0.0.0.0", port=port, workers=1, lifespan="off")
