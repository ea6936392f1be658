import io
import logging
import posixpath
import re
import zipfile
import zlib
from typing import Dict, List, Optional

from lxml import etree as LET

from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .errors import AssemblyFailure, CorruptPackage, MissingRequiredPart
from .ooxml import CONTENT_TYPES_PART, new_rels_root, parse_xml, part_rels_name, serialize_xml

logger = logging.getLogger(__name__)

HEADER_FOOTER_RE = re.compile(r"^word/(?:header|footer)\d*\.xml$")
MEDIA_PREFIX = "word/media/"


class TemplatePackage:
    """Part name -> content for one synthesis call.

    XML parts are parsed on first access and kept as lxml trees until
    :meth:`to_parts` serializes them back; binary parts stay as bytes.
    """

    def __init__(self, parts: Dict[str, bytes]):
        self._parts: Dict[str, bytes] = dict(parts)
        self._trees: Dict[str, LET._Element] = {}

    def names(self) -> List[str]:
        return list(self._parts)

    def has(self, name: str) -> bool:
        return name in self._parts

    def read(self, name: str) -> bytes:
        if name in self._trees:
            return serialize_xml(self._trees[name])
        return self._parts[name]

    def write(self, name: str, data: bytes):
        self._trees.pop(name, None)
        self._parts[name] = data

    def delete(self, name: str) -> bool:
        self._trees.pop(name, None)
        return self._parts.pop(name, None) is not None

    def xml(self, name: str) -> LET._Element:
        root = self._trees.get(name)
        if root is not None:
            return root
        if name not in self._parts:
            raise MissingRequiredPart(name)
        try:
            root = parse_xml(self._parts[name])
        except LET.XMLSyntaxError as exc:
            raise CorruptPackage(f"{name} is not well-formed XML: {exc}") from exc
        self._trees[name] = root
        return root

    def set_xml(self, name: str, root: LET._Element):
        self._parts.setdefault(name, b"")
        self._trees[name] = root

    def rels(self, part: str) -> LET._Element:
        """Relationship table owned by ``part``; an empty one is created if absent."""
        name = part_rels_name(part)
        if not self.has(name):
            self.set_xml(name, new_rels_root())
        return self.xml(name)

    def media_names(self) -> List[str]:
        return [n for n in self._parts if n.startswith(MEDIA_PREFIX)]

    def xml_part_names(self) -> List[str]:
        return [n for n in self._parts if n.endswith(".xml") or n.endswith(".rels")]

    def text_parts(self, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> List[str]:
        if conventions.text_parts is not None:
            return [p for p in conventions.text_parts if self.has(p)]
        targets = [conventions.main_part]
        targets.extend(sorted(n for n in self._parts if HEADER_FOOTER_RE.match(n)))
        return [p for p in targets if self.has(p)]

    def to_parts(self) -> Dict[str, bytes]:
        out: Dict[str, bytes] = {}
        for name, data in self._parts.items():
            root = self._trees.get(name)
            out[name] = serialize_xml(root) if root is not None else data
        return out


def load_package(data: bytes, conventions: TemplateConventions = DEFAULT_CONVENTIONS) -> TemplatePackage:
    if not data:
        raise CorruptPackage("template is empty")
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            parts = {}
            for info in zf.infolist():
                if info.is_dir():
                    continue
                parts[info.filename] = zf.read(info)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError,
            zlib.error, NotImplementedError, RuntimeError) as exc:
        # damaged or encrypted members fail in zf.read, not in the constructor
        raise CorruptPackage(f"template is not a valid archive: {exc}") from exc

    for required in (CONTENT_TYPES_PART, conventions.main_part):
        if required not in parts:
            raise MissingRequiredPart(required)

    pkg = TemplatePackage(parts)
    pkg.xml(conventions.main_part)
    logger.debug("loaded template with %d parts", len(parts))
    return pkg


def assemble_package(pkg: TemplatePackage) -> bytes:
    try:
        parts = pkg.to_parts()
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zout:
            # [Content_Types].xml first, as Word writes it.
            if CONTENT_TYPES_PART in parts:
                zout.writestr(CONTENT_TYPES_PART, parts.pop(CONTENT_TYPES_PART))
            for name, data in parts.items():
                zout.writestr(name, data)
        return buffer.getvalue()
    except (OSError, ValueError, zipfile.BadZipFile, LET.SerialisationError) as exc:
        raise AssemblyFailure(f"could not assemble document: {exc}") from exc


def media_suffix(name: str) -> Optional[int]:
    m = re.search(r"(\d+)\.[A-Za-z0-9]+$", posixpath.basename(name))
    return int(m.group(1)) if m else None
