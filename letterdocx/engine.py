import copy
import logging
import posixpath
from dataclasses import dataclass, field
from typing import List

from lxml import etree as LET

from .conventions import DEFAULT_CONVENTIONS, TemplateConventions
from .errors import CorruptPackage, InvalidForm, PatternNotFound, SynthesisError
from .images import append_images, replace_logo_slots
from .layout import RenderTarget, TableLayout, enforce_page_size, layout_for
from .models import ImageAsset, LetterForm
from .ooxml import CONTENT_TYPES_PART, REL_NS, part_rels_name, remove_override
from .package import TemplatePackage, assemble_package, load_package
from .placeholders import ReplacementMap, build_replacements, remaining_bracket_keys, replace_placeholders
from .pruning import expand_distribution_list, remove_named_shape, strip_mail_merge
from .tables import synthesize_tables

logger = logging.getLogger(__name__)


@dataclass
class SynthesisResult:
    document: bytes
    warnings: List[str] = field(default_factory=list)
    images: List[ImageAsset] = field(default_factory=list)


class LetterSynthesizer:
    """Runs the merge pipeline over one private copy of the template."""

    def __init__(
        self,
        form: LetterForm,
        target: RenderTarget = RenderTarget.DESKTOP,
        conventions: TemplateConventions = DEFAULT_CONVENTIONS,
        include_appended_images: bool = True,
        strict: bool = False,
    ):
        self.form = form
        self.target = RenderTarget(target)
        self.conventions = conventions
        self.include_appended_images = include_appended_images
        self.strict = strict
        self.layout: TableLayout = layout_for(self.target, conventions)
        self.warnings: List[str] = []

    def _not_found(self, anchor: str, part: str, fatal: bool = False):
        exc = PatternNotFound(anchor, part)
        if fatal:
            raise exc
        logger.warning("%s", exc)
        self.warnings.append(str(exc))

    def _validate(self):
        if not self.form.use_table:
            return
        if self.form.table is None:
            raise InvalidForm("table is enabled but no table data was supplied")
        self.form.table.validate()

    def _process_part(self, root: LET._Element, part: str, replacements: ReplacementMap, lines: List[str]) -> bool:
        if part == self.conventions.main_part:
            found = synthesize_tables(root, self.form.table, self.form.use_table, self.layout, self.conventions)
            if not found and self.form.use_table:
                self._not_found(self.conventions.notes_label, part, fatal=self.strict)
        list_found = expand_distribution_list(root, lines, self.conventions)
        replace_placeholders(root, replacements)
        return list_found

    def _merge_text_parts(self, pkg: TemplatePackage):
        conv = self.conventions
        replacements = build_replacements(self.form, conv)
        lines = self.form.copy_to_lines()
        list_found = False
        for part in pkg.text_parts(conv):
            if part == conv.main_part:
                root = pkg.xml(part)
                list_found |= self._process_part(root, part, replacements, lines)
                unresolved = remaining_bracket_keys(root, conv) & set(self.form.text_fields())
                if unresolved:
                    logger.warning("unresolved anchors left in %s: %s", part, sorted(unresolved))
                continue
            # Headers and footers are edited on a copy so a failure leaves them untouched.
            try:
                root = copy.deepcopy(pkg.xml(part))
                list_found |= self._process_part(root, part, replacements, lines)
            except (SynthesisError, LET.LxmlError, ValueError) as exc:
                logger.warning("leaving %s unmodified: %s", part, exc)
                self.warnings.append(f"{part} left unmodified: {exc}")
                continue
            pkg.set_xml(part, root)
        if lines and not list_found:
            self._not_found(conv.distribution_sentinel, "text parts")

    def _prune_date_box(self, pkg: TemplatePackage):
        if self.form.show_date:
            return
        conv = self.conventions
        removed = 0
        for part in conv.date_box_parts:
            if not pkg.has(part):
                continue
            try:
                removed += remove_named_shape(pkg.xml(part), conv.date_box_name, conv.date_box_anchor_id)
            except CorruptPackage as exc:
                logger.warning("leaving %s unmodified: %s", part, exc)
        if not removed:
            self._not_found(conv.date_box_name, ", ".join(conv.date_box_parts))

    def _detach_mail_merge(self, pkg: TemplatePackage):
        conv = self.conventions
        if pkg.has(conv.settings_part):
            try:
                if strip_mail_merge(pkg.xml(conv.settings_part)):
                    logger.debug("removed mail merge settings")
            except CorruptPackage as exc:
                logger.warning("leaving %s unmodified: %s", conv.settings_part, exc)
        data_part = conv.mail_merge_data_part
        if not pkg.delete(data_part):
            return
        data_name = posixpath.basename(data_part)
        for owner in (conv.settings_part, conv.main_part):
            rels_name = part_rels_name(owner)
            if not pkg.has(rels_name):
                continue
            rels = pkg.xml(rels_name)
            for rel in rels.findall(f"{{{REL_NS}}}Relationship"):
                if posixpath.basename(rel.get("Target", "")) == data_name:
                    rels.remove(rel)
        remove_override(pkg.xml(CONTENT_TYPES_PART), data_part)

    def run(self, template: bytes) -> SynthesisResult:
        self._validate()
        conv = self.conventions
        pkg = load_package(template, conv)

        self._merge_text_parts(pkg)
        self._prune_date_box(pkg)
        self._detach_mail_merge(pkg)
        if self.layout.force_page_size:
            enforce_page_size(pkg.xml(conv.main_part), conv)

        replace_logo_slots(pkg, self.form.logo, conv)
        assets: List[ImageAsset] = []
        if self.include_appended_images and self.form.added_images:
            assets = append_images(pkg, self.form.added_images, conv)

        document = assemble_package(pkg)
        return SynthesisResult(document=document, warnings=list(self.warnings), images=assets)


def synthesize_letter(
    template: bytes,
    form: LetterForm,
    target: RenderTarget = RenderTarget.DESKTOP,
    conventions: TemplateConventions = DEFAULT_CONVENTIONS,
    include_appended_images: bool = True,
    strict: bool = False,
) -> SynthesisResult:
    return LetterSynthesizer(form, target, conventions, include_appended_images, strict).run(template)
