from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

# Field name -> literal anchor spellings found in the shipped template.
DEFAULT_LITERAL_ANCHORS: Dict[str, Tuple[str, ...]] = {
    "parent_company": ("للالأوللل",),
    "subsidiary_company": ("للالثانيلل",),
    "from": ("للالثالثلل",),
    "to": ("للالاخلل",),
    "to_the": ("للالمحترملل",),
    "greetings": ("للالسلام عليكم ورحمة الله وبركاتهلل",),
    "subject_name": ("للالموضوعلل",),
    "subject": ("للتحية طيبة وبعدلل",),
    "ending": ("للوشكرالل",),
    "sign": ("للالتوقيعلل",),
}


@dataclass(frozen=True)
class TemplateConventions:
    """Anchors, part names and layout constants a template is expected to follow.

    The engine never hard-codes any of these; tests build synthetic templates
    against their own instances.
    """

    version: str = "1"

    main_part: str = "word/document.xml"
    text_parts: Optional[Tuple[str, ...]] = None  # None: main part plus every header*/footer* part
    settings_part: str = "word/settings.xml"
    mail_merge_data_part: str = "word/recipientData.xml"

    bracket_open: str = "«"
    bracket_close: str = "»"
    stray_tokens: Tuple[str, ...] = ("«", "»", "[[", "]]")
    literal_anchors: Dict[str, Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_LITERAL_ANCHORS))
    # Fields whose literal anchors sit in header text boxes that must not collapse.
    never_empty_fields: Tuple[str, ...] = ("parent_company", "subsidiary_company", "from")

    notes_label: str = "ملاحظة"
    notes_column_width: Optional[int] = 5000
    char_width: int = 180
    min_column_width: int = 400
    cell_padding: int = 300
    table_width_pct: int = 5000

    distribution_sentinel: str = "للدائرلل"

    date_box_parts: Tuple[str, ...] = ("word/header3.xml",)
    date_box_name: str = "مستطيل 7"
    date_box_anchor_id: str = "6FBCC3A1"

    logo_slots: Tuple[str, ...] = ("word/media/image1.png", "word/media/image2.png")

    # Printable area for appended images: A4 with one-inch margins.
    printable_width_in: float = 6.27
    printable_height_in: float = 9.69
    max_image_px: Tuple[int, int] = (2480, 3508)
    image_jpeg_quality: int = 75

    page_size_twips: Tuple[int, int] = (11906, 16838)

    def literal_keys(self) -> Dict[str, str]:
        """Flatten ``literal_anchors`` into anchor -> field."""
        out: Dict[str, str] = {}
        for name, anchors in self.literal_anchors.items():
            for anchor in anchors:
                out[anchor] = name
        return out


DEFAULT_CONVENTIONS = TemplateConventions()
