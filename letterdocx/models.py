from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

from .errors import InvalidForm

ImageSource = Union[bytes, str]  # raw bytes, a data URI or bare base64


@dataclass(frozen=True)
class TableModel:
    rows: Sequence[Sequence[str]]

    @property
    def column_count(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    def validate(self):
        if not self.rows:
            raise InvalidForm("table is enabled but has no rows")
        width = self.column_count
        if width == 0:
            raise InvalidForm("table header row has no cells")
        for idx, row in enumerate(self.rows):
            if len(row) != width:
                raise InvalidForm(f"table row {idx} has {len(row)} cells, expected {width}")


@dataclass(frozen=True)
class AppendedImage:
    """One image added as its own page after the letter body."""

    source: ImageSource
    name: str = ""


@dataclass(frozen=True)
class LetterForm:
    parent_company: str = ""
    subsidiary_company: str = ""
    from_: str = ""
    to: str = ""
    to_the: str = ""
    greetings: str = ""
    subject_name: str = ""
    subject: str = ""
    ending: str = ""
    sign: str = ""
    copy_to: str = ""
    show_date: bool = False
    use_table: bool = False
    table: Optional[TableModel] = None
    logo: Optional[ImageSource] = None
    added_images: Sequence[AppendedImage] = field(default_factory=tuple)

    def text_fields(self) -> Dict[str, str]:
        """Bracket-anchor key -> raw value."""
        return {
            "from": self.from_,
            "parent_company": self.parent_company,
            "subsidiary_company": self.subsidiary_company,
            "to": self.to,
            "to_the": self.to_the,
            "greetings": self.greetings,
            "subject_name": self.subject_name,
            "subject": self.subject,
            "ending": self.ending,
            "sign": self.sign,
            "copy_to": self.copy_to,
        }

    def copy_to_lines(self) -> List[str]:
        text = (self.copy_to or "").replace("\x0b", "\n")
        return [line.strip() for line in text.split("\n") if line.strip()]

    @classmethod
    def from_dict(cls, data: Dict) -> "LetterForm":
        table_rows = data.get("table_data") or data.get("tableData")
        table = TableModel([[str(c or "") for c in row] for row in table_rows]) if table_rows else None
        images = [
            img if isinstance(img, AppendedImage) else AppendedImage(source=img)
            for img in (data.get("added_images") or data.get("addedImages") or [])
        ]
        return cls(
            parent_company=data.get("parent_company") or "",
            subsidiary_company=data.get("subsidiary_company") or "",
            from_=data.get("from") or data.get("from_") or "",
            to=data.get("to") or "",
            to_the=data.get("to_the") or "",
            greetings=data.get("greetings") or "",
            subject_name=data.get("subject_name") or "",
            subject=data.get("subject") or "",
            ending=data.get("ending") or "",
            sign=data.get("sign") or "",
            copy_to=data.get("copy_to") or "",
            show_date=bool(data.get("show_date", data.get("showDate", False))),
            use_table=bool(data.get("use_table", data.get("useTable", False))),
            table=table,
            logo=data.get("logo") or data.get("logoBase64") or None,
            added_images=tuple(images),
        )


@dataclass
class ImageAsset:
    """A media part written by the injector."""

    data: bytes
    target: str  # part name, e.g. word/media/addedImage3.jpeg
    rel_id: Optional[str]
    width_px: int
    height_px: int
    assumed_size: bool = False
