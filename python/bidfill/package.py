import zipfile
from io import BytesIO
from pathlib import Path
from typing import List, Tuple, Union

import structlog

from bidfill.errors import PackageError

logger = structlog.get_logger(__name__)

DOCUMENT_PART = "word/document.xml"


class DocxPackage:
    """
    A .docx zip package held in memory.

    Only the primary markup (word/document.xml) is exposed for editing; every
    other member is written back with its original bytes, order and
    compression type.
    """

    def __init__(self, members: List[Tuple[zipfile.ZipInfo, bytes]], markup: str):
        self._members = members
        self.markup = markup

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxPackage":
        try:
            with zipfile.ZipFile(BytesIO(data)) as zf:
                members = [(info, zf.read(info.filename)) for info in zf.infolist()]
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise PackageError(f"Not a valid document package: {e}") from e

        document = next((raw for info, raw in members if info.filename == DOCUMENT_PART), None)
        if document is None:
            raise PackageError(f"Package has no {DOCUMENT_PART}")

        try:
            markup = document.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PackageError(f"{DOCUMENT_PART} is not UTF-8 encoded") from e

        return cls(members, markup)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "DocxPackage":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return cls.from_bytes(p.read_bytes())

    def to_bytes(self) -> bytes:
        out = BytesIO()
        with zipfile.ZipFile(out, "w") as zf:
            for info, raw in self._members:
                if info.filename == DOCUMENT_PART:
                    raw = self.markup.encode("utf-8")
                zf.writestr(info, raw)
        return out.getvalue()

    def member(self, name: str) -> bytes:
        for info, raw in self._members:
            if info.filename == name:
                return raw
        raise KeyError(name)

    @property
    def member_names(self) -> List[str]:
        return [info.filename for info, _ in self._members]
