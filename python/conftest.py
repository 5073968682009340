"""
Shared fixtures: in-memory .docx packages and a stub proposal client.
"""

import json
import zipfile
from io import BytesIO
from typing import Iterable, List, Optional, Tuple

import pytest
from docx import Document

from bidfill.config import Settings
from bidfill.llm import ProposalResponse

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

CONTENT_TYPES = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
    '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
    '<Default Extension="xml" ContentType="application/xml"/>'
    '<Override PartName="/word/document.xml" '
    'ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
    "</Types>"
)

ROOT_RELS = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
    '<Relationship Id="rId1" '
    'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" '
    'Target="word/document.xml"/>'
    "</Relationships>"
)

STYLES = f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?><w:styles xmlns:w="{W_NS}"/>'


# ---------------------------------------------------------------------------
# Markup builders
# ---------------------------------------------------------------------------


def wrap_body(body: str) -> str:
    """A complete word/document.xml around the given body content."""
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{W_NS}" '
        'xmlns:v="urn:schemas-microsoft-com:vml">'
        f"<w:body>{body}</w:body></w:document>"
    )


def run(text: str, rpr: str = "") -> str:
    attr = ' xml:space="preserve"' if text != text.strip() else ""
    props = f"<w:rPr>{rpr}</w:rPr>" if rpr else ""
    return f"<w:r>{props}<w:t{attr}>{text}</w:t></w:r>"


def para(*parts: str) -> str:
    return "<w:p>" + "".join(parts) + "</w:p>"


def make_docx(body: str, extra_members: Optional[Iterable[Tuple[str, bytes]]] = None) -> bytes:
    """A minimal package whose document.xml holds body; styles.xml rides along unchanged."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("[Content_Types].xml", CONTENT_TYPES)
        zf.writestr("_rels/.rels", ROOT_RELS)
        zf.writestr("word/document.xml", wrap_body(body))
        zf.writestr(zipfile.ZipInfo("word/styles.xml"), STYLES)
        for name, data in extra_members or ():
            zf.writestr(name, data)
    return buf.getvalue()


def read_document_xml(docx_bytes: bytes) -> str:
    with zipfile.ZipFile(BytesIO(docx_bytes)) as zf:
        return zf.read("word/document.xml").decode("utf-8")


def doc_to_bytes(doc) -> bytes:
    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


def python_docx_template(*paragraphs: str) -> bytes:
    """A real Word package built with python-docx, one paragraph per argument."""
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    return doc_to_bytes(doc)


# ---------------------------------------------------------------------------
# Proposal stub
# ---------------------------------------------------------------------------


class StubProposalClient:
    """Returns queued answers in order and records every call."""

    def __init__(self, answers: List[object]):
        self.answers = list(answers)
        self.calls: List[Tuple[str, str, float]] = []

    def propose(self, system: str, user: str, temperature: float) -> ProposalResponse:
        self.calls.append((system, user, temperature))
        answer = self.answers.pop(0) if self.answers else "[]"
        if isinstance(answer, Exception):
            raise answer
        if not isinstance(answer, str):
            answer = json.dumps(answer, ensure_ascii=False)
        return ProposalResponse(content=answer, model="stub")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings():
    return Settings(_env_file=None, anthropic_api_key="test-key")


@pytest.fixture
def company():
    return {
        "nazev": "Alfa Technik s.r.o.",
        "ico": "07023987",
        "dic": "CZ07023987",
        "sidlo": "Průmyslová 12, 602 00 Brno",
        "jednajici_osoba": "Ing. Jana Nováková, jednatelka",
        "telefon": "+420 777 123 456",
        "email": "nabidky@alfatechnik.cz",
    }


@pytest.fixture
def tender():
    return {
        "nazev_zakazky": "Dodávka laboratorních centrifug",
        "zadavatel": "Masarykova univerzita",
        "cena_bez_dph": "1 250 000,00 Kč",
        "cena_s_dph": "1 512 500,00 Kč",
        "datum": "01.02.2025",
    }
