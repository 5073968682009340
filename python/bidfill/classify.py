import re
import unicodedata
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import structlog
from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from bidfill.config import Settings, get_settings
from bidfill.fill.markers import has_unfilled
from bidfill.models import ClassifiedTemplate, TemplateCategory

logger = structlog.get_logger(__name__)

# Checked in order; patterns are matched against the normalized filename.
FILENAME_PATTERNS: List[Tuple[TemplateCategory, Tuple[str, ...]]] = [
    (TemplateCategory.COVER_SHEET, ("kryci list", "krycilist")),
    (TemplateCategory.SWORN_STATEMENT, ("cestne prohlaseni", "cestne prohl")),
    (TemplateCategory.SUBCONTRACTOR_LIST, ("seznam poddodavatel", "poddodavatel")),
    (TemplateCategory.PURCHASE_CONTRACT, ("kupni smlouva", "navrh smlouvy", "smlouva")),
    (TemplateCategory.TECHNICAL_SPECIFICATION, ("technicka specifikace", "specifikace", "technicke parametry")),
]

CONTENT_KEYWORDS: Dict[TemplateCategory, Tuple[str, ...]] = {
    TemplateCategory.COVER_SHEET: ("kryci list",),
    TemplateCategory.SWORN_STATEMENT: ("cestne prohlaseni", "cestne prohlasuje"),
    TemplateCategory.SUBCONTRACTOR_LIST: ("seznam poddodavatelu", "poddodavatel"),
    TemplateCategory.PURCHASE_CONTRACT: ("kupni smlouva", "kupni smlouvy"),
    TemplateCategory.TECHNICAL_SPECIFICATION: ("technicka specifikace", "technicke specifikace", "technicke parametry"),
}

# Categories a bid needs even when the tender ships no template for them.
FALLBACK_CATEGORIES = (
    TemplateCategory.COVER_SHEET,
    TemplateCategory.SWORN_STATEMENT,
    TemplateCategory.SUBCONTRACTOR_LIST,
)


def normalize(text: str) -> str:
    """Lowercase, strip diacritics, treat _ and - as spaces, collapse whitespace."""
    stripped = "".join(c for c in unicodedata.normalize("NFD", text) if not unicodedata.combining(c))
    return re.sub(r"[\s_\-]+", " ", stripped.lower()).strip()


def classify_filename(filename: str) -> Optional[TemplateCategory]:
    name = normalize(Path(filename).stem)
    for category, patterns in FILENAME_PATTERNS:
        if any(p in name for p in patterns):
            return category
    return None


def classify_content(text: str) -> Optional[TemplateCategory]:
    """
    The category whose keyword appears earliest wins (titles come first).
    Text without any unfilled marker is not a template.
    """
    if not has_unfilled(text):
        return None

    normalized = normalize(text)
    best: Optional[TemplateCategory] = None
    best_pos = len(normalized) + 1
    for category, keywords in CONTENT_KEYWORDS.items():
        for keyword in keywords:
            pos = normalized.find(keyword)
            if pos != -1 and pos < best_pos:
                best, best_pos = category, pos
    return best


def extract_docx_text(path: Union[str, Path]) -> str:
    doc = Document(str(path))
    parts = [p.text for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            seen = set()
            for cell in row.cells:
                # Merged cells repeat in row.cells
                if id(cell._tc) in seen:
                    continue
                seen.add(id(cell._tc))
                parts.append(cell.text)
    return "\n".join(parts)


def classify(directory: Union[str, Path], settings: Optional[Settings] = None) -> List[ClassifiedTemplate]:
    """
    Assigns a category to each .docx file in directory.

    Filename patterns are tried first, then content keywords. At most
    max_templates_per_category files are kept per category.
    """
    settings = settings or get_settings()
    root = Path(directory)
    if not root.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    results: List[ClassifiedTemplate] = []
    per_category: Dict[TemplateCategory, int] = {}

    for path in sorted(root.iterdir()):
        if not path.is_file() or path.suffix.lower() != ".docx" or path.name.startswith("~$"):
            continue

        category = classify_filename(path.name)
        matched_by = "filename"
        if category is None:
            try:
                text = extract_docx_text(path)
            except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
                logger.warning("Skipping unreadable file", file=path.name, error=str(e))
                continue
            category = classify_content(text)
            matched_by = "content"

        if category is None:
            logger.debug("Not a template", file=path.name)
            continue

        if per_category.get(category, 0) >= settings.max_templates_per_category:
            logger.info("Category limit reached, skipping", file=path.name, category=category.value)
            continue

        per_category[category] = per_category.get(category, 0) + 1
        results.append(ClassifiedTemplate(path=path, category=category, matched_by=matched_by))
        logger.info("Template classified", file=path.name, category=category.value, matched_by=matched_by)

    return results


def add_fallback_templates(
    classified: List[ClassifiedTemplate], fallback_dir: Union[str, Path]
) -> List[ClassifiedTemplate]:
    """Appends <fallback_dir>/<category>.docx for required categories the tender did not provide."""
    found = {t.category for t in classified}
    result = list(classified)
    for category in FALLBACK_CATEGORIES:
        if category in found:
            continue
        path = Path(fallback_dir) / f"{category.value}.docx"
        if path.is_file():
            result.append(ClassifiedTemplate(path=path, category=category, matched_by="fallback"))
            logger.info("Added fallback template", category=category.value, path=str(path))
    return result


def output_name(category: TemplateCategory, ordinal: int) -> str:
    """kryci_list.docx for the first template of a category, kryci_list_2.docx for the second, ..."""
    suffix = f"_{ordinal}" if ordinal > 1 else ""
    return f"{category.value}{suffix}.docx"
