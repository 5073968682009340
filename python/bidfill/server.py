import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import structlog
from mcp.server.fastmcp import FastMCP

from bidfill.classify import add_fallback_templates, classify
from bidfill.config import get_settings
from bidfill.errors import BidFillError
from bidfill.fill.mapper import build_paragraph_map
from bidfill.llm import AnthropicProposalClient
from bidfill.models import CompanyProfile, FillResult, ReplacementRequest, TenderData
from bidfill.package import DocxPackage
from bidfill.pipeline import TemplateFiller, apply_proposals
from bidfill.proposals import render_indexed_text

logger = structlog.get_logger(__name__)

mcp = FastMCP("bidfill Template Filling Service")


def _read_file_bytes(path: str) -> bytes:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return p.read_bytes()


def _summary(result: FillResult, output_path: str) -> str:
    lines = [
        f"Saved to: {output_path}",
        f"Applied: {result.applied_count}, skipped: {len(result.skipped)}, unfilled markers left: "
        f"{result.unfilled_remaining}",
    ]
    usage = result.strategy_usage()
    if usage:
        lines.append("Strategies: " + ", ".join(f"{k}={v}" for k, v in sorted(usage.items())))
    for outcome in result.skipped:
        lines.append(f"Not found: {outcome.request.original[:80]}")
    return "\n".join(lines)


@mcp.tool()
def read_template(file_path: str) -> str:
    """
    Reads a DOCX template and returns its text, one paragraph per line,
    each prefixed with its paragraph index ("[12] IČO: doplní účastník").

    Args:
        file_path: Absolute path to the DOCX file.
    """
    try:
        package = DocxPackage.from_bytes(_read_file_bytes(file_path))
        return render_indexed_text(build_paragraph_map(package.markup))
    except (BidFillError, OSError) as e:
        return f"Error reading file: {str(e)}"


@mcp.tool()
def classify_templates(directory: str, fallback_dir: Optional[str] = None) -> str:
    """
    Finds bid templates in a tender directory and assigns each a category
    (kryci_list, cestne_prohlaseni, seznam_poddodavatelu, kupni_smlouva, technicka_specifikace).

    Args:
        directory: Directory with the tender documents.
        fallback_dir: Optional directory with generic templates named <category>.docx,
                      used for required categories the tender does not provide.
    """
    try:
        templates = classify(directory)
        if fallback_dir:
            templates = add_fallback_templates(templates, fallback_dir)
    except OSError as e:
        return f"Error: {str(e)}"
    return json.dumps([t.model_dump(mode="json") for t in templates], ensure_ascii=False, indent=2)


@mcp.tool()
def apply_replacements(
    original_docx_path: str,
    replacements: List[ReplacementRequest],
    output_path: Optional[str] = None,
    company: Optional[Dict[str, str]] = None,
) -> str:
    """
    Applies replacement proposals to a template without calling a model.
    Filled values are highlighted for review; remaining placeholders are
    highlighted for manual completion.

    Args:
        original_docx_path: Absolute path to the template.
        replacements: List of {"original", "replacement"} pairs. "original" should quote the
                      template text with a few words of context around the placeholder.
        output_path: Optional output path. Defaults to '<name>_filled.docx'.
        company: Optional company fields (ico, dic, sidlo, ...) used to fill labelled fields
                 even when the quoted placeholder wording is wrong.
    """
    try:
        if not output_path:
            p = Path(original_docx_path)
            output_path = str(p.parent / f"{p.stem}_filled.docx")

        result = apply_proposals(_read_file_bytes(original_docx_path), replacements, fields=company)
        Path(output_path).write_bytes(result.document)
        return _summary(result, output_path)
    except (BidFillError, OSError) as e:
        return f"Error applying replacements: {str(e)}"


@mcp.tool()
def fill_template(
    original_docx_path: str,
    company: Dict[str, str],
    tender: Dict[str, str],
    output_path: Optional[str] = None,
) -> str:
    """
    Fills a template end-to-end: asks the language model for replacement
    proposals (twice if many placeholders remain), applies them and marks
    the result for review.

    Args:
        original_docx_path: Absolute path to the template.
        company: Company profile (nazev, ico, dic, sidlo, ucet, jednajici_osoba, telefon, email, ...).
        tender: Tender data (nazev_zakazky, zadavatel, cena_bez_dph, cena_s_dph, datum, ...).
        output_path: Optional output path. Defaults to '<name>_filled.docx'.
    """
    try:
        company_fields = CompanyProfile.model_validate(company).as_fields()
        tender_fields = TenderData.model_validate(tender).as_fields()
        filler = TemplateFiller(AnthropicProposalClient())

        p = Path(original_docx_path)
        if not output_path:
            output_path = str(p.parent / f"{p.stem}_filled.docx")

        result = filler.fill_path(p, company_fields, tender_fields)
        Path(output_path).write_bytes(result.document)
        return _summary(result, output_path)
    except (BidFillError, OSError, ValueError) as e:
        return f"Error filling template: {str(e)}"


def main():
    # stdout carries the JSON-RPC stream; logs must go to stderr.
    get_settings().configure_logging(json_output=True)
    logger.info("Starting bidfill MCP server", python=sys.version.split()[0])
    mcp.run()


if __name__ == "__main__":
    main()
