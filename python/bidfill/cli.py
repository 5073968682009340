import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from bidfill import __version__
from bidfill.classify import add_fallback_templates, classify
from bidfill.config import get_settings
from bidfill.errors import BidFillError
from bidfill.fill.mapper import build_paragraph_map
from bidfill.llm import AnthropicProposalClient
from bidfill.models import CompanyProfile, FillResult, TenderData
from bidfill.package import DocxPackage
from bidfill.pipeline import TemplateFiller, apply_proposals, write_replacements_log
from bidfill.proposals import parse_proposals, render_indexed_text

M = TypeVar("M", bound=BaseModel)


def _fail(message: str):
    print(f"❌ {message}", file=sys.stderr)
    sys.exit(1)


def _read_package(path: Path) -> DocxPackage:
    if not path.exists():
        _fail(f"File not found: {path}")
    try:
        return DocxPackage.from_path(path)
    except BidFillError as e:
        _fail(f"Cannot read {path}: {e}")


def _load_model(path: Optional[Path], model: Type[M]) -> Optional[M]:
    if path is None:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return model.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        _fail(f"Error reading {path}: {e}")


def _fields(path: Optional[Path], model: Type[M]) -> Dict[str, str]:
    loaded = _load_model(path, model)
    return loaded.as_fields() if loaded is not None else {}


def _print_stats(result: FillResult):
    usage = ", ".join(f"{k}={v}" for k, v in sorted(result.strategy_usage().items()))
    print(f"Stats: {result.applied_count} applied, {len(result.skipped)} skipped.", file=sys.stderr)
    if usage:
        print(f"Strategies: {usage}", file=sys.stderr)
    print(f"Unfilled markers left: {result.unfilled_remaining}", file=sys.stderr)


def _default_output(source: Path) -> Path:
    return source.with_name(f"{source.stem}_filled.docx")


def handle_extract(args):
    package = _read_package(args.input)
    text = render_indexed_text(build_paragraph_map(package.markup))
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Extracted text to {args.output}", file=sys.stderr)
    else:
        print(text)


def handle_classify(args):
    try:
        templates = classify(args.directory)
    except NotADirectoryError as e:
        _fail(str(e))
    if args.fallback_dir:
        templates = add_fallback_templates(templates, args.fallback_dir)

    if args.json:
        print(json.dumps([t.model_dump(mode="json") for t in templates], ensure_ascii=False, indent=2))
        return
    if not templates:
        print("No templates found.", file=sys.stderr)
    for t in templates:
        print(f"{t.category.value:<24} {t.matched_by:<9} {t.path}")


def handle_apply(args):
    if not args.input.exists():
        _fail(f"File not found: {args.input}")
    try:
        raw = args.proposals.read_text(encoding="utf-8")
    except OSError as e:
        _fail(f"Error reading proposals: {e}")

    requests = parse_proposals(raw)
    if not requests:
        print("Warning: No proposals found.", file=sys.stderr)
    print(f"Applying {len(requests)} proposals...", file=sys.stderr)

    try:
        result = apply_proposals(
            args.input.read_bytes(),
            requests,
            fields=_fields(args.company, CompanyProfile),
            annotate=not args.no_annotate,
        )
    except BidFillError as e:
        _fail(f"Cannot read {args.input}: {e}")

    output_path = args.output or _default_output(args.input)
    with open(output_path, "wb") as f:
        f.write(result.document)
    if args.log:
        write_replacements_log(args.log, result.outcomes)

    print(f"✅ Saved to {output_path}", file=sys.stderr)
    _print_stats(result)
    if result.skipped:
        sys.exit(1)


def _filler() -> TemplateFiller:
    try:
        return TemplateFiller(AnthropicProposalClient())
    except ValueError as e:
        _fail(str(e))


def handle_fill(args):
    company = _fields(args.company, CompanyProfile)
    tender = _fields(args.tender, TenderData)
    filler = _filler()

    try:
        result = filler.fill_path(args.input, company, tender)
    except (BidFillError, OSError) as e:
        _fail(f"Fill failed: {e}")

    output_path = args.output or _default_output(args.input)
    with open(output_path, "wb") as f:
        f.write(result.document)
    if result.outcomes:
        write_replacements_log(output_path.with_name(f"{output_path.stem}_replacements.json"), result.outcomes)

    print(f"✅ Saved to {output_path} ({result.mode}, {result.passes} proposal round(s))", file=sys.stderr)
    _print_stats(result)
    if result.skipped:
        sys.exit(1)


def handle_fill_dir(args):
    company = _fields(args.company, CompanyProfile)
    tender = _fields(args.tender, TenderData)

    try:
        templates = classify(args.directory)
    except NotADirectoryError as e:
        _fail(str(e))
    if args.fallback_dir:
        templates = add_fallback_templates(templates, args.fallback_dir)
    if not templates:
        _fail("No templates found.")

    print(f"Filling {len(templates)} template(s)...", file=sys.stderr)
    reports = _filler().fill_templates(templates, company, tender, args.output)

    failed: List[str] = []
    for report in reports:
        if report.success:
            print(f"✅ {report.source.name} -> {report.output} (unfilled: {report.unfilled_remaining})", file=sys.stderr)
        else:
            failed.append(report.source.name)
            print(f"❌ {report.source.name}: {report.error}", file=sys.stderr)

    if args.json:
        print(json.dumps([r.model_dump(mode="json") for r in reports], ensure_ascii=False, indent=2))
    if failed:
        sys.exit(1)


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="bidfill", description="bidfill: fills public-procurement bid templates")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_extract = subparsers.add_parser("extract", help="Print the paragraph-indexed text of a DOCX template")
    p_extract.add_argument("input", type=Path, help="Input DOCX file")
    p_extract.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_extract.set_defaults(func=handle_extract)

    p_classify = subparsers.add_parser("classify", help="Detect bid templates in a directory")
    p_classify.add_argument("directory", type=Path, help="Directory with tender documents")
    p_classify.add_argument("--fallback-dir", type=Path, help="Directory with generic templates for missing categories")
    p_classify.add_argument("--json", action="store_true", help="Output JSON")
    p_classify.set_defaults(func=handle_classify)

    p_apply = subparsers.add_parser("apply", help="Apply a proposals JSON file to a template (no model call)")
    p_apply.add_argument("input", type=Path, help="Template DOCX")
    p_apply.add_argument("proposals", type=Path, help='JSON list of {"original", "replacement"} objects')
    p_apply.add_argument("-o", "--output", type=Path, help="Output DOCX path (default: <input>_filled.docx)")
    p_apply.add_argument("--company", type=Path, help="Company profile JSON (enables label matching)")
    p_apply.add_argument("--log", type=Path, help="Write the replacement outcomes to this JSON file")
    p_apply.add_argument("--no-annotate", action="store_true", help="Do not highlight filled and unfilled places")
    p_apply.set_defaults(func=handle_apply)

    p_fill = subparsers.add_parser("fill", help="Fill one template using model proposals")
    p_fill.add_argument("input", type=Path, help="Template DOCX")
    p_fill.add_argument("--company", type=Path, required=True, help="Company profile JSON")
    p_fill.add_argument("--tender", type=Path, required=True, help="Tender data JSON")
    p_fill.add_argument("-o", "--output", type=Path, help="Output DOCX path (default: <input>_filled.docx)")
    p_fill.set_defaults(func=handle_fill)

    p_fill_dir = subparsers.add_parser("fill-dir", help="Classify and fill all templates of a tender")
    p_fill_dir.add_argument("directory", type=Path, help="Directory with tender documents")
    p_fill_dir.add_argument("--company", type=Path, required=True, help="Company profile JSON")
    p_fill_dir.add_argument("--tender", type=Path, required=True, help="Tender data JSON")
    p_fill_dir.add_argument("-o", "--output", type=Path, required=True, help="Output directory")
    p_fill_dir.add_argument("--fallback-dir", type=Path, help="Directory with generic templates for missing categories")
    p_fill_dir.add_argument("--json", action="store_true", help="Print the per-template report as JSON")
    p_fill_dir.set_defaults(func=handle_fill_dir)

    args = parser.parse_args(argv)
    get_settings().configure_logging()
    args.func(args)


if __name__ == "__main__":
    main()
