import json
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import structlog

from bidfill.classify import output_name
from bidfill.config import Settings, get_settings
from bidfill.errors import BidFillError, ProposalError
from bidfill.fill.engine import FillEngine
from bidfill.fill.mapper import build_paragraph_map, document_text
from bidfill.fill.markers import find_unfilled
from bidfill.llm import ProposalClient
from bidfill.models import (
    ClassifiedTemplate,
    FillResult,
    ReplacementOutcome,
    ReplacementRequest,
    TemplateCategory,
    TemplateFillReport,
)
from bidfill.package import DocxPackage
from bidfill.proposals import (
    SECOND_PASS_SUFFIX,
    TEMPLATE_FILL_SYSTEM,
    build_user_message,
    parse_proposals,
    render_indexed_text,
)
from bidfill.tags import find_tags, render_tags

logger = structlog.get_logger(__name__)


def apply_proposals(
    document: bytes,
    requests: Iterable[ReplacementRequest],
    fields: Optional[Mapping[str, str]] = None,
    settings: Optional[Settings] = None,
    annotate: bool = True,
) -> FillResult:
    """Applies ready-made proposals to a .docx without asking the model."""
    settings = settings or get_settings()
    package = DocxPackage.from_bytes(document)
    engine = FillEngine(package.markup, fields=fields, settings=settings)
    engine.apply_all(requests)
    if annotate:
        engine.annotate()

    package.markup = engine.markup
    return FillResult(
        document=package.to_bytes(),
        outcomes=engine.outcomes,
        passes=1,
        unfilled_remaining=engine.unfilled_count(),
    )


def write_replacements_log(path: Union[str, Path], outcomes: List[ReplacementOutcome]):
    data = [o.model_dump(mode="json") for o in outcomes]
    Path(path).write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


class TemplateFiller:
    """
    Fills templates with company and tender data using model proposals.

    One template: simple {{tags}} are rendered directly; otherwise proposals
    are requested once, applied, and requested once more at a lower
    temperature if too many unfilled markers remain.
    """

    def __init__(self, client: ProposalClient, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()

    def fill(
        self,
        document: bytes,
        company: Mapping[str, str],
        tender: Mapping[str, str],
        template_name: str = "sablona.docx",
    ) -> FillResult:
        s = self.settings
        package = DocxPackage.from_bytes(document)
        log = logger.bind(template=template_name)

        tags = find_tags(document_text(build_paragraph_map(package.markup)))
        if tags:
            log.info("Template has simple tags, rendering directly", tags=tags)
            return FillResult(document=render_tags(document, {**tender, **company}), mode="tags", passes=0)

        engine = FillEngine(package.markup, fields=company, settings=s)

        # A failure here aborts this template only; the caller decides what to do.
        response = self.client.propose(
            TEMPLATE_FILL_SYSTEM,
            build_user_message(render_indexed_text(engine.paragraphs), template_name, company, tender),
            s.temperature,
        )
        requests = parse_proposals(response.content)
        log.info("First proposal round", proposals=len(requests))
        engine.apply_all(requests, pass_number=1)
        passes = 1

        remaining = engine.unfilled_count()
        if s.second_pass_enabled and remaining > s.second_pass_threshold:
            passes = 2
            log.info("Unfilled markers remain, requesting second round", remaining=remaining)
            try:
                self._second_pass(engine, company, tender, template_name)
            except ProposalError as e:
                log.warning("Second proposal round failed, keeping first-round result", error=str(e))

        engine.annotate()
        package.markup = engine.markup

        result = FillResult(
            document=package.to_bytes(),
            outcomes=engine.outcomes,
            passes=passes,
            unfilled_remaining=engine.unfilled_count(),
        )
        log.info(
            "Template filled",
            applied=result.applied_count,
            skipped=len(result.skipped),
            unfilled=result.unfilled_remaining,
            strategies=result.strategy_usage(),
        )
        return result

    def _second_pass(
        self, engine: FillEngine, company: Mapping[str, str], tender: Mapping[str, str], template_name: str
    ):
        remaining_paragraphs = []
        for p, _ in find_unfilled(engine.paragraphs):
            line = f"[{p.index}] {p.plain_text}"
            if line not in remaining_paragraphs:
                remaining_paragraphs.append(line)

        response = self.client.propose(
            TEMPLATE_FILL_SYSTEM + SECOND_PASS_SUFFIX,
            build_user_message(
                render_indexed_text(engine.paragraphs),
                template_name,
                company,
                tender,
                remaining_markers=remaining_paragraphs[:50],
            ),
            self.settings.second_pass_temperature,
        )
        requests = parse_proposals(response.content)
        logger.info("Second proposal round", template=template_name, proposals=len(requests))
        engine.apply_all(requests, pass_number=2)

    def fill_path(
        self,
        path: Union[str, Path],
        company: Mapping[str, str],
        tender: Mapping[str, str],
    ) -> FillResult:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"File not found: {path}")
        return self.fill(p.read_bytes(), company, tender, template_name=p.name)

    def fill_templates(
        self,
        templates: Iterable[ClassifiedTemplate],
        company: Mapping[str, str],
        tender: Mapping[str, str],
        output_dir: Union[str, Path],
    ) -> List[TemplateFillReport]:
        """
        Fills every template into output_dir, writing <name>_replacements.json
        next to each result. A failing template is reported and skipped.
        """
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        counters: Dict[TemplateCategory, int] = {}
        reports: List[TemplateFillReport] = []

        for template in templates:
            counters[template.category] = counters.get(template.category, 0) + 1
            target = out / output_name(template.category, counters[template.category])

            try:
                result = self.fill_path(template.path, company, tender)
            except (BidFillError, OSError) as e:
                logger.error("Template fill failed", template=template.path.name, error=str(e))
                reports.append(
                    TemplateFillReport(source=template.path, category=template.category, success=False, error=str(e))
                )
                continue
            except Exception as e:
                logger.exception("Unexpected error while filling template", template=template.path.name)
                reports.append(
                    TemplateFillReport(
                        source=template.path,
                        category=template.category,
                        success=False,
                        error=f"{type(e).__name__}: {e}",
                    )
                )
                continue

            target.write_bytes(result.document)
            if result.outcomes:
                write_replacements_log(target.with_name(f"{target.stem}_replacements.json"), result.outcomes)

            reports.append(
                TemplateFillReport(
                    source=template.path,
                    category=template.category,
                    success=True,
                    output=target,
                    strategy_usage=result.strategy_usage(),
                    unfilled_remaining=result.unfilled_remaining,
                )
            )

        return reports
