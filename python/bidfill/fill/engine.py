from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from bidfill.config import Settings, get_settings
from bidfill.fill.annotate import annotate
from bidfill.fill.consolidate import consolidate
from bidfill.fill.mapper import Paragraph, apply_splices, build_paragraph_map, document_text
from bidfill.fill.markers import count_unfilled
from bidfill.fill.strategies import RAW_STRATEGIES, STRATEGIES, EditSpan, MatchContext
from bidfill.models import ReplacementOutcome, ReplacementRequest, Strategy
from bidfill.utils.markup import is_well_formed

logger = structlog.get_logger(__name__)


def _preview(text: str, limit: int = 80) -> str:
    text = text.replace("\n", "⏎")
    return text if len(text) <= limit else text[: limit - 1] + "…"


def apply_replacement(
    markup: str,
    paragraphs: Tuple[Paragraph, ...],
    original: str,
    replacement: str,
    fields: Optional[Dict[str, str]] = None,
    settings: Optional[Settings] = None,
) -> Tuple[str, Tuple[Paragraph, ...], Strategy, Optional[EditSpan]]:
    """
    Runs the strategy cascade for one request.

    Returns the new markup, its freshly built paragraph map, the strategy that
    won and the applied edit. When nothing matches the inputs are returned
    unchanged with Strategy.NOT_FOUND.
    """
    if not original.strip() or original == replacement:
        return markup, paragraphs, Strategy.NOT_FOUND, None

    # Only the multi-paragraph strategy can place a line break; elsewhere it becomes a space.
    single_line = replacement.replace("\r\n", "\n").replace("\n", " ")
    ctx = MatchContext(markup, paragraphs, dict(fields or {}), settings or get_settings())
    for strategy, try_match in STRATEGIES:
        span = try_match(ctx, original, replacement if strategy == Strategy.MULTI_PARAGRAPH else single_line)
        if span is None:
            continue

        new_markup = apply_splices(markup, span.splices)
        if new_markup == markup:
            continue
        if strategy in RAW_STRATEGIES and not is_well_formed(new_markup):
            logger.warning("Rejected raw edit that breaks the markup", strategy=strategy.value)
            continue

        return new_markup, build_paragraph_map(new_markup), strategy, span

    return markup, paragraphs, Strategy.NOT_FOUND, None


class FillEngine:
    """
    Applies replacement requests to one document's primary markup.

    The markup is consolidated once on construction; the paragraph map is
    rebuilt after every successful edit.
    """

    def __init__(
        self,
        markup: str,
        fields: Optional[Dict[str, str]] = None,
        settings: Optional[Settings] = None,
        consolidate_runs: Optional[bool] = None,
    ):
        self.settings = settings or get_settings()
        if consolidate_runs is None:
            consolidate_runs = self.settings.consolidate_runs

        self.markup = consolidate(markup) if consolidate_runs else markup
        self.fields = dict(fields or {})
        self.paragraphs = build_paragraph_map(self.markup)
        self.outcomes: List[ReplacementOutcome] = []

    @property
    def plain_text(self) -> str:
        return document_text(self.paragraphs)

    def unfilled_count(self) -> int:
        return count_unfilled(self.paragraphs)

    def apply(self, request: ReplacementRequest, pass_number: int = 1) -> ReplacementOutcome:
        self.markup, self.paragraphs, strategy, span = apply_replacement(
            self.markup,
            self.paragraphs,
            request.original,
            request.replacement,
            fields=self.fields,
            settings=self.settings,
        )

        if span is None:
            logger.warning("Replacement not found", original=_preview(request.original), pass_number=pass_number)
            outcome = ReplacementOutcome(request=request, strategy_used=strategy, pass_number=pass_number)
        else:
            logger.info(
                "Replacement applied",
                strategy=strategy.value,
                matched=_preview(span.matched_text),
                applied=_preview(span.applied_text),
            )
            outcome = ReplacementOutcome(
                request=request,
                strategy_used=strategy,
                matched_text=span.matched_text,
                applied_text=span.applied_text,
                pass_number=pass_number,
            )

        self.outcomes.append(outcome)
        return outcome

    def apply_all(self, requests: Iterable[ReplacementRequest], pass_number: int = 1) -> List[ReplacementOutcome]:
        return [self.apply(request, pass_number) for request in requests]

    def applied_values(self) -> List[str]:
        values: List[str] = []
        for outcome in self.outcomes:
            if outcome.applied and outcome.applied_text:
                values.extend(v for v in outcome.applied_text.split("\n") if v.strip())
        return values

    def annotate(self) -> str:
        self.markup = annotate(self.markup, self.applied_values(), settings=self.settings)
        self.paragraphs = build_paragraph_map(self.markup)
        return self.markup
