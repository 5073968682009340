"""Runtime configuration.

Loaded from environment variables (prefix ``BIDFILL_``) or a ``.env`` file.
The matching thresholds are empirical heuristics and are kept here rather
than as module constants so they can be tuned per deployment.
"""

import logging
import sys
from typing import Optional

import structlog
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BIDFILL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Proposal collaborator
    anthropic_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("BIDFILL_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
        description="API key for the language model that proposes replacements.",
    )
    model: str = Field(default="claude-sonnet-4-5", description="Model used for replacement proposals.")
    max_tokens: int = Field(default=16000, description="Output token limit of one proposal call.")
    temperature: float = Field(default=0.1, description="Sampling temperature of the first proposal round.")
    second_pass_temperature: float = Field(
        default=0.0,
        description="Sampling temperature of the second, stricter proposal round.",
    )
    max_retries: int = Field(default=4, ge=0, description="Retries after a failed proposal call.")
    retry_base_delay: float = Field(default=2.0, ge=0, description="Initial backoff in seconds, doubled per attempt.")
    retry_max_delay: float = Field(default=30.0, ge=0, description="Upper bound of a single backoff sleep.")
    request_timeout: float = Field(default=600.0, description="Timeout of one proposal call in seconds.")

    # Matching heuristics
    fuzzy_token_threshold: float = Field(
        default=0.8,
        gt=0,
        le=1,
        description="Share of proposal tokens that must occur in a paragraph for the fuzzy strategy.",
    )
    proximity_window: int = Field(
        default=200,
        gt=0,
        description="Markup characters searched after an anchor phrase by the proximity fallback.",
    )
    multi_paragraph_slack: int = Field(
        default=2,
        ge=0,
        description="Extra paragraphs (beyond one per line) a multi-line proposal may span.",
    )
    tolerant_max_length: int = Field(
        default=300,
        gt=0,
        description="Longest proposal text the tag-tolerant raw pattern is built for.",
    )

    # Pipeline
    consolidate_runs: bool = Field(default=True, description="Merge fragmented text runs before matching.")
    second_pass_enabled: bool = Field(default=True)
    second_pass_threshold: int = Field(
        default=2,
        ge=0,
        description="A second proposal round is requested when more unfilled markers than this remain.",
    )

    # Annotation
    review_highlight: str = Field(default="yellow", description="Highlight of values filled in by the model.")
    manual_highlight: str = Field(default="red", description="Highlight of markers left for manual completion.")
    annotation_cap: int = Field(default=500, gt=0, description="Safety cap on unfilled-marker iterations.")

    # Classification
    max_templates_per_category: int = Field(default=4, gt=0)

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR.")
    log_json: bool = Field(default=False, description="Render log events as JSON lines.")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    def configure_logging(self, json_output: Optional[bool] = None) -> None:
        """Route structlog through stdlib logging on stderr."""
        level = getattr(logging, self.log_level, logging.INFO)
        use_json = self.log_json if json_output is None else json_output

        renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=False)
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                renderer,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        # stdout may carry a protocol (MCP) or document text (CLI)
        logging.basicConfig(stream=sys.stderr, format="%(message)s", level=level, force=True)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide Settings instance, creating it on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
