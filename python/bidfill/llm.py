import time
from typing import Callable, Optional, Protocol

import anthropic
import structlog
from pydantic import BaseModel

from bidfill.config import Settings, get_settings
from bidfill.errors import ProposalError

logger = structlog.get_logger(__name__)


class ProposalResponse(BaseModel):
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


class ProposalClient(Protocol):
    def propose(self, system: str, user: str, temperature: float) -> ProposalResponse: ...


def is_retryable(error: Exception) -> bool:
    """
    Rate limits, overload, server errors and connection problems are retried.
    Malformed requests, bad credentials and missing models are not.
    """
    if isinstance(
        error,
        (
            anthropic.BadRequestError,
            anthropic.AuthenticationError,
            anthropic.PermissionDeniedError,
            anthropic.NotFoundError,
        ),
    ):
        return False
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code == 429 or error.status_code >= 500
    return isinstance(error, (anthropic.APIConnectionError, anthropic.APITimeoutError))


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * (2**attempt), cap)


class AnthropicProposalClient:
    """Synchronous Messages API client with bounded retry and exponential backoff."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[anthropic.Anthropic] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        if client is None:
            if not self.settings.anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY not found in environment")
            # Retries are handled here, not by the SDK.
            client = anthropic.Anthropic(
                api_key=self.settings.anthropic_api_key,
                timeout=self.settings.request_timeout,
                max_retries=0,
            )
        self._client = client
        self._sleep = sleep

    def propose(self, system: str, user: str, temperature: float) -> ProposalResponse:
        s = self.settings
        last_error: Optional[Exception] = None

        for attempt in range(s.max_retries + 1):
            try:
                response = self._client.messages.create(
                    model=s.model,
                    max_tokens=s.max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
            except anthropic.APIError as e:
                last_error = e
                if not is_retryable(e) or attempt == s.max_retries:
                    break
                delay = backoff_delay(attempt, s.retry_base_delay, s.retry_max_delay)
                logger.warning("Proposal call failed, retrying", attempt=attempt + 1, delay=delay, error=str(e))
                self._sleep(delay)
                continue

            content = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
            logger.info(
                "Proposal call finished",
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                stop_reason=response.stop_reason,
            )
            return ProposalResponse(
                content=content,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                model=response.model,
            )

        raise ProposalError(f"Proposal call failed: {last_error}") from last_error
