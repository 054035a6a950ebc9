"""Retry policy for tool execution.

Voice never retries (the latency budget forbids it). Text retries idempotent
tools once, with backoff, when the failure is retryable and nothing was
partially written.
"""
import logging
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, before_sleep_log, retry_if_result, stop_after_attempt, wait_exponential

from .definition import Mode, ToolMetadata
from .response import ToolResponse

logger = logging.getLogger(__name__)

TEXT_MAX_ATTEMPTS = 2
DEFAULT_DELAY_SECONDS = 0.3
MAX_DELAY_SECONDS = 3.0


def should_retry(response: ToolResponse) -> bool:
    return (
        not response.ok
        and response.error.retryable
        and not response.error.partial_side_effects
    )


def _last_result(retry_state):
    return retry_state.outcome.result()


async def execute_with_retry(
    call: Callable[[], Awaitable[ToolResponse]],
    mode,
    tool: ToolMetadata,
    delay: float = DEFAULT_DELAY_SECONDS,
    max_attempts: int = TEXT_MAX_ATTEMPTS,
) -> ToolResponse:
    if Mode(mode) == Mode.VOICE or not tool.idempotent or max_attempts <= 1:
        return await call()

    retrying = AsyncRetrying(
        retry=retry_if_result(should_retry),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=delay, max=MAX_DELAY_SECONDS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        retry_error_callback=_last_result,
        reraise=True,
    )
    response = None
    async for attempt in retrying:
        with attempt:
            response = await call()
        if not attempt.retry_state.outcome.failed:
            attempt.retry_state.set_result(response)
    attempts = retrying.statistics.get("attempt_number", 1)
    if attempts > 1:
        logger.info(f"{tool.tool_id} finished after {attempts} attempts (ok={response.ok})")
    return response
