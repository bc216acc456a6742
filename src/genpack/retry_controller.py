"""Retry policy for truncated and failed batches.

Linear backoff: the n-th retry of a batch waits ``retry_backoff_ms * n``
(1s, 2s, 3s with defaults). A batch is retried at most
``max_retry_attempts`` times; after that the session degrades instead of
failing: truncated output is kept as-is, errors fall through to a targeted
fetch for the missing files.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .completion_detector import merge_files
from .models import ContinuationState, ParsedBatchResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_MS = 1000


class RetryAction(str, Enum):
    RETRY = "retry"
    PROCEED_PARTIAL = "proceed_partial"
    TARGETED_FETCH = "targeted_fetch"
    FAIL = "fail"


@dataclass(frozen=True)
class RetryDecision:
    action: RetryAction
    state: ContinuationState
    delay_ms: int = 0
    reason: str = ""

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


class RetryController:
    """Maps a truncated or failed batch to the next step."""

    def __init__(
        self,
        max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS,
        retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
    ):
        self.max_retry_attempts = max_retry_attempts
        self.retry_backoff_ms = retry_backoff_ms

    def backoff_ms(self, retry_attempts: int) -> int:
        """Delay before the retry that follows ``retry_attempts`` earlier retries."""
        return self.retry_backoff_ms * (retry_attempts + 1)

    def can_retry(self, state: ContinuationState) -> bool:
        return state.retry_attempts < self.max_retry_attempts

    def on_truncated(self, state: ContinuationState, parsed: ParsedBatchResult) -> RetryDecision:
        """Keep the partial files; retry the batch or proceed with what exists."""
        merged_state = replace(
            state, accumulated_files=merge_files(state.accumulated_files, parsed.files)
        )

        if self.can_retry(state):
            attempt = state.retry_attempts + 1
            delay_ms = self.backoff_ms(state.retry_attempts)
            logger.info(
                f"[Retry] Response truncated, auto-retry attempt "
                f"{attempt}/{self.max_retry_attempts} in {delay_ms}ms"
            )
            return RetryDecision(
                action=RetryAction.RETRY,
                state=replace(merged_state, retry_attempts=attempt),
                delay_ms=delay_ms,
                reason="truncated",
            )

        logger.warning("[Retry] Max retries for truncation reached, proceeding with partial files")
        return RetryDecision(
            action=RetryAction.PROCEED_PARTIAL,
            state=merged_state,
            reason="truncation retries exhausted",
        )

    def on_error(self, state: ContinuationState, error: Optional[BaseException] = None) -> RetryDecision:
        """Retry the batch, or pick the fallback once retries are exhausted."""
        remaining = state.generation_meta.remaining_files

        if self.can_retry(state) and remaining:
            attempt = state.retry_attempts + 1
            delay_ms = self.backoff_ms(state.retry_attempts)
            logger.info(
                f"[Retry] Batch failed ({type(error).__name__ if error else 'error'}), "
                f"auto-retry attempt {attempt}/{self.max_retry_attempts} in {delay_ms}ms"
            )
            return RetryDecision(
                action=RetryAction.RETRY,
                state=replace(state, retry_attempts=attempt),
                delay_ms=delay_ms,
                reason=str(error) if error else "error",
            )

        if remaining and state.accumulated_files:
            logger.warning(
                f"[Retry] Retries exhausted, falling back to targeted request for {len(remaining)} file(s)"
            )
            return RetryDecision(action=RetryAction.TARGETED_FETCH, state=state, reason="retries exhausted")

        if state.accumulated_files:
            return RetryDecision(
                action=RetryAction.PROCEED_PARTIAL, state=state, reason="retries exhausted"
            )

        logger.error("[Retry] Retries exhausted and no files were produced")
        return RetryDecision(action=RetryAction.FAIL, state=state, reason="no files produced")
