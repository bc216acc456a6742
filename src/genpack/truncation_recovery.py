"""
Truncation recovery for responses cut off mid-structure.

Two entry points:

- ``analyze_truncated_response`` inspects a cut-off first response and says
  what to do with it: start a continuation session for the files the plan
  still expects, accept what was recovered, or give up.
- ``TruncationRecovery.retry`` is the lower-level track driven by a
  ``TruncationRecoveryState``: ask the service to continue from where the
  text stopped, then parse the original text and the continuation together.

Continuing from the cut is cheaper than regenerating: a regenerated response
tends to truncate at about the same place again.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional

from .completion_detector import bare_name, merge_files
from .config import GenerationSettings
from .exceptions import TruncatedOutputError
from .generation_service import GenerationService, StreamOptions
from .models import (
    FileSet,
    GenerationMeta,
    GenerationPlan,
    PartialFile,
    TruncationRecoveryState,
    estimate_total_batches,
)
from .progress import ProgressNotifier
from .response_parser import ResponseParser

logger = logging.getLogger(__name__)


class RecoveryAction(str, Enum):
    NONE = "none"
    CONTINUATION = "continuation"
    SUCCESS = "success"
    PARTIAL = "partial"


@dataclass(frozen=True)
class RecoveryAnalysis:
    action: RecoveryAction
    recovered_files: FileSet = field(default_factory=dict)
    generation_meta: Optional[GenerationMeta] = None
    message: str = ""


def analyze_truncated_response(
    raw_text: str,
    parser: ResponseParser,
    plan: Optional[GenerationPlan] = None,
    min_chars: int = 1000,
) -> RecoveryAnalysis:
    """Decide how to recover from a truncated first response.

    Args:
        raw_text: The cut-off response
        parser: Parser used to extract complete files
        plan: File plan announced at the start of the response, if any
        min_chars: Responses shorter than this are not worth recovering

    Returns:
        RecoveryAnalysis; ``CONTINUATION`` carries a batch-1 GenerationMeta
        suitable for ``GenerationSession.begin_from_meta``.
    """
    if len(raw_text) < min_chars:
        return RecoveryAnalysis(action=RecoveryAction.NONE)

    parsed = parser.parse(raw_text)
    if parsed is None or not parsed.files:
        return RecoveryAnalysis(action=RecoveryAction.NONE)

    recovered = dict(parsed.files)
    recovered_paths = list(recovered)

    if plan is not None and plan.files_to_create:
        missing = [f for f in plan.files_to_create if f not in recovered]
        if missing:
            meta = GenerationMeta(
                total_files_planned=plan.total_files,
                files_in_this_batch=recovered_paths,
                completed_files=recovered_paths,
                remaining_files=missing,
                current_batch=1,
                total_batches=estimate_total_batches(plan.total_files),
                is_complete=False,
            )
            logger.info(
                f"[TruncationRecovery] Recovered {len(recovered)} file(s), "
                f"{len(missing)} still planned; continuing"
            )
            return RecoveryAnalysis(
                action=RecoveryAction.CONTINUATION,
                recovered_files=recovered,
                generation_meta=meta,
                message=f"Generating... {len(recovered)}/{plan.total_files} files",
            )

        planned_names = {bare_name(f) for f in plan.files_to_create}
        if planned_names <= {bare_name(f) for f in recovered_paths}:
            return RecoveryAnalysis(
                action=RecoveryAction.SUCCESS,
                recovered_files=recovered,
                message=f"Generated {len(recovered)} files!",
            )

    if parsed.truncated:
        return RecoveryAnalysis(
            action=RecoveryAction.PARTIAL,
            recovered_files=recovered,
            message=f"Recovered {len(recovered)} partial files",
        )
    return RecoveryAnalysis(
        action=RecoveryAction.SUCCESS,
        recovered_files=recovered,
        message=f"Generated {len(recovered)} files!",
    )


def build_truncation_state(
    raw_text: str,
    prompt: str,
    system_instruction: str,
    parser: ResponseParser,
) -> TruncationRecoveryState:
    """Start the recovery track, keeping every file that was whole before the cut."""
    parsed = parser.parse(raw_text)
    partial_files = {}
    if parsed is not None:
        partial_files = {
            path: PartialFile(content=text, is_complete=True) for path, text in parsed.files.items()
        }
    return TruncationRecoveryState(
        raw_response=raw_text,
        prompt=prompt,
        system_instruction=system_instruction,
        partial_files=partial_files,
    )


class TruncationRetryStatus(str, Enum):
    RECOVERED = "recovered"
    STILL_TRUNCATED = "still_truncated"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True)
class TruncationRetryResult:
    status: TruncationRetryStatus
    files: FileSet = field(default_factory=dict)
    next_state: Optional[TruncationRecoveryState] = None
    explanation: Optional[str] = None
    error: Optional[str] = None

    def raise_for_status(self) -> None:
        """Raise TruncatedOutputError unless the retry recovered files."""
        if self.status != TruncationRetryStatus.RECOVERED:
            raise TruncatedOutputError(
                f"Truncation recovery {self.status.value}" + (f": {self.error}" if self.error else "")
            )


class TruncationRecovery:
    """Continue-from-the-cut retries for a truncated response."""

    def __init__(
        self,
        service: GenerationService,
        parser: ResponseParser,
        settings: Optional[GenerationSettings] = None,
        notifier: Optional[ProgressNotifier] = None,
    ):
        self.service = service
        self.parser = parser
        self.settings = settings or GenerationSettings()
        self.notifier = notifier or ProgressNotifier()

    def build_retry_prompt(self, state: TruncationRecoveryState) -> str:
        head = state.raw_response[: self.settings.truncation_head_chars]
        tail_chars = self.settings.truncation_tail_chars
        tail = state.raw_response[-tail_chars:] if tail_chars else ""
        return f"""Continue generating from where you left off. Your previous response was truncated:

**Previous incomplete response (first {self.settings.truncation_head_chars} chars):**
{head}

**Last {tail_chars} chars of incomplete response:**
{tail}

Please continue from exactly where you stopped and complete the response. Make sure to:
1. Complete any incomplete JSON structure
2. Finish any cut-off file content
3. Provide all remaining files
4. Ensure the response is properly formatted JSON

Original prompt: {state.prompt}"""

    async def retry(self, state: TruncationRecoveryState) -> TruncationRetryResult:
        max_attempts = self.settings.max_truncation_attempts
        if state.attempt >= max_attempts:
            logger.warning(f"[TruncationRecovery] Maximum retry attempts ({max_attempts}) reached")
            self.notifier.status("Maximum retry attempts reached. Please try a shorter prompt.")
            return TruncationRetryResult(
                status=TruncationRetryStatus.EXHAUSTED, files=state.complete_files()
            )

        self.notifier.status(f"Retrying generation (attempt {state.attempt + 1}/{max_attempts})...")
        options = StreamOptions(
            max_output_tokens=self.settings.max_output_tokens,
            temperature=self.settings.temperature,
            response_format=None,
        )
        chunks: List[str] = []
        try:
            await self.service.stream_complete(
                self.build_retry_prompt(state), state.system_instruction, options, chunks.append
            )
        except Exception as e:
            logger.error(f"[TruncationRecovery] Retry failed: {e}")
            self.notifier.status(f"Retry failed: {e}")
            return TruncationRetryResult(
                status=TruncationRetryStatus.FAILED, next_state=state, error=str(e)
            )

        combined = state.raw_response + "".join(chunks)
        self.notifier.status("Parsing combined response...")
        parsed = self.parser.parse(combined)

        if parsed is not None and parsed.files:
            logger.info(f"[TruncationRecovery] Recovered {len(parsed.files)} file(s) from combined response")
            self.notifier.status("Successfully recovered from truncation!")
            return TruncationRetryResult(
                status=TruncationRetryStatus.RECOVERED,
                files=merge_files(state.complete_files(), parsed.files),
                explanation=parsed.explanation,
            )

        logger.warning("[TruncationRecovery] Response still truncated after retry")
        self.notifier.status("Response still truncated after retry.")
        return TruncationRetryResult(
            status=TruncationRetryStatus.STILL_TRUNCATED,
            next_state=replace(state, raw_response=combined, attempt=state.attempt + 1),
        )
