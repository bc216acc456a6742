"""Issues one continuation batch and parses the streamed response."""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import GenerationSettings
from .exceptions import ParseFailureError
from .generation_service import GenerationService, StreamOptions, StreamResult
from .models import ContinuationState, ParsedBatchResult
from .progress import ProgressKind, ProgressNotifier
from .response_parser import ResponseParser, parse_with_status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    parsed: ParsedBatchResult
    raw_text: str
    stream_result: Optional[StreamResult] = None

    @property
    def usage(self):
        return self.stream_result.usage if self.stream_result else None


def build_continuation_prompt(state: ContinuationState) -> str:
    """Internal request for the next batch; never shown to the end user."""
    meta = state.generation_meta
    completed = "\n".join(f"- {f}" for f in meta.completed_files)
    remaining = "\n".join(f"- {f}" for f in meta.remaining_files)
    return f"""Continue generating the remaining files for the project.

## GENERATION CONTEXT
Already completed: {len(meta.completed_files)} files
Remaining: {len(meta.remaining_files)} files

### ALREADY COMPLETED FILES:
{completed}

### REMAINING FILES TO GENERATE:
{remaining}

### ORIGINAL REQUEST:
{state.original_prompt}

Generate the remaining files. Each file must be COMPLETE and FUNCTIONAL."""


class BatchExecutor:
    """One streaming request per ``execute`` call; no retries here."""

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

    def stream_options(self) -> StreamOptions:
        return StreamOptions(
            max_output_tokens=self.settings.max_output_tokens,
            temperature=self.settings.temperature,
            response_format=self.settings.response_format,
        )

    async def execute(self, state: ContinuationState) -> BatchResult:
        """Run one batch.

        Raises:
            ParseFailureError: If the response holds no files
            GenerationError: Service failures propagate unchanged
        """
        meta = state.generation_meta
        progress_label = f"{len(meta.completed_files)}/{meta.total_files_planned} files"
        every = self.settings.status_update_every_chunks
        chunks = []
        received = 0

        def on_chunk(text: str) -> None:
            nonlocal received
            chunks.append(text)
            received += len(text)
            self.notifier.emit(
                ProgressKind.CHARS_RECEIVED,
                chars=received,
                batch=state.current_batch,
                session_id=state.session_id,
            )
            if len(chunks) % every == 0:
                self.notifier.status(
                    f"Generating... {progress_label} ({round(received / 1024)}KB)",
                    batch=state.current_batch,
                    session_id=state.session_id,
                )

        self.notifier.emit(
            ProgressKind.BATCH_STARTED,
            f"Generating... {progress_label}",
            batch=state.current_batch,
            attempt=state.retry_attempts,
            session_id=state.session_id,
        )
        logger.info(
            f"[BatchExecutor] Batch {state.current_batch} (retry {state.retry_attempts}): "
            f"{len(meta.remaining_files)} remaining"
        )

        stream_result = await self.service.stream_complete(
            build_continuation_prompt(state),
            state.system_instruction,
            self.stream_options(),
            on_chunk,
        )
        raw_text = "".join(chunks)
        self.notifier.status("Finalizing...", batch=state.current_batch, session_id=state.session_id)
        logger.info(f"[BatchExecutor] Raw response length: {len(raw_text)}")

        parsed, outcome = parse_with_status(self.parser, raw_text)
        if parsed is None or not parsed.files:
            logger.error(f"[BatchExecutor] Failed to parse - no files found (outcome={outcome})")
            raise ParseFailureError(
                "Failed to parse continuation response - no files found", raw_length=len(raw_text)
            )

        logger.info(
            f"[BatchExecutor] Parsed {len(parsed.files)} file(s) ({outcome}): {sorted(parsed.files)}"
        )
        return BatchResult(parsed=parsed, raw_text=raw_text, stream_result=stream_result)
