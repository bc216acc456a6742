"""Generation Session - drives a multi-batch generation to a terminal state.

State machine::

    Idle -> Active(batch k) -> Active(batch k+1)
                            -> RetryWait -> Active(batch k)
                            -> TargetedFetch -> Complete
                            -> Complete | Failed

``run`` is an explicit loop: it issues a batch, lets the retry controller
handle truncation and errors, lets the completion detector decide whether to
continue, and finally validates and reports the accumulated files. Every
recoverable condition is absorbed here; ``run`` only raises for caller-side
invariant violations (``InvalidContinuationStateError``).

One session object serves one conversation. Starting a new ``run`` while a
previous one is waiting supersedes it: pending timers are cleared and the old
run returns ``OutcomeStatus.CANCELLED`` without reporting anything. ``close``
does the same on host teardown. An in-flight network call is not aborted;
its result is simply discarded.
"""

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Optional, Set, Tuple

from .batch_executor import BatchExecutor
from .completion_detector import CompletionDetector, CompletionVerdict, filter_remaining, merge_files
from .config import GenerationSettings
from .exceptions import EmptyGenerationError, InvalidContinuationStateError, SessionCancelledError
from .file_validator import FileValidator
from .generation_service import GenerationService
from .models import (
    ContinuationState,
    FileSet,
    GenerationMeta,
    GenerationOutcome,
    GenerationPlan,
    OutcomeStatus,
    SessionStatus,
    TokenUsage,
    TruncationRecoveryState,
    estimate_total_batches,
)
from .progress import ProgressKind, ProgressNotifier
from .reporter import (
    ApplySink,
    GenerationMessage,
    LogSink,
    ResultReporter,
    add_usage,
    calculate_file_changes,
    estimate_token_usage,
)
from .response_parser import FileResponseParser, ResponseParser
from .retry_controller import RetryAction, RetryController, RetryDecision
from .targeted_requester import TargetedFileRequester
from .timers import TimerRegistry
from .truncation_recovery import (
    RecoveryAnalysis,
    RecoveryAction,
    TruncationRecovery,
    TruncationRetryResult,
    TruncationRetryStatus,
    analyze_truncated_response,
    build_truncation_state,
)

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "Generate app"


@dataclass
class _RunContext:
    session_id: str
    epoch: int
    existing_files: FileSet
    started: float
    batches_run: int = 0
    usage: Optional[TokenUsage] = None

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


def _new_session_id() -> str:
    return uuid.uuid4().hex


class GenerationSession:
    """Owns continuation state for one conversation and runs it to completion."""

    APPLY_LABEL = "Generated App"
    RECOVERED_LABEL = "Retried Generation (combined)"

    def __init__(
        self,
        service: GenerationService,
        apply_sink: ApplySink,
        log_sink: LogSink,
        parser: Optional[ResponseParser] = None,
        settings: Optional[GenerationSettings] = None,
        notifier: Optional[ProgressNotifier] = None,
        timers: Optional[TimerRegistry] = None,
        model: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        self.settings = settings or GenerationSettings()
        self.parser = parser or FileResponseParser()
        self.notifier = notifier or ProgressNotifier()
        self.timers = timers or TimerRegistry()
        self.model = model
        self.provider = provider

        self.executor = BatchExecutor(service, self.parser, self.settings, self.notifier)
        self.detector = CompletionDetector(max_batches=self.settings.max_batches)
        self.retry_controller = RetryController(
            max_retry_attempts=self.settings.max_retry_attempts,
            retry_backoff_ms=self.settings.retry_backoff_ms,
        )
        self.requester = TargetedFileRequester(service, self.parser, self.settings, self.notifier)
        self.validator = FileValidator(
            min_content_length=self.settings.min_content_length,
            marker_tokens=self.settings.marker_tokens,
        )
        self.truncation = TruncationRecovery(service, self.parser, self.settings, self.notifier)
        self.reporter = ResultReporter(apply_sink, log_sink)

        self._status = SessionStatus.IDLE
        self._state: Optional[ContinuationState] = None
        self._epoch = 0
        self._closed = False
        self._finished_sessions: Set[str] = set()

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> Optional[ContinuationState]:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Starting a session
    # ------------------------------------------------------------------

    def begin_from_plan(
        self,
        plan: GenerationPlan,
        received_files: FileSet,
        prompt: str,
        system_instruction: str,
    ) -> Optional[ContinuationState]:
        """Start continuation when the first response missed planned files.

        Returns:
            The initial ContinuationState, or None if nothing is missing
        """
        received = list(received_files)
        missing = [f for f in plan.files_to_create if f not in received_files]
        if not missing:
            return None

        logger.info(f"[Continuation] Missing files detected from plan: {missing}")
        meta = GenerationMeta(
            total_files_planned=plan.total_files,
            files_in_this_batch=received,
            completed_files=received,
            remaining_files=missing,
            current_batch=1,
            total_batches=estimate_total_batches(plan.total_files),
            is_complete=False,
        )
        self.notifier.status(f"Generating... {len(received)}/{plan.total_files} files")
        return self._new_state(meta, received_files, prompt, system_instruction)

    def begin_from_meta(
        self,
        meta: GenerationMeta,
        received_files: FileSet,
        prompt: str,
        system_instruction: str,
    ) -> Optional[ContinuationState]:
        """Start continuation from the service's own batch metadata.

        Returns:
            The initial ContinuationState, or None if the service says it is done
        """
        if meta.is_complete or not meta.remaining_files:
            return None

        completed = set(meta.completed_files)
        remaining = [f for f in meta.remaining_files if f not in completed]
        if not remaining:
            return None

        logger.info(
            f"[Continuation] Multi-batch generation detected: batch "
            f"{meta.current_batch}/{meta.total_batches}, completed={len(meta.completed_files)}, "
            f"remaining={len(remaining)}"
        )
        self.notifier.status(
            f"Generating... {len(meta.completed_files)}/{meta.total_files_planned} files"
        )
        return self._new_state(
            replace(meta, remaining_files=remaining), received_files, prompt, system_instruction
        )

    def begin_from_truncated(
        self,
        raw_text: str,
        plan: Optional[GenerationPlan],
        prompt: str,
        system_instruction: str,
    ) -> Tuple[RecoveryAnalysis, Optional[ContinuationState]]:
        """Analyse a cut-off first response; build a state if continuation is needed."""
        analysis = analyze_truncated_response(
            raw_text, self.parser, plan, min_chars=self.settings.min_recoverable_chars
        )
        logger.info(f"[TruncationRecovery] Analysis result: {analysis.action.value}")
        if analysis.action != RecoveryAction.CONTINUATION or analysis.generation_meta is None:
            return analysis, None
        state = self.begin_from_meta(
            analysis.generation_meta, analysis.recovered_files, prompt, system_instruction
        )
        return analysis, state

    def begin_truncation_recovery(
        self, raw_text: str, prompt: str, system_instruction: str
    ) -> TruncationRecoveryState:
        """State for ``recover_truncation``, seeded with the files complete before the cut."""
        return build_truncation_state(raw_text, prompt, system_instruction, self.parser)

    def _new_state(
        self,
        meta: GenerationMeta,
        received_files: FileSet,
        prompt: str,
        system_instruction: str,
    ) -> ContinuationState:
        state = ContinuationState(
            is_active=True,
            original_prompt=prompt or DEFAULT_PROMPT,
            system_instruction=system_instruction,
            generation_meta=meta,
            accumulated_files=dict(received_files),
            current_batch=meta.current_batch,
            retry_attempts=0,
            session_id=_new_session_id(),
        )
        self._state = state
        return state

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    async def run(
        self,
        state: Optional[ContinuationState],
        existing_files: Optional[FileSet] = None,
    ) -> GenerationOutcome:
        """Run batches until the session completes or fails.

        Args:
            state: State from a ``begin_*`` call (or a snapshot of ``self.state``)
            existing_files: Current project files; generated files are merged over them

        Raises:
            InvalidContinuationStateError: If ``state`` is malformed or stale
        """
        if state is not None:
            self._validate_state(state)

        # Any earlier run still waiting on a timer is superseded, even by a skip
        self.timers.clear_all("superseded by a new run")
        self._epoch += 1

        if state is None:
            logger.info("[Continuation] No continuation needed or already complete")
            self._state = None
            return GenerationOutcome(status=OutcomeStatus.SKIPPED)

        meta = state.generation_meta
        if meta.is_complete or not meta.remaining_files:
            logger.info("[Continuation] All files completed")
            self._state = None
            return GenerationOutcome(status=OutcomeStatus.SKIPPED)

        if self._closed:
            return GenerationOutcome(
                status=OutcomeStatus.CANCELLED,
                error=SessionCancelledError("Session host has been closed"),
            )

        if state.session_id is None:
            state = replace(state, session_id=_new_session_id())

        ctx = _RunContext(
            session_id=state.session_id,
            epoch=self._epoch,
            existing_files=dict(existing_files or {}),
            started=time.monotonic(),
        )
        try:
            return await self._run_loop(state, ctx)
        except SessionCancelledError as e:
            logger.info(f"[Continuation] Run for session {ctx.session_id} discarded: {e}")
            return GenerationOutcome(
                status=OutcomeStatus.CANCELLED, batches_run=ctx.batches_run, error=e
            )

    async def _run_loop(self, state: ContinuationState, ctx: _RunContext) -> GenerationOutcome:
        baseline = set(state.accumulated_files)

        while True:
            self._ensure_current(ctx)
            self._set_state(state, SessionStatus.ACTIVE)
            if state.retry_attempts == 0:
                baseline = set(state.accumulated_files)

            try:
                batch = await self.executor.execute(state)
            except SessionCancelledError:
                raise
            except Exception as e:
                self._ensure_current(ctx)
                ctx.batches_run += 1
                logger.error(f"[Continuation] Error: {e}")
                decision = self.retry_controller.on_error(state, e)
                if decision.action == RetryAction.RETRY:
                    state = await self._wait_for_retry(decision, ctx)
                    continue
                if decision.action == RetryAction.TARGETED_FETCH:
                    return await self._targeted_fetch(decision.state, ctx)
                if decision.action == RetryAction.PROCEED_PARTIAL:
                    return self._finish(
                        decision.state,
                        ctx,
                        files=decision.state.accumulated_files,
                        missing=decision.state.remaining_files,
                    )
                return self._fail(decision.state, ctx, e)

            self._ensure_current(ctx)
            ctx.batches_run += 1
            ctx.usage = add_usage(ctx.usage, batch.usage)
            parsed = batch.parsed

            if parsed.truncated:
                decision = self.retry_controller.on_truncated(state, parsed)
                if decision.action == RetryAction.RETRY:
                    state = await self._wait_for_retry(decision, ctx)
                    continue
                state = decision.state

            verdict = self.detector.evaluate(state, parsed, baseline_paths=baseline)
            total = state.generation_meta.total_files_planned
            self.notifier.status(
                f"Generating... {len(verdict.completed_files)}/{total} files",
                batch=state.current_batch,
                session_id=ctx.session_id,
            )

            if verdict.is_complete:
                return self._finish(
                    state,
                    ctx,
                    files=verdict.accumulated_files,
                    missing=verdict.remaining_files,
                    explanation=parsed.explanation,
                    verdict=verdict,
                )

            state = self.detector.next_state(state, verdict)
            self._set_state(state, SessionStatus.ACTIVE)
            logger.info(f"[Continuation] Starting next batch: {state.current_batch}")
            await self.timers.sleep(self.settings.inter_batch_delay_seconds)

    async def _wait_for_retry(self, decision: RetryDecision, ctx: _RunContext) -> ContinuationState:
        self._set_state(decision.state, SessionStatus.RETRY_WAIT)
        self.notifier.emit(
            ProgressKind.RETRY_SCHEDULED,
            f"Retrying batch (attempt {decision.state.retry_attempts}/"
            f"{self.retry_controller.max_retry_attempts})...",
            batch=decision.state.current_batch,
            attempt=decision.state.retry_attempts,
            delay_ms=decision.delay_ms,
            session_id=ctx.session_id,
        )
        await self.timers.sleep(decision.delay_seconds)
        self._ensure_current(ctx)
        return decision.state

    async def _targeted_fetch(self, state: ContinuationState, ctx: _RunContext) -> GenerationOutcome:
        remaining = state.remaining_files
        self._set_state(state, SessionStatus.TARGETED_FETCH)
        logger.info(f"[Continuation] Retries exhausted, trying targeted request for: {remaining}")

        result = await self.requester.request(
            remaining, state.accumulated_files, state.system_instruction, session_id=ctx.session_id
        )
        self._ensure_current(ctx)
        ctx.batches_run += 1

        if result.success:
            still_missing = filter_remaining(remaining, result.files)
            return self._finish(
                state,
                ctx,
                files=result.files,
                missing=still_missing,
                explanation=result.explanation,
                used_targeted_fetch=True,
            )

        logger.info(
            f"[Continuation] All attempts exhausted, showing accumulated files: "
            f"{sorted(state.accumulated_files)}"
        )
        return self._finish(
            state,
            ctx,
            files=state.accumulated_files,
            missing=remaining,
            used_targeted_fetch=True,
        )

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def _finish(
        self,
        state: ContinuationState,
        ctx: _RunContext,
        files: FileSet,
        missing,
        explanation: Optional[str] = None,
        verdict: Optional[CompletionVerdict] = None,
        used_targeted_fetch: bool = False,
    ) -> GenerationOutcome:
        missing = list(missing)
        forced = bool(verdict and verdict.forced_only)
        validation = self.validator.validate(files)

        if validation.is_empty:
            error = EmptyGenerationError(
                "Generation failed - files were empty or malformed", validation.invalid_paths
            )
            message = GenerationMessage(
                error=(
                    "Generation failed - files were empty or malformed.\n\n"
                    f"Invalid files: {', '.join(validation.invalid_paths)}\n\nPlease try again."
                ),
                missing_files=missing,
                model=self.model,
                provider=self.provider,
                generation_time_ms=ctx.elapsed_ms(),
            )
            self.reporter.report_failure(ctx.session_id, message)
            self._terminate(ctx, SessionStatus.FAILED)
            self.notifier.emit(
                ProgressKind.FAILED,
                "Generation failed - no valid files received",
                session_id=ctx.session_id,
            )
            return GenerationOutcome(
                status=OutcomeStatus.FAILED,
                explanation=message.error,
                invalid_paths=validation.invalid_paths,
                missing_files=missing,
                forced=forced,
                batches_run=ctx.batches_run,
                used_targeted_fetch=used_targeted_fetch,
                error=error,
                token_usage=ctx.usage,
            )

        valid_files = validation.valid_files
        final_files = merge_files(ctx.existing_files, valid_files)

        text = explanation or "Generation complete."
        if forced:
            text += (
                f"\n\nGeneration was completed early after batch {state.current_batch} "
                f"(batch limit reached or no new files were produced)."
            )
        if validation.invalid_paths:
            text += f"\n\nWarning: {len(validation.invalid_paths)} files were invalid and excluded."
        if missing:
            text += f"\n\nWarning: {len(missing)} files could not be generated: {', '.join(missing)}"

        token_usage = estimate_token_usage(ctx.usage, None, valid_files)
        message = GenerationMessage(
            explanation=text,
            files=valid_files,
            file_changes=calculate_file_changes(ctx.existing_files, final_files),
            missing_files=missing,
            model=self.model,
            provider=self.provider,
            generation_time_ms=ctx.elapsed_ms(),
            token_usage=token_usage,
        )
        self.reporter.report_success(ctx.session_id, self.APPLY_LABEL, final_files, message)
        self._terminate(ctx, SessionStatus.COMPLETE)

        summary = f"Generated {len(valid_files)} files!"
        if missing:
            summary = f"Generated {len(valid_files)} files ({len(missing)} missing)"
        self.notifier.emit(ProgressKind.COMPLETED, summary, session_id=ctx.session_id)
        logger.info(
            f"[Continuation] Complete: files={len(final_files)} valid={len(valid_files)} "
            f"invalid={validation.invalid_paths} missing={missing} forced={forced}"
        )

        return GenerationOutcome(
            status=OutcomeStatus.COMPLETE,
            files=valid_files,
            final_files=final_files,
            explanation=text,
            invalid_paths=validation.invalid_paths,
            missing_files=missing,
            forced=forced,
            batches_run=ctx.batches_run,
            used_targeted_fetch=used_targeted_fetch,
            token_usage=token_usage,
        )

    def _fail(self, state: ContinuationState, ctx: _RunContext, error: BaseException) -> GenerationOutcome:
        text = f"Generation failed: {error}\n\nPlease try again."
        message = GenerationMessage(
            explanation=text,
            error=str(error),
            missing_files=state.remaining_files,
            model=self.model,
            provider=self.provider,
            generation_time_ms=ctx.elapsed_ms(),
        )
        self.reporter.report_failure(ctx.session_id, message)
        self._terminate(ctx, SessionStatus.FAILED)
        self.notifier.emit(ProgressKind.FAILED, f"Generation failed: {error}", session_id=ctx.session_id)
        return GenerationOutcome(
            status=OutcomeStatus.FAILED,
            explanation=text,
            missing_files=state.remaining_files,
            batches_run=ctx.batches_run,
            error=error,
            token_usage=ctx.usage,
        )

    # ------------------------------------------------------------------
    # Truncation recovery track
    # ------------------------------------------------------------------

    async def recover_truncation(
        self,
        truncation_state: TruncationRecoveryState,
        existing_files: Optional[FileSet] = None,
    ) -> TruncationRetryResult:
        """One continue-from-the-cut retry; recovered files are validated and applied."""
        if self._closed:
            return TruncationRetryResult(
                status=TruncationRetryStatus.FAILED,
                next_state=truncation_state,
                error="Session host has been closed",
            )

        self.timers.clear_all("truncation retry")
        self._epoch += 1
        ctx = _RunContext(
            session_id=_new_session_id(),
            epoch=self._epoch,
            existing_files=dict(existing_files or {}),
            started=time.monotonic(),
        )

        result = await self.truncation.retry(truncation_state)
        if self._closed or ctx.epoch != self._epoch:
            logger.info("[TruncationRecovery] Retry result discarded, session was superseded")
            return replace(result, files={}, error="superseded")
        if result.status != TruncationRetryStatus.RECOVERED:
            return result

        validation = self.validator.validate(result.files)
        if validation.is_empty:
            message = GenerationMessage(
                error=(
                    "Recovered files were empty or malformed.\n\n"
                    f"Invalid files: {', '.join(validation.invalid_paths)}"
                ),
                generation_time_ms=ctx.elapsed_ms(),
            )
            self.reporter.report_failure(ctx.session_id, message)
            return replace(
                result, status=TruncationRetryStatus.FAILED, files={}, error=message.error
            )

        final_files = merge_files(ctx.existing_files, validation.valid_files)
        message = GenerationMessage(
            explanation=result.explanation or "Recovered from truncation.",
            files=validation.valid_files,
            file_changes=calculate_file_changes(ctx.existing_files, final_files),
            model=self.model,
            provider=self.provider,
            generation_time_ms=ctx.elapsed_ms(),
            token_usage=estimate_token_usage(None, None, validation.valid_files),
        )
        self.reporter.report_success(ctx.session_id, self.RECOVERED_LABEL, final_files, message)
        return replace(result, files=validation.valid_files)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Host teardown: drop pending timers and discard any in-flight run."""
        self._closed = True
        self._epoch += 1
        self.timers.close()
        logger.debug("[Continuation] Session host closed")

    def _validate_state(self, state: ContinuationState) -> None:
        if not isinstance(state, ContinuationState):
            raise InvalidContinuationStateError(
                f"Expected ContinuationState, got {type(state).__name__}"
            )
        if not state.is_active:
            raise InvalidContinuationStateError("Continuation state is not active")
        if state.session_id is not None and state.session_id in self._finished_sessions:
            raise InvalidContinuationStateError(
                f"Continuation state belongs to finished session {state.session_id}"
            )
        if state.retry_attempts < 0:
            raise InvalidContinuationStateError("retry_attempts must not be negative")
        overlap = set(state.generation_meta.completed_files) & set(
            state.generation_meta.remaining_files
        )
        if overlap:
            raise InvalidContinuationStateError(
                f"Files listed as both completed and remaining: {sorted(overlap)}"
            )

    def _ensure_current(self, ctx: _RunContext) -> None:
        if self._closed:
            raise SessionCancelledError("Session host has been closed")
        if ctx.epoch != self._epoch:
            raise SessionCancelledError("Run superseded by a newer run")

    def _set_state(self, state: ContinuationState, status: SessionStatus) -> None:
        self._state = state
        self._status = status

    def _terminate(self, ctx: _RunContext, status: SessionStatus) -> None:
        self._status = status
        self._state = None
        self._finished_sessions.add(ctx.session_id)
