"""Decides whether a multi-batch session is done.

The generation service is an unreliable narrator of its own progress: it
restates remaining files it already produced, miscounts the plan, or claims
completion early. No single signal is trusted, so four independent signals are
OR-ed together, and a safety valve caps the number of batches.

Remaining files are matched by exact path *or* bare filename. That tolerates
path-prefix drift (plan says ``components/Header.tsx``, service emits
``src/components/Header.tsx``) at the cost of a false positive when two
planned files share a name in different directories.
"""

import logging
import posixpath
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Set

from .models import (
    ContinuationState,
    FileSet,
    GenerationMeta,
    ParsedBatchResult,
    unique_paths,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCHES = 5


def bare_name(path: str) -> str:
    return posixpath.basename(path.replace("\\", "/"))


def filter_remaining(remaining: Iterable[str], files: FileSet) -> List[str]:
    """Drop remaining paths whose exact path or bare filename exists in ``files``."""
    names = {bare_name(p) for p in files}
    return [p for p in remaining if p not in files and bare_name(p) not in names]


def merge_files(accumulated: FileSet, new_files: FileSet) -> FileSet:
    """New dict with ``new_files`` applied over ``accumulated`` (last writer wins)."""
    merged = dict(accumulated)
    merged.update(new_files)
    return merged


@dataclass(frozen=True)
class CompletionSignals:
    no_remaining_files: bool = False
    service_marked_complete: bool = False
    all_planned_received: bool = False
    service_reports_none_remaining: bool = False

    def any(self) -> bool:
        return (
            self.no_remaining_files
            or self.service_marked_complete
            or self.all_planned_received
            or self.service_reports_none_remaining
        )


@dataclass(frozen=True)
class CompletionVerdict:
    accumulated_files: FileSet
    completed_files: List[str]
    remaining_files: List[str]
    files_in_batch: List[str]
    signals: CompletionSignals
    made_progress: bool
    forced: bool
    new_paths: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.signals.any() or self.forced

    @property
    def forced_only(self) -> bool:
        """True when only the safety valve ended the session."""
        return self.forced and not self.signals.any()


class CompletionDetector:
    """Merges a batch into session state and evaluates completion."""

    def __init__(self, max_batches: int = DEFAULT_MAX_BATCHES):
        self.max_batches = max_batches

    def evaluate(
        self,
        state: ContinuationState,
        parsed: ParsedBatchResult,
        baseline_paths: Optional[Set[str]] = None,
    ) -> CompletionVerdict:
        """
        Args:
            state: State the batch was issued from
            parsed: Parser output for the batch
            baseline_paths: Paths accumulated before the batch's first attempt;
                defaults to ``state.accumulated_files``. Retries merge partial
                files into the state, so the session passes the pre-retry set
                to avoid counting a retried batch's own partials against it.
        """
        meta = state.generation_meta
        batch_paths = list(parsed.files)
        accumulated = merge_files(state.accumulated_files, parsed.files)
        completed = unique_paths(list(meta.completed_files) + batch_paths)
        remaining = filter_remaining(meta.remaining_files, accumulated)

        baseline = set(state.accumulated_files) if baseline_paths is None else baseline_paths
        new_paths = [p for p in batch_paths if p not in baseline]
        made_progress = bool(new_paths)

        service_meta = parsed.generation_meta
        signals = CompletionSignals(
            no_remaining_files=not remaining,
            service_marked_complete=bool(service_meta and service_meta.is_complete),
            all_planned_received=(
                meta.total_files_planned > 0 and len(accumulated) >= meta.total_files_planned
            ),
            service_reports_none_remaining=bool(
                service_meta is not None and len(service_meta.remaining_files) == 0
            ),
        )
        forced = state.current_batch >= self.max_batches or not made_progress

        verdict = CompletionVerdict(
            accumulated_files=accumulated,
            completed_files=completed,
            remaining_files=remaining,
            files_in_batch=batch_paths,
            signals=signals,
            made_progress=made_progress,
            forced=forced,
            new_paths=new_paths,
        )

        logger.info(
            "[Continuation] Batch %d evaluated: new=%d accumulated=%d/%d remaining=%d "
            "signals=%s progress=%s complete=%s",
            state.current_batch,
            len(new_paths),
            len(accumulated),
            meta.total_files_planned,
            len(remaining),
            signals,
            made_progress,
            verdict.is_complete,
        )
        if verdict.forced_only:
            logger.warning(
                "[Continuation] Forcing completion at batch %d (max batches reached or no progress)",
                state.current_batch,
            )
        return verdict

    @staticmethod
    def next_state(state: ContinuationState, verdict: CompletionVerdict) -> ContinuationState:
        """State for the following batch; retry attempts start over."""
        meta = state.generation_meta
        next_batch = state.current_batch + 1
        next_meta = GenerationMeta(
            total_files_planned=meta.total_files_planned,
            files_in_this_batch=list(verdict.files_in_batch),
            completed_files=[p for p in verdict.completed_files if p not in verdict.remaining_files],
            remaining_files=list(verdict.remaining_files),
            current_batch=next_batch,
            total_batches=meta.total_batches,
            is_complete=False,
        )
        return replace(
            state,
            generation_meta=next_meta,
            accumulated_files=dict(verdict.accumulated_files),
            current_batch=next_batch,
            retry_attempts=0,
        )
