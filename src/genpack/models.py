"""Data model for multi-batch file generation.

State records are frozen dataclasses. A batch transition never edits a state
in place; it builds a new one with ``dataclasses.replace`` and a fresh
``accumulated_files`` dict, so any snapshot handed to a subscriber or kept for
debugging stays consistent.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import PartialGenerationError

FileSet = Dict[str, str]

# Batches are planned in groups of this many files when the service does not
# say otherwise.
FILES_PER_BATCH_HINT = 5


def unique_paths(paths: Iterable[str]) -> List[str]:
    """De-duplicate paths preserving first-seen order."""
    seen = set()
    ordered = []
    for path in paths:
        if path in seen:
            continue
        seen.add(path)
        ordered.append(path)
    return ordered


def estimate_total_batches(total_files: int) -> int:
    return max(1, math.ceil(total_files / FILES_PER_BATCH_HINT))


class ParseStatus(str, Enum):
    """Outcome of parsing one raw response."""

    OK = "ok"
    PARTIAL_OK = "partial_ok"
    NO_MATCH = "no_match"


class SessionStatus(str, Enum):
    """Lifecycle states of a generation session."""

    IDLE = "idle"
    ACTIVE = "active"
    RETRY_WAIT = "retry_wait"
    TARGETED_FETCH = "targeted_fetch"
    COMPLETE = "complete"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    """How a call to ``GenerationSession.run`` ended."""

    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class GenerationPlan:
    """File plan produced upstream from the start of a response."""

    files_to_create: List[str]
    total_files: int


@dataclass(frozen=True)
class GenerationMeta:
    """Per-batch progress metadata.

    ``completed_files`` and ``remaining_files`` are expected to be disjoint.
    Their union usually matches ``total_files_planned`` but the service may
    miscount, so that is not enforced.
    """

    total_files_planned: int
    files_in_this_batch: List[str] = field(default_factory=list)
    completed_files: List[str] = field(default_factory=list)
    remaining_files: List[str] = field(default_factory=list)
    current_batch: int = 1
    total_batches: int = 1
    is_complete: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationMeta":
        """Build from a service payload (camelCase) or a snake_case dict."""

        def _get(camel: str, snake: str, default: Any) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        def _paths(value: Any) -> List[str]:
            if isinstance(value, str):
                value = value.split(",")
            if not isinstance(value, (list, tuple)):
                return []
            return unique_paths(str(p).strip() for p in value if str(p).strip())

        def _int(value: Any, default: int) -> int:
            try:
                return int(value)
            except (TypeError, ValueError):
                return default

        is_complete = _get("isComplete", "is_complete", False)
        if isinstance(is_complete, str):
            is_complete = is_complete.strip().lower() == "true"

        return cls(
            total_files_planned=_int(_get("totalFilesPlanned", "total_files_planned", 0), 0),
            files_in_this_batch=_paths(_get("filesInThisBatch", "files_in_this_batch", [])),
            completed_files=_paths(_get("completedFiles", "completed_files", [])),
            remaining_files=_paths(_get("remainingFiles", "remaining_files", [])),
            current_batch=_int(_get("currentBatch", "current_batch", 1), 1),
            total_batches=_int(_get("totalBatches", "total_batches", 1), 1),
            is_complete=bool(is_complete),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFilesPlanned": self.total_files_planned,
            "filesInThisBatch": list(self.files_in_this_batch),
            "completedFiles": list(self.completed_files),
            "remainingFiles": list(self.remaining_files),
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "isComplete": self.is_complete,
        }


@dataclass(frozen=True)
class ContinuationState:
    """Everything needed to issue the next batch of a session."""

    is_active: bool
    original_prompt: str
    system_instruction: str
    generation_meta: GenerationMeta
    accumulated_files: FileSet
    current_batch: int
    retry_attempts: int = 0
    session_id: Optional[str] = None

    @property
    def remaining_files(self) -> List[str]:
        return list(self.generation_meta.remaining_files)

    @property
    def completed_files(self) -> List[str]:
        return list(self.generation_meta.completed_files)


@dataclass(frozen=True)
class ParsedBatchResult:
    """Structured result the parser extracts from one raw response."""

    files: FileSet
    explanation: Optional[str] = None
    truncated: bool = False
    generation_meta: Optional[GenerationMeta] = None

    @property
    def status(self) -> ParseStatus:
        return ParseStatus.PARTIAL_OK if self.truncated else ParseStatus.OK


@dataclass(frozen=True)
class PartialFile:
    content: str
    is_complete: bool


@dataclass(frozen=True)
class TruncationRecoveryState:
    """Recovery track for a response cut off mid-structure."""

    raw_response: str
    prompt: str
    system_instruction: str
    partial_files: Dict[str, PartialFile] = field(default_factory=dict)
    attempt: int = 0

    def complete_files(self) -> FileSet:
        """Partial-track files that were whole before the cut."""
        return {path: f.content for path, f in self.partial_files.items() if f.is_complete}


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class GenerationOutcome:
    """Result of one ``GenerationSession.run`` call."""

    status: OutcomeStatus
    files: FileSet = field(default_factory=dict)
    final_files: FileSet = field(default_factory=dict)
    explanation: str = ""
    invalid_paths: List[str] = field(default_factory=list)
    missing_files: List[str] = field(default_factory=list)
    forced: bool = False
    batches_run: int = 0
    used_targeted_fetch: bool = False
    error: Optional[BaseException] = None
    token_usage: Optional[TokenUsage] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.COMPLETE

    @property
    def is_partial(self) -> bool:
        return self.succeeded and bool(self.missing_files)

    def raise_for_error(self) -> None:
        """Re-raise the error that ended the run, if any."""
        if self.error is not None:
            raise self.error

    def raise_for_missing(self) -> None:
        """Raise PartialGenerationError if planned files never arrived."""
        self.raise_for_error()
        if self.missing_files:
            raise PartialGenerationError(
                f"{len(self.missing_files)} planned files were not generated",
                missing_files=self.missing_files,
            )
