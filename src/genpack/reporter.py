"""Hands a session's result to the host's sinks.

Two sinks are supplied by the caller: an apply sink that merges files into the
live project, and a log sink that records a message in the conversation. Each
is called at most once per session and only after validation has run.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Set

from .exceptions import DuplicateReportError
from .models import FileSet, TokenUsage

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


class ApplySink(Protocol):
    def apply(self, label: str, files: FileSet) -> None:
        ...


class LogSink(Protocol):
    def append_message(self, message: "GenerationMessage") -> None:
        ...


@dataclass(frozen=True)
class FileChange:
    path: str
    type: str  # added, deleted, modified
    additions: int
    deletions: int


@dataclass
class GenerationMessage:
    """Conversation entry describing how a session ended."""

    explanation: str = ""
    files: FileSet = field(default_factory=dict)
    file_changes: List[FileChange] = field(default_factory=list)
    error: Optional[str] = None
    missing_files: List[str] = field(default_factory=list)
    model: Optional[str] = None
    provider: Optional[str] = None
    generation_time_ms: Optional[int] = None
    token_usage: Optional[TokenUsage] = None
    role: str = "assistant"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)


def calculate_file_changes(old_files: FileSet, new_files: FileSet) -> List[FileChange]:
    """Per-path added/deleted/modified summary with line counts."""
    changes = []
    for path in sorted(set(old_files) | set(new_files)):
        old = old_files.get(path)
        new = new_files.get(path)
        if not old and new:
            changes.append(FileChange(path, "added", len(new.split("\n")), 0))
        elif old and not new:
            changes.append(FileChange(path, "deleted", 0, len(old.split("\n"))))
        elif old != new:
            old_lines = len(old.split("\n")) if old else 0
            new_lines = len(new.split("\n")) if new else 0
            changes.append(
                FileChange(
                    path,
                    "modified",
                    max(0, new_lines - old_lines),
                    max(0, old_lines - new_lines),
                )
            )
    return changes


def estimate_token_usage(
    usage: Optional[TokenUsage] = None,
    response_text: Optional[str] = None,
    files: Optional[FileSet] = None,
) -> TokenUsage:
    """Provider usage when reported, otherwise a character-count estimate."""
    if usage is not None and (usage.input_tokens or usage.output_tokens):
        return usage

    response_tokens = -(-len(response_text or "") // CHARS_PER_TOKEN)
    file_tokens = -(-sum(len(c) for c in (files or {}).values()) // CHARS_PER_TOKEN)
    return TokenUsage(input_tokens=0, output_tokens=response_tokens or file_tokens)


def add_usage(total: Optional[TokenUsage], usage: Optional[TokenUsage]) -> Optional[TokenUsage]:
    if usage is None:
        return total
    if total is None:
        return usage
    return TokenUsage(
        input_tokens=total.input_tokens + usage.input_tokens,
        output_tokens=total.output_tokens + usage.output_tokens,
    )


class ResultReporter:
    """Routes a session result to the apply and log sinks, once per session."""

    def __init__(self, apply_sink: ApplySink, log_sink: LogSink):
        self.apply_sink = apply_sink
        self.log_sink = log_sink
        self._reported: Set[str] = set()

    def has_reported(self, session_id: str) -> bool:
        return session_id in self._reported

    def _claim(self, session_id: str) -> None:
        if session_id in self._reported:
            raise DuplicateReportError(f"Session {session_id} has already reported its result")
        self._reported.add(session_id)

    def report_success(
        self,
        session_id: str,
        label: str,
        final_files: FileSet,
        message: GenerationMessage,
    ) -> None:
        self._claim(session_id)
        logger.info(
            f"[Reporter] Session {session_id}: applying {len(final_files)} file(s) as {label!r}"
            + (f", {len(message.missing_files)} missing" if message.missing_files else "")
        )
        self.log_sink.append_message(message)
        self.apply_sink.apply(label, dict(final_files))

    def report_failure(self, session_id: str, message: GenerationMessage) -> None:
        self._claim(session_id)
        logger.error(f"[Reporter] Session {session_id} failed: {message.error}")
        self.log_sink.append_message(message)
