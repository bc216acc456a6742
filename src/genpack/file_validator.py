"""File Validator - Filters malformed entries out of a generated file set.

A known degenerate output from the generation service is a file whose whole
content is the language tag (``tsx``, ``json;``) instead of code. Those, empty
or near-empty files, hidden paths and paths without a file-type suffix never
reach the apply sink.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .models import FileSet

logger = logging.getLogger(__name__)

FILE_SUFFIX = re.compile(r"\.[A-Za-z]+$")

DEFAULT_MIN_CONTENT_LENGTH = 20
DEFAULT_MARKER_TOKENS = ("tsx", "jsx", "ts", "js", "css", "json", "md")


@dataclass
class ValidationResult:
    valid_files: FileSet = field(default_factory=dict)
    invalid_paths: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.valid_files


def has_hidden_segment(path: str) -> bool:
    segments = path.replace("\\", "/").split("/")
    return any(s.startswith(".") for s in segments if s not in ("", ".", ".."))


def build_marker_pattern(tokens: Iterable[str]) -> "re.Pattern[str]":
    """Match content that is only a type token, e.g. ``tsx``, ``.json;``."""
    alternatives = "|".join(sorted((re.escape(t) for t in tokens), key=len, reverse=True))
    return re.compile(r"^\.?(?:" + alternatives + r")[;:,.]?$", re.IGNORECASE)


class FileValidator:
    """Rejects hidden, suffix-less, empty and bare-marker files."""

    def __init__(
        self,
        min_content_length: int = DEFAULT_MIN_CONTENT_LENGTH,
        marker_tokens: Optional[Iterable[str]] = None,
    ):
        self.min_content_length = min_content_length
        self._marker_pattern = build_marker_pattern(marker_tokens or DEFAULT_MARKER_TOKENS)

    def is_bare_marker(self, content: str) -> bool:
        return bool(self._marker_pattern.match(content.strip()))

    def path_error(self, path: str) -> Optional[str]:
        if not path or not isinstance(path, str):
            return "empty path"
        if has_hidden_segment(path):
            return "hidden path segment"
        if not FILE_SUFFIX.search(path):
            return "missing file-type suffix"
        return None

    def content_error(self, content: object) -> Optional[str]:
        if not isinstance(content, str):
            return "content is not text"
        if len(content) < self.min_content_length:
            return f"content shorter than {self.min_content_length} chars"
        if self.is_bare_marker(content):
            return "content is a bare type marker"
        return None

    def validate(self, files: FileSet) -> ValidationResult:
        result = ValidationResult()
        for path, content in files.items():
            reason = self.path_error(path) or self.content_error(content)
            if reason:
                preview = content[:50] if isinstance(content, str) else repr(content)[:50]
                logger.warning(f"[FileValidator] Excluding {path!r}: {reason} (content: {preview!r})")
                result.invalid_paths.append(path)
                continue
            result.valid_files[path] = content

        logger.info(
            f"[FileValidator] {len(result.valid_files)} valid, "
            f"{len(result.invalid_paths)} invalid of {len(files)} file(s)"
        )
        return result
