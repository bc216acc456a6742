"""Turn raw streamed text into a ``ParsedBatchResult``.

The session depends only on the ``ResponseParser`` protocol. Three outcomes
are possible for one response:

- ``ParseStatus.OK``: a structurally complete response.
- ``ParseStatus.PARTIAL_OK``: the text ends mid-structure; the result carries
  every file that was complete before the cut and ``truncated=True``.
- ``ParseStatus.NO_MATCH``: nothing file-shaped was found; ``parse`` returns None.

``FileResponseParser`` understands the two conventions the generation prompts
ask for:

JSON::

    {"files": {"src/App.tsx": "..."}, "explanation": "...", "generationMeta": {...}}

Marker::

    <!-- FILE:src/App.tsx -->
    ...
    <!-- /FILE:src/App.tsx -->
    <!-- GENERATION_META -->
    totalFilesPlanned: 8
    remainingFiles: src/a.ts, src/b.ts
    <!-- /GENERATION_META -->
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol, Tuple

from .models import FileSet, GenerationMeta, ParsedBatchResult

logger = logging.getLogger(__name__)

FILE_PATH_PATTERN = r"[\w./@-]+\.[A-Za-z0-9]+"

MARKER_FILE_BLOCK = re.compile(
    r"<!--\s*FILE:(" + FILE_PATH_PATTERN + r")\s*-->(.*?)<!--\s*/FILE:\1\s*-->",
    re.DOTALL,
)
MARKER_FILE_OPEN = re.compile(r"<!--\s*FILE:(" + FILE_PATH_PATTERN + r")\s*-->")
MARKER_EXPLANATION = re.compile(r"<!--\s*EXPLANATION\s*-->(.*?)<!--\s*/EXPLANATION\s*-->", re.DOTALL)
MARKER_GENERATION_META = re.compile(
    r"<!--\s*GENERATION_META\s*-->(.*?)<!--\s*/GENERATION_META\s*-->", re.DOTALL
)
CODE_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)(?:\n```|$)", re.DOTALL)


class ResponseParser(Protocol):
    def parse(self, raw_text: str) -> Optional[ParsedBatchResult]:
        ...


def detect_format(raw_text: str) -> str:
    """Return "marker", "json" or "unknown"."""
    if MARKER_FILE_OPEN.search(raw_text):
        return "marker"
    if "{" in raw_text:
        return "json"
    return "unknown"


class FileResponseParser:
    """Default parser for JSON and marker formatted responses."""

    def __init__(self) -> None:
        self._decoder = json.JSONDecoder()

    def parse(self, raw_text: str) -> Optional[ParsedBatchResult]:
        if not raw_text or not raw_text.strip():
            return None

        format_type = detect_format(raw_text)
        if format_type == "marker":
            result = self._parse_marker(raw_text)
        elif format_type == "json":
            result = self._parse_json(raw_text)
        else:
            result = None

        if result is None:
            logger.debug(f"[ResponseParser] No file content found ({len(raw_text)} chars)")
        else:
            logger.debug(
                f"[ResponseParser] Parsed {len(result.files)} file(s) as {format_type}, "
                f"truncated={result.truncated}"
            )
        return result

    # ------------------------------------------------------------------
    # Marker format
    # ------------------------------------------------------------------

    def _parse_marker(self, text: str) -> Optional[ParsedBatchResult]:
        files: FileSet = {}
        complete_starts = set()
        for match in MARKER_FILE_BLOCK.finditer(text):
            complete_starts.add(match.start())
            files[match.group(1)] = match.group(2).strip("\n")

        opened = list(MARKER_FILE_OPEN.finditer(text))
        if not files and not opened:
            return None

        # An opening marker that is neither the start of a complete block nor
        # inside one means the response stopped mid-file.
        truncated = False
        for match in opened:
            if match.start() in complete_starts:
                continue
            inside_complete = any(
                block.start() < match.start() < block.end()
                for block in MARKER_FILE_BLOCK.finditer(text)
            )
            if not inside_complete:
                truncated = True
                break

        explanation = None
        explanation_match = MARKER_EXPLANATION.search(text)
        if explanation_match:
            explanation = explanation_match.group(1).strip() or None

        meta = None
        meta_match = MARKER_GENERATION_META.search(text)
        if meta_match:
            meta = self._parse_marker_meta(meta_match.group(1))

        return ParsedBatchResult(
            files=files, explanation=explanation, truncated=truncated, generation_meta=meta
        )

    @staticmethod
    def _parse_marker_meta(block: str) -> GenerationMeta:
        values: Dict[str, Any] = {}
        for line in block.strip().splitlines():
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            values[key.strip()] = value.strip()
        return GenerationMeta.from_dict(values)

    # ------------------------------------------------------------------
    # JSON format
    # ------------------------------------------------------------------

    def _parse_json(self, text: str) -> Optional[ParsedBatchResult]:
        body = self._strip_fence(text)
        files_key = re.search(r'"files"\s*:', body)
        if not files_key:
            return None

        data = self._decode_object_with_files(body, files_key.start())
        if data is None:
            logger.debug("[ResponseParser] JSON decode failed, scanning for complete files")
            return self._scan_truncated_json(body)

        files = self._coerce_files(data.get("files"))
        explanation = data.get("explanation")
        meta = self._coerce_meta(data.get("generationMeta", data.get("generation_meta")))
        return ParsedBatchResult(
            files=files,
            explanation=explanation if isinstance(explanation, str) else None,
            truncated=False,
            generation_meta=meta,
        )

    def _decode_object_with_files(self, text: str, files_pos: int) -> Optional[Dict[str, Any]]:
        """Decode the first object that opens before ``files_pos`` and has a "files" key.

        Braces in leading prose (``Here is the app {v2}:``) fail to decode and
        are skipped.
        """
        start = text.find("{")
        while start != -1 and start < files_pos:
            try:
                data, _ = self._decoder.raw_decode(text, start)
            except json.JSONDecodeError:
                data = None
            if isinstance(data, dict) and "files" in data:
                return data
            start = text.find("{", start + 1)
        return None

    @staticmethod
    def _strip_fence(text: str) -> str:
        stripped = text.strip()
        if stripped.startswith("```"):
            match = CODE_FENCE.search(stripped)
            if match:
                return match.group(1)
        return stripped

    @staticmethod
    def _coerce_files(raw: Any) -> FileSet:
        files: FileSet = {}
        if isinstance(raw, dict):
            for path, content in raw.items():
                if isinstance(path, str) and isinstance(content, str):
                    files[path] = content
        elif isinstance(raw, list):
            for entry in raw:
                if not isinstance(entry, dict):
                    continue
                path = entry.get("path") or entry.get("file_path")
                content = entry.get("content", entry.get("new_content"))
                if isinstance(path, str) and isinstance(content, str):
                    files[path] = content
        return files

    @staticmethod
    def _coerce_meta(raw: Any) -> Optional[GenerationMeta]:
        if isinstance(raw, dict):
            return GenerationMeta.from_dict(raw)
        return None

    def _scan_truncated_json(self, text: str) -> Optional[ParsedBatchResult]:
        """Recover complete path/content pairs from a cut-off JSON response."""
        files_key = re.search(r'"files"\s*:\s*([\[{])', text)
        if not files_key:
            return None

        pos = files_key.end(1)
        if files_key.group(1) == "{":
            files = self._scan_file_object(text, pos)
        else:
            files = self._scan_file_list(text, pos)

        explanation = self._decode_value_after(text, "explanation")
        meta = self._coerce_meta(self._decode_value_after(text, "generationMeta"))
        return ParsedBatchResult(
            files=files,
            explanation=explanation if isinstance(explanation, str) else None,
            truncated=True,
            generation_meta=meta,
        )

    def _scan_file_object(self, text: str, pos: int) -> FileSet:
        files: FileSet = {}
        while True:
            pos = self._skip(text, pos, " \t\r\n,")
            if pos >= len(text) or text[pos] == "}":
                break
            try:
                path, pos = self._decoder.raw_decode(text, pos)
                pos = self._skip(text, pos, " \t\r\n")
                if pos >= len(text) or text[pos] != ":":
                    break
                pos = self._skip(text, pos + 1, " \t\r\n")
                content, pos = self._decoder.raw_decode(text, pos)
            except json.JSONDecodeError:
                break
            if isinstance(path, str) and isinstance(content, str):
                files[path] = content
        return files

    def _scan_file_list(self, text: str, pos: int) -> FileSet:
        entries = []
        while True:
            pos = self._skip(text, pos, " \t\r\n,")
            if pos >= len(text) or text[pos] == "]":
                break
            try:
                entry, pos = self._decoder.raw_decode(text, pos)
            except json.JSONDecodeError:
                break
            entries.append(entry)
        return self._coerce_files(entries)

    def _decode_value_after(self, text: str, key: str) -> Any:
        match = re.search(r'"' + re.escape(key) + r'"\s*:\s*', text)
        if not match:
            return None
        try:
            value, _ = self._decoder.raw_decode(text, match.end())
        except json.JSONDecodeError:
            return None
        return value

    @staticmethod
    def _skip(text: str, pos: int, chars: str) -> int:
        while pos < len(text) and text[pos] in chars:
            pos += 1
        return pos


def parse_with_status(parser: ResponseParser, raw_text: str) -> Tuple[Optional[ParsedBatchResult], str]:
    """Parse and report the outcome name ("ok", "partial_ok" or "no_match")."""
    result = parser.parse(raw_text)
    if result is None:
        return None, "no_match"
    return result, result.status.value
