"""Targeted File Requester - last-resort request for specific missing files.

Once broad continuation has failed repeatedly, another broad request tends to
make the service restate finished work. A short request that names exactly
the missing paths is more likely to produce them. One attempt only.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .completion_detector import merge_files
from .config import GenerationSettings
from .generation_service import GenerationService, StreamOptions
from .models import FileSet
from .progress import ProgressKind, ProgressNotifier
from .response_parser import ResponseParser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetedFetchResult:
    success: bool
    files: FileSet = field(default_factory=dict)
    explanation: Optional[str] = None
    fetched_paths: List[str] = field(default_factory=list)


def build_targeted_prompt(missing_files: List[str], accumulated_files: FileSet, preview_limit: int) -> str:
    required = "\n".join(f"{i + 1}. {f}" for i, f in enumerate(missing_files))
    existing = list(accumulated_files)
    preview = "\n".join(f"- {f}" for f in existing[:preview_limit])
    if len(existing) > preview_limit:
        preview += f"\n... and {len(existing) - preview_limit} more files"

    return f"""Generate ONLY the following specific files. These files are missing from the project.

## REQUIRED FILES (generate ALL of these):
{required}

## CONTEXT
These files should integrate with the existing project structure. Use the same patterns and styles.

## EXISTING FILES FOR REFERENCE:
{preview}

## CRITICAL INSTRUCTIONS:
1. Generate EXACTLY the {len(missing_files)} files listed above
2. Use relative imports
3. Return complete file contents - no truncation

Return ONLY a JSON object with the files:
{{
  "files": {{
    "{missing_files[0]}": "// complete file content..."
  }},
  "explanation": "Generated {len(missing_files)} missing files"
}}"""


class TargetedFileRequester:
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

    async def request(
        self,
        missing_files: List[str],
        accumulated_files: FileSet,
        system_instruction: str,
        session_id: Optional[str] = None,
    ) -> TargetedFetchResult:
        """Ask for exactly ``missing_files``.

        Returns:
            On success, ``files`` is ``accumulated_files`` merged with the new
            files. On failure, ``files`` is ``accumulated_files`` unchanged.
        """
        if not missing_files:
            return TargetedFetchResult(success=True, files=dict(accumulated_files))

        logger.info(f"[TargetedFetch] Requesting specific files: {missing_files}")
        self.notifier.emit(
            ProgressKind.TARGETED_FETCH,
            f"Requesting {len(missing_files)} missing file(s)...",
            session_id=session_id,
        )

        prompt = build_targeted_prompt(
            missing_files, accumulated_files, self.settings.targeted_preview_limit
        )
        options = StreamOptions(
            max_output_tokens=self.settings.max_output_tokens,
            temperature=self.settings.temperature,
            response_format=self.settings.response_format,
        )
        chunks: List[str] = []

        try:
            await self.service.stream_complete(prompt, system_instruction, options, chunks.append)
        except Exception as e:
            logger.error(f"[TargetedFetch] Request failed: {e}")
            return TargetedFetchResult(success=False, files=dict(accumulated_files))

        parsed = self.parser.parse("".join(chunks))
        if parsed is None or not parsed.files:
            logger.warning("[TargetedFetch] No files in response")
            return TargetedFetchResult(success=False, files=dict(accumulated_files))

        logger.info(f"[TargetedFetch] Successfully generated: {sorted(parsed.files)}")
        return TargetedFetchResult(
            success=True,
            files=merge_files(accumulated_files, parsed.files),
            explanation=parsed.explanation,
            fetched_paths=list(parsed.files),
        )
