"""Fakes shared by the genpack tests"""

import asyncio
import json
from typing import Dict, List, Optional

from genpack.exceptions import SessionCancelledError
from genpack.generation_service import StreamOptions, StreamResult
from genpack.models import TokenUsage
from genpack.timers import TimerRegistry


def content(name: str) -> str:
    """Realistic file content, long enough to pass validation"""
    return f"export const {name} = () => {{\n  return null;\n}};\n"


def json_response(
    files: Dict[str, str],
    explanation: Optional[str] = None,
    meta: Optional[dict] = None,
) -> str:
    payload = {"files": files}
    if explanation is not None:
        payload["explanation"] = explanation
    if meta is not None:
        payload["generationMeta"] = meta
    return json.dumps(payload)


def truncated_json(files: Dict[str, str], partial_path: str = "src/partial.tsx") -> str:
    """JSON response cut off in the middle of ``partial_path``'s content"""
    complete = json.dumps({"files": files})[:-2]
    separator = ", " if files else ""
    return complete + separator + f'"{partial_path}": "export default function Partial() {{ ret'


class ScriptedGenerationService:
    """Plays back scripted responses, one per stream_complete call.

    Each script entry is a response string (streamed in small chunks), an
    explicit list of chunks, or an exception instance to raise.
    """

    def __init__(self, script: List, usage: Optional[TokenUsage] = None, chunk_size: int = 64):
        self.script = list(script)
        self.usage = usage or TokenUsage(input_tokens=100, output_tokens=50)
        self.chunk_size = chunk_size
        self.calls = []

    @property
    def prompts(self) -> List[str]:
        return [call["prompt"] for call in self.calls]

    async def stream_complete(self, prompt, system_instruction, options: StreamOptions, on_chunk):
        self.calls.append(
            {"prompt": prompt, "system_instruction": system_instruction, "options": options}
        )
        if not self.script:
            raise RuntimeError("No scripted response left")

        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry

        chunks = entry
        if isinstance(entry, str):
            chunks = [entry[i:i + self.chunk_size] for i in range(0, len(entry), self.chunk_size)]
        for chunk in chunks:
            on_chunk(chunk)
        return StreamResult(usage=self.usage, stop_reason="end_turn")


class RecordingApplySink:
    def __init__(self):
        self.calls = []

    def apply(self, label, files):
        self.calls.append((label, dict(files)))


class RecordingLogSink:
    def __init__(self):
        self.messages = []

    def append_message(self, message):
        self.messages.append(message)


class RecordingTimers(TimerRegistry):
    """Timer registry that records requested delays and does not actually wait"""

    def __init__(self):
        super().__init__()
        self.delays: List[float] = []

    async def sleep(self, delay_seconds: float) -> None:
        if self.closed:
            raise SessionCancelledError("Timer registry is closed")
        self.delays.append(delay_seconds)
        await asyncio.sleep(0)
