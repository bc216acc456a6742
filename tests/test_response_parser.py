"""Tests for FileResponseParser (JSON and marker formats)."""

import json

import pytest

from genpack.models import ParseStatus
from genpack.response_parser import FileResponseParser, detect_format, parse_with_status

from helpers import truncated_json


@pytest.fixture
def parser():
    return FileResponseParser()


class TestJsonFormat:
    def test_complete_response(self, parser):
        text = json.dumps({
            "files": {"src/App.tsx": "export default App;", "src/main.tsx": "render();"},
            "explanation": "Two files",
            "generationMeta": {
                "totalFilesPlanned": 5,
                "completedFiles": ["src/App.tsx", "src/main.tsx"],
                "remainingFiles": ["src/a.ts", "src/b.ts", "src/c.ts"],
                "currentBatch": 1,
                "totalBatches": 2,
                "isComplete": False,
            },
        })

        result = parser.parse(text)

        assert result.status == ParseStatus.OK
        assert result.files["src/main.tsx"] == "render();"
        assert result.explanation == "Two files"
        assert result.generation_meta.total_files_planned == 5
        assert result.generation_meta.remaining_files == ["src/a.ts", "src/b.ts", "src/c.ts"]
        assert result.generation_meta.total_batches == 2

    def test_code_fenced_response(self, parser):
        text = '```json\n{"files": {"a.ts": "const a = 1;"}}\n```'
        assert parser.parse(text).files == {"a.ts": "const a = 1;"}

    def test_leading_prose_is_skipped(self, parser):
        text = 'Here you go:\n{"files": {"a.ts": "const a = 1;"}} trailing words'
        assert parser.parse(text).files == {"a.ts": "const a = 1;"}

    def test_braces_in_leading_prose_are_skipped(self, parser):
        body = json.dumps({
            "files": {"src/App.tsx": "export default App;"},
            "generationMeta": {"totalFilesPlanned": 1, "remainingFiles": []},
        })

        result = parser.parse("Here is the app {v2}:\n" + body)

        assert result.status == ParseStatus.OK
        assert result.files == {"src/App.tsx": "export default App;"}
        assert result.generation_meta.total_files_planned == 1
        assert result.generation_meta.is_complete is False

    def test_file_list_shape(self, parser):
        text = json.dumps({
            "files": [
                {"path": "a.ts", "content": "const a = 1;"},
                {"file_path": "b.ts", "new_content": "const b = 2;"},
                {"path": "c.ts"},
            ]
        })
        assert parser.parse(text).files == {"a.ts": "const a = 1;", "b.ts": "const b = 2;"}

    def test_truncated_object_keeps_complete_files(self, parser):
        text = truncated_json({"a.ts": "const a = 1;", "b.ts": "const b = 2;"}, partial_path="c.ts")

        result = parser.parse(text)

        assert result.truncated
        assert result.status == ParseStatus.PARTIAL_OK
        assert result.files == {"a.ts": "const a = 1;", "b.ts": "const b = 2;"}

    def test_truncated_list_keeps_complete_entries(self, parser):
        text = '{"files": [{"path": "a.ts", "content": "const a = 1;"}, {"path": "b.ts", "content": "const'
        result = parser.parse(text)
        assert result.truncated
        assert result.files == {"a.ts": "const a = 1;"}

    def test_truncated_with_meta_before_files(self, parser):
        text = (
            '{"generationMeta": {"totalFilesPlanned": 3, "remainingFiles": ["c.ts"]}, '
            '"explanation": "partial", "files": {"a.ts": "const a = 1;", "b.ts": "con'
        )
        result = parser.parse(text)
        assert result.files == {"a.ts": "const a = 1;"}
        assert result.explanation == "partial"
        assert result.generation_meta.remaining_files == ["c.ts"]

    def test_json_without_files_is_no_match(self, parser):
        assert parser.parse('{"answer": 42}') is None

    def test_truncated_without_files_key_is_no_match(self, parser):
        assert parser.parse('{"answer": "the response stopped') is None


class TestMarkerFormat:
    def test_complete_blocks_and_meta(self, parser):
        text = """<!-- FILE:src/App.tsx -->
export default function App() {}
<!-- /FILE:src/App.tsx -->
<!-- FILE:src/index.css -->
body { margin: 0; }
<!-- /FILE:src/index.css -->
<!-- EXPLANATION -->
Built the shell.
<!-- /EXPLANATION -->
<!-- GENERATION_META -->
totalFilesPlanned: 4
completedFiles: src/App.tsx, src/index.css
remainingFiles: src/a.ts, src/b.ts
currentBatch: 1
totalBatches: 2
isComplete: false
<!-- /GENERATION_META -->"""

        result = parser.parse(text)

        assert not result.truncated
        assert result.files == {
            "src/App.tsx": "export default function App() {}",
            "src/index.css": "body { margin: 0; }",
        }
        assert result.explanation == "Built the shell."
        meta = result.generation_meta
        assert meta.total_files_planned == 4
        assert meta.remaining_files == ["src/a.ts", "src/b.ts"]
        assert meta.is_complete is False

    def test_meta_without_is_complete_defaults_false(self, parser):
        text = """<!-- FILE:a.ts -->
const a = 1;
<!-- /FILE:a.ts -->
<!-- GENERATION_META -->
totalFilesPlanned: 1
<!-- /GENERATION_META -->"""
        assert parser.parse(text).generation_meta.is_complete is False

    def test_unclosed_block_marks_truncated(self, parser):
        text = """<!-- FILE:a.ts -->
const a = 1;
<!-- /FILE:a.ts -->
<!-- FILE:b.ts -->
const b ="""
        result = parser.parse(text)
        assert result.truncated
        assert result.files == {"a.ts": "const a = 1;"}

    def test_only_unclosed_block_is_partial_with_no_files(self, parser):
        result = parser.parse("<!-- FILE:a.ts -->\nconst a")
        assert result is not None
        assert result.files == {}
        assert result.truncated


class TestParseOutcome:
    def test_detect_format(self):
        assert detect_format("<!-- FILE:a.ts -->") == "marker"
        assert detect_format('{"files": {}}') == "json"
        assert detect_format("no structure here") == "unknown"

    @pytest.mark.parametrize(
        "text,expected",
        [
            ('{"files": {"a.ts": "x"}}', "ok"),
            ('{"files": {"a.ts": "x", "b.ts": "y', "partial_ok"),
            ("Sorry, I cannot help with that.", "no_match"),
            ("", "no_match"),
        ],
    )
    def test_parse_with_status(self, parser, text, expected):
        _, outcome = parse_with_status(parser, text)
        assert outcome == expected
