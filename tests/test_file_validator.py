"""Tests for FileValidator."""

import pytest

from genpack.file_validator import FileValidator, build_marker_pattern, has_hidden_segment

from helpers import content


class TestFileValidator:
    @pytest.fixture
    def validator(self):
        return FileValidator()

    @pytest.mark.parametrize("marker", ["tsx", "TSX", "json;", ".css", "md:", " jsx \n", "ts,"])
    def test_bare_marker_content_is_excluded(self, marker):
        validator = FileValidator(min_content_length=0)
        result = validator.validate({"src/App.tsx": marker, "src/ok.ts": content("ok")})

        assert result.invalid_paths == ["src/App.tsx"]
        assert list(result.valid_files) == ["src/ok.ts"]

    def test_marker_token_inside_real_code_is_kept(self, validator):
        code = "// tsx\nexport default function App() { return null; }\n"
        assert validator.validate({"src/App.tsx": code}).valid_files == {"src/App.tsx": code}

    def test_short_content_is_excluded(self, validator):
        result = validator.validate({"src/a.ts": "x = 1"})
        assert result.is_empty
        assert result.invalid_paths == ["src/a.ts"]

    @pytest.mark.parametrize("path", [".env", "src/.hidden/a.ts", "Makefile", "src/a.", ""])
    def test_bad_paths_are_excluded(self, validator, path):
        result = validator.validate({path: content("a")})
        assert result.invalid_paths == [path]

    def test_non_text_content_is_excluded(self, validator):
        result = validator.validate({"src/a.ts": None})
        assert result.invalid_paths == ["src/a.ts"]

    def test_all_invalid_is_empty(self, validator):
        result = validator.validate({"src/a.ts": "ts", "src/b.json": "json"})
        assert result.is_empty
        assert sorted(result.invalid_paths) == ["src/a.ts", "src/b.json"]

    def test_custom_marker_tokens(self):
        validator = FileValidator(min_content_length=0, marker_tokens=["py"])
        assert validator.is_bare_marker("py;")
        assert not validator.is_bare_marker("tsx")


def test_has_hidden_segment():
    assert has_hidden_segment(".github/workflows/ci.yml")
    assert has_hidden_segment("src\\.cache\\x.ts")
    assert not has_hidden_segment("src/components/App.tsx")
    assert not has_hidden_segment("./src/App.tsx")
    assert not has_hidden_segment("../shared/util.ts")
    assert has_hidden_segment("./.env.local")


def test_dot_relative_path_is_valid():
    validator = FileValidator()
    code = content("App")
    assert validator.validate({"./src/App.tsx": code}).valid_files == {"./src/App.tsx": code}


def test_marker_pattern_prefers_longest_token():
    pattern = build_marker_pattern(["ts", "tsx"])
    assert pattern.match("tsx;")
    assert not pattern.match("tsxx")
