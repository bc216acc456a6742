"""Tests for the genpack data model."""

from dataclasses import FrozenInstanceError

import pytest

from genpack.exceptions import PartialGenerationError
from genpack.models import (
    ContinuationState,
    GenerationMeta,
    GenerationOutcome,
    OutcomeStatus,
    ParsedBatchResult,
    ParseStatus,
    estimate_total_batches,
    unique_paths,
)


class TestGenerationMeta:
    def test_from_camel_case_payload(self):
        meta = GenerationMeta.from_dict({
            "totalFilesPlanned": "8",
            "filesInThisBatch": ["a.ts", "a.ts", "b.ts"],
            "completedFiles": "a.ts, b.ts",
            "remainingFiles": [],
            "currentBatch": 2,
            "totalBatches": "x",
            "isComplete": "TRUE",
        })

        assert meta.total_files_planned == 8
        assert meta.files_in_this_batch == ["a.ts", "b.ts"]
        assert meta.completed_files == ["a.ts", "b.ts"]
        assert meta.remaining_files == []
        assert meta.current_batch == 2
        assert meta.total_batches == 1
        assert meta.is_complete is True

    def test_from_snake_case_and_back(self):
        meta = GenerationMeta.from_dict({"total_files_planned": 3, "remaining_files": ["c.ts"]})
        assert meta.to_dict()["remainingFiles"] == ["c.ts"]
        assert meta.to_dict()["totalFilesPlanned"] == 3
        assert meta.is_complete is False


def test_state_is_frozen():
    state = ContinuationState(
        is_active=True,
        original_prompt="p",
        system_instruction="",
        generation_meta=GenerationMeta(total_files_planned=1, remaining_files=["a.ts"]),
        accumulated_files={},
        current_batch=1,
    )
    with pytest.raises(FrozenInstanceError):
        state.retry_attempts = 2
    assert state.remaining_files == ["a.ts"]


def test_parse_status():
    assert ParsedBatchResult(files={}).status == ParseStatus.OK
    assert ParsedBatchResult(files={}, truncated=True).status == ParseStatus.PARTIAL_OK


def test_outcome_partial():
    outcome = GenerationOutcome(status=OutcomeStatus.COMPLETE, missing_files=["b.ts"])
    assert outcome.succeeded
    assert outcome.is_partial
    outcome.raise_for_error()


def test_helpers():
    assert unique_paths(["b", "a", "b"]) == ["b", "a"]
    assert estimate_total_batches(0) == 1
    assert estimate_total_batches(8) == 2
    assert estimate_total_batches(10) == 2


def test_outcome_raise_for_missing():
    outcome = GenerationOutcome(status=OutcomeStatus.COMPLETE, missing_files=["b.ts"])
    with pytest.raises(PartialGenerationError) as exc_info:
        outcome.raise_for_missing()
    assert exc_info.value.missing_files == ["b.ts"]

    GenerationOutcome(status=OutcomeStatus.COMPLETE).raise_for_missing()
