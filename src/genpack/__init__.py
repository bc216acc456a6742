"""Multi-batch file generation: continuation, retry, validation and reporting."""

from .batch_executor import BatchExecutor, BatchResult
from .completion_detector import CompletionDetector, CompletionVerdict
from .config import GenerationSettings
from .exceptions import (
    ConfigurationError,
    DuplicateReportError,
    EmptyGenerationError,
    GenerationError,
    GenerationServiceError,
    GenpackError,
    InvalidContinuationStateError,
    ParseFailureError,
    PartialGenerationError,
    SessionCancelledError,
    TransientNetworkError,
    TruncatedOutputError,
)
from .file_validator import FileValidator, ValidationResult
from .generation_service import (
    AnthropicGenerationService,
    GenerationService,
    StreamOptions,
    StreamResult,
)
from .models import (
    ContinuationState,
    GenerationMeta,
    GenerationOutcome,
    GenerationPlan,
    OutcomeStatus,
    ParsedBatchResult,
    ParseStatus,
    PartialFile,
    SessionStatus,
    TokenUsage,
    TruncationRecoveryState,
)
from .progress import ProgressEvent, ProgressKind, ProgressNotifier
from .reporter import GenerationMessage, ResultReporter
from .response_parser import FileResponseParser, ResponseParser
from .retry_controller import RetryAction, RetryController, RetryDecision
from .session import GenerationSession
from .targeted_requester import TargetedFetchResult, TargetedFileRequester
from .timers import TimerRegistry
from .truncation_recovery import (
    RecoveryAction,
    TruncationRecovery,
    TruncationRetryStatus,
    analyze_truncated_response,
    build_truncation_state,
)

__all__ = [
    "AnthropicGenerationService",
    "BatchExecutor",
    "BatchResult",
    "CompletionDetector",
    "CompletionVerdict",
    "ConfigurationError",
    "ContinuationState",
    "DuplicateReportError",
    "EmptyGenerationError",
    "FileResponseParser",
    "FileValidator",
    "GenerationError",
    "GenerationMessage",
    "GenerationMeta",
    "GenerationOutcome",
    "GenerationPlan",
    "GenerationService",
    "GenerationServiceError",
    "GenerationSession",
    "GenerationSettings",
    "GenpackError",
    "InvalidContinuationStateError",
    "OutcomeStatus",
    "ParseFailureError",
    "ParseStatus",
    "ParsedBatchResult",
    "PartialFile",
    "PartialGenerationError",
    "ProgressEvent",
    "ProgressKind",
    "ProgressNotifier",
    "RecoveryAction",
    "ResponseParser",
    "ResultReporter",
    "RetryAction",
    "RetryController",
    "RetryDecision",
    "SessionCancelledError",
    "SessionStatus",
    "StreamOptions",
    "StreamResult",
    "TargetedFetchResult",
    "TargetedFileRequester",
    "TimerRegistry",
    "TokenUsage",
    "TransientNetworkError",
    "TruncatedOutputError",
    "TruncationRecovery",
    "TruncationRecoveryState",
    "TruncationRetryStatus",
    "ValidationResult",
    "analyze_truncated_response",
    "build_truncation_state",
]
