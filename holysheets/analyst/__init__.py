"""Natural-language data analysis: prompt, generate, run, validate, retry."""

from .agent import (
    AnalystAgent,
    AttemptState,
    ConversationTurn,
    RetryAttempt,
    TurnOutcome,
    TurnRequest,
    TurnState,
)
from .backends import (
    BackendSelector,
    CustomEndpointBackend,
    LiteLLMBackend,
    LocalBackend,
    LocalModelManager,
    ModelBackend,
    OpenAICompatibleBackend,
)
from .contract import (
    ChartResult,
    KpiResult,
    MarkdownResult,
    TableResult,
    validate_output,
    validate_result,
)
from .errors import (
    AnalystError,
    DatasetLoadError,
    DatasetNotLoadedError,
    FailureKind,
    GenerationError,
    ModelNotDownloadedError,
    OutputValidationError,
    ScriptExecutionError,
    TurnInProgressError,
)
from .sandbox import SandboxSession
from .session import AnalysisSession

__all__ = [
    "AnalysisSession",
    "AnalystAgent",
    "AnalystError",
    "AttemptState",
    "BackendSelector",
    "ChartResult",
    "ConversationTurn",
    "CustomEndpointBackend",
    "DatasetLoadError",
    "DatasetNotLoadedError",
    "FailureKind",
    "GenerationError",
    "KpiResult",
    "LiteLLMBackend",
    "LocalBackend",
    "LocalModelManager",
    "MarkdownResult",
    "ModelBackend",
    "ModelNotDownloadedError",
    "OpenAICompatibleBackend",
    "OutputValidationError",
    "RetryAttempt",
    "SandboxSession",
    "ScriptExecutionError",
    "TableResult",
    "TurnInProgressError",
    "TurnOutcome",
    "TurnRequest",
    "TurnState",
]
