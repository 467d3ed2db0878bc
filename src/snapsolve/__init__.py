"""Screenshot-to-solution orchestration over multimodal LLM providers."""

from .config import Settings, TaskConfig, load_settings
from .executor import CancellationToken, ExecutorConfig, RequestExecutor
from .memory import DebugMemoryStore, JsonFileStorage, PreviousSolution
from .models import DEFAULT_REGISTRY, ModelProfile, ModelRegistry, TaskKind
from .parsing import ProblemInfo
from .processing import Outcome, ProblemSolver, ProcessingSession

__all__ = [
    "CancellationToken",
    "DEFAULT_REGISTRY",
    "DebugMemoryStore",
    "ExecutorConfig",
    "JsonFileStorage",
    "ModelProfile",
    "ModelRegistry",
    "Outcome",
    "PreviousSolution",
    "ProblemInfo",
    "ProblemSolver",
    "ProcessingSession",
    "RequestExecutor",
    "Settings",
    "TaskConfig",
    "TaskKind",
    "load_settings",
]
