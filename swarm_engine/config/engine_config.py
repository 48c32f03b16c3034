"""
Engine configuration - Settings for the task queue and execution graph
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any
import os

from .env_config import normalize_int


class LLMProvider(str, Enum):
    """Supported chat model providers"""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    DEEPSEEK = "deepseek"


@dataclass
class LLMConfig:
    """
    Default chat model used when neither the settings nor the agent name one.

    Attributes:
        provider: Provider id (anthropic, openai, deepseek)
        model_name: Model identifier for the provider
        api_key: API key (reads LLM_API_KEY when not provided)
        base_url: Base URL for OpenAI-compatible endpoints
        temperature: Sampling temperature (0-2)
    """

    provider: str = "anthropic"
    model_name: str = "claude-sonnet-4-20250514"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = 0.2

    def __post_init__(self):
        valid_providers = [p.value for p in LLMProvider]
        if self.provider not in valid_providers:
            raise ValueError(f"Provider must be one of {valid_providers}, got {self.provider}")
        if not 0 <= self.temperature <= 2:
            raise ValueError(f"Temperature must be between 0 and 2, got {self.temperature}")
        if not self.api_key:
            self.api_key = os.getenv("LLM_API_KEY")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding API key."""
        return {
            "provider": self.provider,
            "model_name": self.model_name,
            "base_url": self.base_url,
            "temperature": self.temperature,
        }


@dataclass
class StorageConfig:
    """
    Where durable state lives.

    Attributes:
        data_dir: Folder holding one JSON file per collection
        reports_dir: Folder for per-task markdown completion reports
        checkpoint_db: sqlite file for execution-graph checkpoints
    """
    data_dir: str = "./data"
    reports_dir: Optional[str] = None
    checkpoint_db: Optional[str] = None

    def __post_init__(self):
        if not self.reports_dir:
            self.reports_dir = str(Path(self.data_dir) / "task-reports")
        if not self.checkpoint_db:
            self.checkpoint_db = str(Path(self.data_dir) / "checkpoints.db")

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).resolve()

    @property
    def reports_path(self) -> Path:
        return Path(self.reports_dir).resolve()

    @classmethod
    def from_env(cls, prefix: str = "ENGINE_") -> "StorageConfig":
        return cls(
            data_dir=os.getenv(f"{prefix}DATA_DIR", "./data"),
            reports_dir=os.getenv(f"{prefix}REPORTS_DIR"),
            checkpoint_db=os.getenv(f"{prefix}CHECKPOINT_DB"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_dir": str(self.data_path),
            "reports_dir": str(self.reports_path),
            "checkpoint_db": self.checkpoint_db,
        }


@dataclass
class QueueConfig:
    """
    Retry, dead-letter and stall defaults. The settings collection may override
    each value per task; all values are clamped to their documented ranges.

    Attributes:
        default_max_attempts: Attempts before dead-lettering (1-20)
        retry_backoff_sec: Base backoff in seconds, doubled per attempt (1-3600)
        stall_timeout_min: Minutes without progress before a running task is stalled (5-1440)
        kick_delay_sec: Delay between enqueue and the worker starting
    """
    default_max_attempts: int = 3
    retry_backoff_sec: int = 30
    stall_timeout_min: int = 45
    kick_delay_sec: float = 2.0

    def __post_init__(self):
        self.default_max_attempts = normalize_int(self.default_max_attempts, 3, 1, 20)
        self.retry_backoff_sec = normalize_int(self.retry_backoff_sec, 30, 1, 3600)
        self.stall_timeout_min = normalize_int(self.stall_timeout_min, 45, 5, 24 * 60)
        if self.kick_delay_sec < 0:
            raise ValueError("kick_delay_sec cannot be negative")

    @classmethod
    def from_env(cls, prefix: str = "ENGINE_") -> "QueueConfig":
        return cls(
            default_max_attempts=normalize_int(os.getenv(f"{prefix}TASK_MAX_ATTEMPTS"), 3, 1, 20),
            retry_backoff_sec=normalize_int(os.getenv(f"{prefix}TASK_RETRY_BACKOFF_SEC"), 30, 1, 3600),
            stall_timeout_min=normalize_int(os.getenv(f"{prefix}TASK_STALL_TIMEOUT_MIN"), 45, 5, 24 * 60),
            kick_delay_sec=float(os.getenv(f"{prefix}QUEUE_KICK_DELAY_SEC", "2.0")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "default_max_attempts": self.default_max_attempts,
            "retry_backoff_sec": self.retry_backoff_sec,
            "stall_timeout_min": self.stall_timeout_min,
            "kick_delay_sec": self.kick_delay_sec,
        }


@dataclass
class RuntimeLoopConfig:
    """
    Step and wall-clock bounds for the execution graph.

    Attributes:
        loop_mode: "bounded" or "ongoing"
        orchestrator_recursion_limit: Step limit in bounded mode
        ongoing_max_iterations: Step limit in ongoing mode
        ongoing_max_runtime_minutes: Wall-clock budget in ongoing mode, may be fractional (0 disables)
    """
    loop_mode: str = "bounded"
    orchestrator_recursion_limit: int = 80
    ongoing_max_iterations: int = 250
    ongoing_max_runtime_minutes: float = 60

    def __post_init__(self):
        if self.loop_mode not in ("bounded", "ongoing"):
            raise ValueError(f"loop_mode must be 'bounded' or 'ongoing', got {self.loop_mode}")
        if self.orchestrator_recursion_limit < 1:
            raise ValueError("orchestrator_recursion_limit must be at least 1")
        if self.ongoing_max_iterations < 1:
            raise ValueError("ongoing_max_iterations must be at least 1")
        if self.ongoing_max_runtime_minutes < 0:
            raise ValueError("ongoing_max_runtime_minutes cannot be negative")

    @property
    def recursion_limit(self) -> int:
        if self.loop_mode == "ongoing":
            return self.ongoing_max_iterations
        return self.orchestrator_recursion_limit

    @property
    def timeout_seconds(self) -> Optional[float]:
        if self.loop_mode == "ongoing" and self.ongoing_max_runtime_minutes > 0:
            return self.ongoing_max_runtime_minutes * 60.0
        return None

    def with_settings(self, settings: Dict[str, Any]) -> "RuntimeLoopConfig":
        """Return a copy overridden by the user-editable settings collection."""
        mode = str(settings.get("loop_mode") or settings.get("loopMode") or self.loop_mode).strip().lower()
        return RuntimeLoopConfig(
            loop_mode="ongoing" if mode == "ongoing" else "bounded",
            orchestrator_recursion_limit=normalize_int(
                settings.get("orchestrator_loop_recursion_limit", settings.get("orchestratorLoopRecursionLimit")),
                self.orchestrator_recursion_limit, 1, 2000,
            ),
            ongoing_max_iterations=normalize_int(
                settings.get("ongoing_loop_max_iterations", settings.get("ongoingLoopMaxIterations")),
                self.ongoing_max_iterations, 1, 5000,
            ),
            ongoing_max_runtime_minutes=normalize_int(
                settings.get("ongoing_loop_max_runtime_minutes", settings.get("ongoingLoopMaxRuntimeMinutes")),
                self.ongoing_max_runtime_minutes, 0, 24 * 60,
            ),
        )

    @classmethod
    def from_env(cls, prefix: str = "ENGINE_") -> "RuntimeLoopConfig":
        return cls(
            loop_mode=os.getenv(f"{prefix}LOOP_MODE", "bounded").strip().lower(),
            orchestrator_recursion_limit=int(os.getenv(f"{prefix}ORCHESTRATOR_RECURSION_LIMIT", "80")),
            ongoing_max_iterations=int(os.getenv(f"{prefix}ONGOING_MAX_ITERATIONS", "250")),
            ongoing_max_runtime_minutes=float(os.getenv(f"{prefix}ONGOING_MAX_RUNTIME_MINUTES", "60")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loop_mode": self.loop_mode,
            "orchestrator_recursion_limit": self.orchestrator_recursion_limit,
            "ongoing_max_iterations": self.ongoing_max_iterations,
            "ongoing_max_runtime_minutes": self.ongoing_max_runtime_minutes,
        }


@dataclass
class EngineConfig:
    """
    Top-level configuration for the orchestration engine.

    Example:
        export ENGINE_DATA_DIR=./data
        export ENGINE_TASK_MAX_ATTEMPTS=5
        export ENGINE_LOOP_MODE=ongoing
        config = EngineConfig.from_env()
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    runtime: RuntimeLoopConfig = field(default_factory=RuntimeLoopConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    access_key: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.storage, dict):
            self.storage = StorageConfig(**self.storage)
        if isinstance(self.queue, dict):
            self.queue = QueueConfig(**self.queue)
        if isinstance(self.runtime, dict):
            self.runtime = RuntimeLoopConfig(**self.runtime)
        if isinstance(self.llm, dict):
            self.llm = LLMConfig(**self.llm)

    @classmethod
    def from_env(cls, prefix: str = "ENGINE_") -> "EngineConfig":
        return cls(
            storage=StorageConfig.from_env(prefix),
            queue=QueueConfig.from_env(prefix),
            runtime=RuntimeLoopConfig.from_env(prefix),
            llm=LLMConfig(
                provider=os.getenv(f"{prefix}LLM_PROVIDER", "anthropic"),
                model_name=os.getenv(f"{prefix}LLM_MODEL", "claude-sonnet-4-20250514"),
                api_key=os.getenv("LLM_API_KEY"),
                base_url=os.getenv("LLM_API_BASE_URL"),
                temperature=float(os.getenv(f"{prefix}LLM_TEMPERATURE", "0.2")),
            ),
            access_key=os.getenv(f"{prefix}ACCESS_KEY") or None,
        )

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "EngineConfig":
        data = dict(config_dict)
        return cls(
            storage=data.pop("storage", {}) or {},
            queue=data.pop("queue", {}) or {},
            runtime=data.pop("runtime", {}) or {},
            llm=data.pop("llm", {}) or {},
            **data,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "storage": self.storage.to_dict(),
            "queue": self.queue.to_dict(),
            "runtime": self.runtime.to_dict(),
            "llm": self.llm.to_dict(),
        }
