"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .executor import DEFAULT_MAX_ATTEMPTS
from .models import DEFAULT_REGISTRY, ModelRegistry, TaskKind

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "gemini", "anthropic")

PROVIDER_DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "gemini": "gemini-2.5-pro",
    "anthropic": "claude-3-7-sonnet-20250219",
}

API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

BASE_URL_ENV = {
    "openai": "OPENAI_BASE_URL",
    "gemini": "GEMINI_BASE_URL",
    "anthropic": "ANTHROPIC_BASE_URL",
}

DEFAULT_MEMORY_PATH = Path.home() / ".snapsolve" / "previous_solutions.json"


@dataclass(frozen=True)
class TaskConfig:
    model: str
    language: str = "python"
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    max_output_tokens: int | None = None


@dataclass(frozen=True)
class Settings:
    api_provider: str = "gemini"
    extraction_model: str = PROVIDER_DEFAULT_MODELS["gemini"]
    solution_model: str = PROVIDER_DEFAULT_MODELS["gemini"]
    debugging_model: str = PROVIDER_DEFAULT_MODELS["gemini"]
    language: str = "python"
    api_keys: dict[str, str] = field(default_factory=dict)
    base_urls: dict[str, str] = field(default_factory=dict)
    memory_path: Path = DEFAULT_MEMORY_PATH
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def model_for(self, kind: TaskKind) -> str:
        return {
            TaskKind.EXTRACTION: self.extraction_model,
            TaskKind.SOLUTION: self.solution_model,
            TaskKind.DEBUG: self.debugging_model,
        }[kind]

    def task_config(self, kind: TaskKind) -> TaskConfig:
        return TaskConfig(
            model=self.model_for(kind),
            language=self.language,
            max_attempts=self.max_attempts,
        )


def detect_provider(api_key: str) -> str:
    """Guess the provider from the key format."""

    key = api_key.strip()
    if key.startswith("sk-ant-"):
        return "anthropic"
    if key.startswith("sk-"):
        return "openai"
    return "gemini"


def sanitize_model(
    model: str | None,
    provider: str,
    registry: ModelRegistry = DEFAULT_REGISTRY,
) -> str:
    """Keep ``model`` only when it is registered for ``provider``."""

    allowed = {p.name for p in registry.for_provider(provider)}
    if model and model in allowed:
        return model

    fallback = PROVIDER_DEFAULT_MODELS.get(provider, registry.default_name)
    if model:
        logger.warning(
            "Invalid %s model specified: %s. Using default model: %s", provider, model, fallback
        )
    return fallback


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``SNAPSOLVE_*`` and provider key variables."""

    env = os.environ if environ is None else environ

    api_keys = {p: env[API_KEY_ENV[p]] for p in PROVIDERS if env.get(API_KEY_ENV[p])}
    base_urls = {p: env[BASE_URL_ENV[p]] for p in PROVIDERS if env.get(BASE_URL_ENV[p])}

    provider = (env.get("SNAPSOLVE_PROVIDER") or "").strip().lower()
    if not provider:
        generic_key = env.get("SNAPSOLVE_API_KEY")
        if generic_key:
            provider = detect_provider(generic_key)
            api_keys.setdefault(provider, generic_key)
        elif len(api_keys) == 1:
            provider = next(iter(api_keys))
        else:
            provider = "gemini"
    if provider not in PROVIDERS:
        raise ValueError(f"Unsupported provider {provider!r}; expected one of {PROVIDERS}")

    default_model = env.get("SNAPSOLVE_MODEL")
    models = {
        kind: sanitize_model(env.get(f"SNAPSOLVE_{kind.value.upper()}_MODEL") or default_model, provider)
        for kind in TaskKind
    }

    memory_path = env.get("SNAPSOLVE_MEMORY_PATH")
    return Settings(
        api_provider=provider,
        extraction_model=models[TaskKind.EXTRACTION],
        solution_model=models[TaskKind.SOLUTION],
        debugging_model=models[TaskKind.DEBUG],
        language=env.get("SNAPSOLVE_LANGUAGE") or "python",
        api_keys=api_keys,
        base_urls=base_urls,
        memory_path=Path(memory_path).expanduser() if memory_path else DEFAULT_MEMORY_PATH,
        max_attempts=max(1, _int_env(env, "SNAPSOLVE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
    )
