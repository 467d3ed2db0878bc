"""Model capability profiles and the registry that serves them."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    LIGHT = "light"
    THOROUGH = "thorough"


class TaskKind(str, Enum):
    EXTRACTION = "extraction"
    SOLUTION = "solution"
    DEBUG = "debug"


@dataclass(frozen=True)
class SamplingParams:
    temperature: float = 0.2
    top_k: int | None = None
    top_p: float | None = None


@dataclass(frozen=True)
class ModelProfile:
    """Capability envelope for one provider model."""

    name: str
    provider: str
    max_input_tokens: int
    max_output_tokens: int
    max_images: int
    tier: Tier
    sampling: SamplingParams = field(default_factory=SamplingParams)

    @property
    def is_light(self) -> bool:
        return self.tier is Tier.LIGHT

    @property
    def timeout_sec(self) -> int:
        # Light models answer faster; give thorough ones room for long outputs.
        return 60 if self.is_light else 120


class ModelRegistry:
    """Static lookup table of model profiles.

    Unknown names resolve to the default profile. That is a routing decision,
    not an error, so callers never have to handle a missing model.
    """

    def __init__(
        self,
        profiles: Iterable[ModelProfile],
        *,
        default_name: str,
        fallback_chains: dict[str, tuple[str, ...]] | None = None,
    ) -> None:
        self._profiles: dict[str, ModelProfile] = {}
        for item in profiles:
            self._profiles[item.name] = item
        if default_name not in self._profiles:
            raise ValueError(f"Default profile {default_name!r} is not registered")
        self.default_name = default_name
        self._chains = {
            provider: tuple(name for name in chain if name in self._profiles)
            for provider, chain in (fallback_chains or {}).items()
        }

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    @property
    def default(self) -> ModelProfile:
        return self._profiles[self.default_name]

    def names(self) -> list[str]:
        return list(self._profiles)

    def profiles(self) -> list[ModelProfile]:
        return list(self._profiles.values())

    def is_registered(self, name: str | None) -> bool:
        return bool(name) and name in self._profiles

    def profile(self, name: str | None) -> ModelProfile:
        if name and name in self._profiles:
            return self._profiles[name]
        logger.debug("Unknown model %r, using default profile %s", name, self.default_name)
        return self.default

    def for_provider(self, provider: str) -> list[ModelProfile]:
        return [p for p in self._profiles.values() if p.provider == provider]

    def providers(self) -> set[str]:
        return {p.provider for p in self._profiles.values()}

    def restricted_to(self, providers: Iterable[str]) -> ModelRegistry:
        """Registry view limited to providers that actually have a client."""

        allowed = set(providers)
        kept = [p for p in self._profiles.values() if p.provider in allowed]
        if not kept:
            raise ValueError(f"No registered profiles for providers {sorted(allowed)}")

        default_name = self.default_name
        if self._profiles[default_name].provider not in allowed:
            default_name = kept[0].name
            chain = self._chains.get(kept[0].provider)
            if chain:
                default_name = chain[0]

        return ModelRegistry(
            kept,
            default_name=default_name,
            fallback_chains={k: v for k, v in self._chains.items() if k in allowed},
        )

    def best_thorough(self, provider: str | None = None) -> ModelProfile | None:
        """Thorough profile with the largest attachment budget."""

        candidates = self._thorough(provider)
        if not candidates:
            return None
        # max() keeps the first of equal keys, so registration order breaks ties.
        return max(candidates, key=lambda p: (p.max_images, p.max_input_tokens))

    def thorough_accommodating(
        self,
        image_count: int,
        provider: str | None = None,
    ) -> ModelProfile | None:
        for item in self._thorough(provider):
            if item.max_images >= image_count:
                return item
        return None

    def lightest(self, provider: str | None = None) -> ModelProfile:
        pool = self.for_provider(provider) if provider else self.profiles()
        if not pool:
            pool = self.profiles()
        return min(
            pool,
            key=lambda p: (p.tier is not Tier.LIGHT, p.max_output_tokens, p.max_input_tokens),
        )

    def fallback_chain(self, provider: str) -> tuple[str, ...]:
        return self._chains.get(provider, ())

    def step_down(self, name: str) -> ModelProfile:
        """Next profile in the provider's reliability ordering."""

        current = self.profile(name)
        chain = self.fallback_chain(current.provider)
        if not chain:
            return current
        if current.name not in chain:
            return self._profiles[chain[0]]

        idx = chain.index(current.name)
        if idx + 1 < len(chain):
            return self._profiles[chain[idx + 1]]
        return current

    def _thorough(self, provider: str | None) -> list[ModelProfile]:
        thorough = [p for p in self._profiles.values() if p.tier is Tier.THOROUGH]
        if provider is None:
            return thorough
        same = [p for p in thorough if p.provider == provider]
        return same or thorough


_PRECISE = SamplingParams(temperature=0.2, top_k=40, top_p=0.95)
_PRECISE_NO_TOP_K = SamplingParams(temperature=0.2, top_k=None, top_p=0.95)

BUILTIN_PROFILES: tuple[ModelProfile, ...] = (
    ModelProfile("gemini-2.5-pro", "gemini", 1_048_576, 8192, 24, Tier.THOROUGH, _PRECISE),
    ModelProfile("gemini-2.0-flash", "gemini", 1_048_576, 8192, 8, Tier.LIGHT, _PRECISE),
    ModelProfile("gemini-1.5-pro", "gemini", 2_097_152, 8192, 16, Tier.THOROUGH, _PRECISE),
    ModelProfile("gpt-4o", "openai", 128_000, 16_384, 10, Tier.THOROUGH, _PRECISE_NO_TOP_K),
    ModelProfile("gpt-4o-mini", "openai", 128_000, 16_384, 6, Tier.LIGHT, _PRECISE_NO_TOP_K),
    ModelProfile("gpt-4-turbo", "openai", 128_000, 4096, 10, Tier.THOROUGH, _PRECISE_NO_TOP_K),
    ModelProfile(
        "claude-3-7-sonnet-20250219", "anthropic", 200_000, 8192, 20, Tier.THOROUGH, _PRECISE
    ),
    ModelProfile(
        "claude-3-5-haiku-20241022", "anthropic", 200_000, 8192, 8, Tier.LIGHT, _PRECISE
    ),
    ModelProfile(
        "claude-3-5-sonnet-20241022", "anthropic", 200_000, 8192, 20, Tier.THOROUGH, _PRECISE
    ),
    ModelProfile(
        "claude-3-opus-20240229", "anthropic", 200_000, 4096, 20, Tier.THOROUGH, _PRECISE
    ),
)

# thorough -> light -> secondary thorough, per provider.
BUILTIN_FALLBACK_CHAINS: dict[str, tuple[str, ...]] = {
    "gemini": ("gemini-2.5-pro", "gemini-2.0-flash", "gemini-1.5-pro"),
    "openai": ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo"),
    "anthropic": (
        "claude-3-7-sonnet-20250219",
        "claude-3-5-haiku-20241022",
        "claude-3-5-sonnet-20241022",
    ),
}

DEFAULT_MODEL = "gemini-2.5-pro"

DEFAULT_REGISTRY = ModelRegistry(
    BUILTIN_PROFILES,
    default_name=DEFAULT_MODEL,
    fallback_chains=BUILTIN_FALLBACK_CHAINS,
)


def profile(name: str | None) -> ModelProfile:
    """Look up a profile in the built-in registry."""

    return DEFAULT_REGISTRY.profile(name)
