import unittest

from snapsolve.models import (
    DEFAULT_MODEL,
    DEFAULT_REGISTRY,
    ModelProfile,
    ModelRegistry,
    Tier,
    profile,
)


def _registry() -> ModelRegistry:
    return ModelRegistry(
        [
            ModelProfile("big", "acme", 100_000, 8192, 16, Tier.THOROUGH),
            ModelProfile("small", "acme", 50_000, 4096, 4, Tier.LIGHT),
            ModelProfile("older", "acme", 80_000, 8192, 10, Tier.THOROUGH),
            ModelProfile("other-big", "globex", 100_000, 8192, 30, Tier.THOROUGH),
        ],
        default_name="big",
        fallback_chains={"acme": ("big", "small", "older")},
    )


class RegistryTests(unittest.TestCase):
    def test_unknown_name_resolves_to_default(self) -> None:
        self.assertEqual(profile("no-such-model").name, DEFAULT_MODEL)
        self.assertEqual(profile(None).name, DEFAULT_MODEL)
        self.assertFalse(DEFAULT_REGISTRY.is_registered("no-such-model"))

    def test_builtin_profiles_are_consistent(self) -> None:
        for item in DEFAULT_REGISTRY.profiles():
            self.assertGreaterEqual(item.max_images, 1, item.name)
            self.assertGreater(item.max_output_tokens, 0, item.name)
            self.assertEqual(item.timeout_sec, 60 if item.is_light else 120)

    def test_every_builtin_provider_has_a_fallback_chain(self) -> None:
        for provider in DEFAULT_REGISTRY.providers():
            chain = DEFAULT_REGISTRY.fallback_chain(provider)
            self.assertEqual(len(chain), 3, provider)
            self.assertFalse(DEFAULT_REGISTRY.profile(chain[0]).is_light)
            self.assertTrue(DEFAULT_REGISTRY.profile(chain[1]).is_light)
            self.assertFalse(DEFAULT_REGISTRY.profile(chain[2]).is_light)

    def test_default_must_be_registered(self) -> None:
        with self.assertRaises(ValueError):
            ModelRegistry([], default_name="missing")

    def test_best_thorough_prefers_same_provider(self) -> None:
        registry = _registry()
        self.assertEqual(registry.best_thorough("acme").name, "big")
        self.assertEqual(registry.best_thorough().name, "other-big")

    def test_thorough_accommodating_stays_with_requested_provider(self) -> None:
        registry = _registry()
        self.assertEqual(registry.thorough_accommodating(12, "acme").name, "big")
        self.assertIsNone(registry.thorough_accommodating(20, "acme"))

    def test_lightest_picks_light_tier(self) -> None:
        self.assertEqual(_registry().lightest("acme").name, "small")
        self.assertEqual(DEFAULT_REGISTRY.lightest("openai").name, "gpt-4o-mini")

    def test_step_down_walks_chain_and_stops_at_end(self) -> None:
        registry = _registry()
        self.assertEqual(registry.step_down("big").name, "small")
        self.assertEqual(registry.step_down("small").name, "older")
        self.assertEqual(registry.step_down("older").name, "older")

    def test_step_down_without_chain_keeps_profile(self) -> None:
        self.assertEqual(_registry().step_down("other-big").name, "other-big")

    def test_restricted_to_moves_default_to_available_provider(self) -> None:
        restricted = DEFAULT_REGISTRY.restricted_to({"openai"})
        self.assertEqual(restricted.default_name, "gpt-4o")
        self.assertEqual(restricted.providers(), {"openai"})
        self.assertEqual(restricted.profile("gemini-2.5-pro").name, "gpt-4o")

    def test_restricted_to_unknown_provider_is_an_error(self) -> None:
        with self.assertRaises(ValueError):
            DEFAULT_REGISTRY.restricted_to({"nobody"})


if __name__ == "__main__":
    unittest.main()
