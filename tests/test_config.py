"""
Unit tests for engine configuration.
"""

import os
import unittest
from unittest import mock

from swarm_engine.config import EngineConfig, EnvConfig, LLMConfig, QueueConfig, RuntimeLoopConfig, normalize_int


class TestNormalizeInt(unittest.TestCase):

    def test_clamps_and_parses(self):
        self.assertEqual(normalize_int(50, 3, 1, 20), 20)
        self.assertEqual(normalize_int(0, 3, 1, 20), 1)
        self.assertEqual(normalize_int(" 7 ", 3, 1, 20), 7)
        self.assertEqual(normalize_int(4.9, 3, 1, 20), 4)

    def test_fallback_for_unusable_values(self):
        for value in (None, "abc", True, [], float("nan")):
            self.assertEqual(normalize_int(value, 3, 1, 20), 3)


class TestEnvConfig(unittest.TestCase):

    def test_typed_getters(self):
        env = {"ENGINE_FLAG": "yes", "ENGINE_COUNT": "12", "ENGINE_BAD_COUNT": "twelve"}
        with mock.patch.dict(os.environ, env):
            self.assertTrue(EnvConfig.get_bool("ENGINE_FLAG"))
            self.assertEqual(EnvConfig.get_int("ENGINE_COUNT"), 12)
            self.assertEqual(EnvConfig.get_int("ENGINE_BAD_COUNT", 3), 3)
            self.assertEqual(EnvConfig.get("ENGINE_MISSING", "fallback"), "fallback")


class TestQueueConfig(unittest.TestCase):

    def test_defaults(self):
        config = QueueConfig()
        self.assertEqual(
            (config.default_max_attempts, config.retry_backoff_sec, config.stall_timeout_min),
            (3, 30, 45),
        )

    def test_values_are_clamped(self):
        config = QueueConfig(default_max_attempts=99, retry_backoff_sec=0, stall_timeout_min=1)
        self.assertEqual(config.default_max_attempts, 20)
        self.assertEqual(config.retry_backoff_sec, 1)
        self.assertEqual(config.stall_timeout_min, 5)

    def test_negative_kick_delay_rejected(self):
        with self.assertRaises(ValueError):
            QueueConfig(kick_delay_sec=-1)


class TestRuntimeLoopConfig(unittest.TestCase):

    def test_bounded_mode(self):
        config = RuntimeLoopConfig()
        self.assertEqual(config.recursion_limit, 80)
        self.assertIsNone(config.timeout_seconds)

    def test_settings_switch_to_ongoing(self):
        config = RuntimeLoopConfig().with_settings({
            "loopMode": "ONGOING",
            "ongoing_loop_max_iterations": "300",
            "ongoing_loop_max_runtime_minutes": 2,
        })
        self.assertEqual(config.recursion_limit, 300)
        self.assertEqual(config.timeout_seconds, 120.0)

    def test_fractional_runtime_budget(self):
        config = RuntimeLoopConfig(loop_mode="ongoing", ongoing_max_runtime_minutes=0.5)
        self.assertEqual(config.timeout_seconds, 30.0)
        self.assertEqual(config.with_settings({}).timeout_seconds, 30.0)

    def test_from_env_reads_fractional_minutes(self):
        with mock.patch.dict(os.environ, {"ENGINE_LOOP_MODE": "ongoing", "ENGINE_ONGOING_MAX_RUNTIME_MINUTES": "1.5"}):
            config = RuntimeLoopConfig.from_env()
        self.assertEqual(config.timeout_seconds, 90.0)

    def test_unknown_mode_falls_back_to_bounded(self):
        self.assertEqual(RuntimeLoopConfig().with_settings({"loop_mode": "forever"}).loop_mode, "bounded")

    def test_invalid_mode_rejected(self):
        with self.assertRaises(ValueError):
            RuntimeLoopConfig(loop_mode="forever")


class TestEngineConfig(unittest.TestCase):

    def test_invalid_provider(self):
        with self.assertRaises(ValueError):
            LLMConfig(provider="nope")

    def test_from_dict_builds_sections(self):
        config = EngineConfig.from_dict({
            "storage": {"data_dir": "/tmp/engine"},
            "queue": {"default_max_attempts": 5},
            "access_key": "secret",
        })
        self.assertEqual(config.queue.default_max_attempts, 5)
        self.assertTrue(config.storage.reports_dir.endswith("task-reports"))
        self.assertEqual(config.access_key, "secret")
        self.assertNotIn("api_key", config.to_dict()["llm"])


if __name__ == "__main__":
    unittest.main()
