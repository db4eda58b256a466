import os
import unittest
from datetime import timedelta
from unittest import mock

from autoposter.config import Config, ConfigurationError
from autoposter.services import build_processor, build_translator
from fakes import FakeStore


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()
        self.assertEqual(config.batch_size, 5)
        self.assertEqual(config.lock_timeout_seconds, 300.0)
        self.assertEqual(config.rate_max_concurrent, 2)
        self.assertEqual(config.rate_min_interval_seconds, 3.0)
        self.assertEqual(config.max_retries, 3)
        self.assertFalse(config.poller_enabled)
        self.assertEqual(config.user_agent, "Mozilla/5.0 (compatible; RSSImporter/1.0)")

    def test_reads_environment(self):
        env = {
            "RSS_POLLER_ENABLED": "true",
            "RSS_BATCH_SIZE": "10",
            "RSS_LOCK_TIMEOUT_MS": "60000",
            "RSS_RATE_LIMIT_DELAY_MS": "500",
            "OPENAI_API_KEY": "sk-test",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = Config.from_env(require_ai=True)
        self.assertTrue(config.poller_enabled)
        self.assertEqual(config.batch_size, 10)
        self.assertEqual(config.lock_timeout_seconds, 60.0)
        self.assertEqual(config.rate_min_interval_seconds, 0.5)

    def test_validation_collects_all_errors(self):
        env = {"RSS_BATCH_SIZE": "0", "IMAGE_QUALITY": "150", "SCHEDULE_MIN_HOURS": "10", "SCHEDULE_MAX_HOURS": "2"}
        with mock.patch.dict(os.environ, env, clear=True):
            with self.assertRaises(ConfigurationError) as ctx:
                Config.from_env(require_ai=True)
        message = str(ctx.exception)
        self.assertIn("OPENAI_API_KEY is required", message)
        self.assertIn("RSS_BATCH_SIZE", message)
        self.assertIn("IMAGE_QUALITY", message)
        self.assertIn("SCHEDULE_MIN_HOURS", message)


class TestServiceWiring(unittest.TestCase):
    def config(self, **env):
        env.setdefault("OPENAI_API_KEY", "sk-test")
        with mock.patch.dict(os.environ, env, clear=True):
            return Config.from_env(require_ai=True)

    def test_translator_uses_configured_max_tokens(self):
        translator = build_translator(self.config(AI_MAX_TOKENS="2048", TARGET_LANGUAGE="Slovenian"))
        self.assertEqual(translator.default_max_tokens, 2048)
        self.assertEqual(translator.target_language, "Slovenian")

    def test_no_translator_without_api_key(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertIsNone(build_translator(Config.from_env()))

    def test_processor_uses_configured_lock_timeout(self):
        config = self.config(RSS_LOCK_TIMEOUT_MS="90000", RSS_MAX_RETRIES="5")
        processor = build_processor(config, FakeStore(), build_translator(config))
        self.assertEqual(processor.lock_timeout, timedelta(seconds=90))
        self.assertEqual(processor.max_retries, 5)


if __name__ == "__main__":
    unittest.main()
