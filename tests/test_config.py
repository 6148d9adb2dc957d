import os
import tempfile
import unittest

import tests.test_logger

from unittest import mock

from config import Config, load_env_file
from dnsservice import ConfigurationError, DnsService, LoopOptions
from tests.test_logger import LogAssertions


class ConfigTest(unittest.TestCase):
    def setUp(self):
        self._tmp_dir = tempfile.TemporaryDirectory()
        self._credentials_path = os.path.join(self._tmp_dir.name, "key.json")
        with open(self._credentials_path, "w", encoding="utf-8") as f:
            f.write("{}")
        self._missing_env_file = os.path.join(self._tmp_dir.name, "missing.env")
        LogAssertions.reset()

    def tearDown(self):
        self._tmp_dir.cleanup()

    def _environment(self, **overrides) -> dict:
        env = {
            "DYN_DNS_API_URL": "https://dyndns.example.com/update",
            "HOSTNAME": "home.example.com",
            "GOOGLE_APPLICATION_CREDENTIALS": self._credentials_path,
            "CHECK_INTERVAL_MS": "60000",
        }
        env.update(overrides)
        return {key: value for key, value in env.items() if value is not None}

    def test_GIVEN_completeEnvironment_WHEN_loading_THEN_populate(self):
        with mock.patch.dict(
            os.environ,
            self._environment(ZONE_NAME="example-com", PID_FILE_PATH="/tmp/dns.pid"),
            clear=True,
        ):
            config = Config(env_file=self._missing_env_file)
        self.assertEqual(config.api_url, "https://dyndns.example.com/update")
        self.assertEqual(config.hostname, "home.example.com")
        self.assertEqual(config.zone_name, "example-com")
        self.assertIsNone(config.zone_dns_name)
        self.assertEqual(config.pid_file_path, "/tmp/dns.pid")
        self.assertEqual(config.loop_options, LoopOptions(check_interval_ms=60000))

    def test_GIVEN_missingInterval_WHEN_loading_THEN_noLoopOptions_AND_serviceRejects(self):
        with mock.patch.dict(
            os.environ, self._environment(CHECK_INTERVAL_MS=None), clear=True
        ):
            config = Config(env_file=self._missing_env_file)
        self.assertIsNone(config.loop_options)
        LogAssertions.assert_last_error_log().has_message_containing(
            "CHECK_INTERVAL_MS environment variable is missing"
        )
        with self.assertRaises(ConfigurationError):
            DnsService(
                options=config.loop_options,
                resolver_factory=lambda: None,
                updater_factory=lambda: None,
            )

    def test_GIVEN_tooSmallInterval_WHEN_loading_THEN_serviceRejects(self):
        with mock.patch.dict(
            os.environ, self._environment(CHECK_INTERVAL_MS="999"), clear=True
        ):
            config = Config(env_file=self._missing_env_file)
        self.assertEqual(config.loop_options.check_interval_ms, 999)
        with self.assertRaises(ConfigurationError):
            DnsService(
                options=config.loop_options,
                resolver_factory=lambda: None,
                updater_factory=lambda: None,
            )

    def test_GIVEN_nonIntegerInterval_WHEN_loading_THEN_exit(self):
        with mock.patch.dict(
            os.environ, self._environment(CHECK_INTERVAL_MS="soon"), clear=True
        ):
            with self.assertRaises(SystemExit) as ctx:
                Config(env_file=self._missing_env_file)
        self.assertEqual(ctx.exception.code, 1)

    def test_GIVEN_missingMandatorySetting_WHEN_loading_THEN_exit(self):
        for name in ["DYN_DNS_API_URL", "HOSTNAME", "GOOGLE_APPLICATION_CREDENTIALS"]:
            with self.subTest(name=name):
                with mock.patch.dict(
                    os.environ, self._environment(**{name: None}), clear=True
                ):
                    with self.assertRaises(SystemExit) as ctx:
                        Config(env_file=self._missing_env_file)
                self.assertEqual(ctx.exception.code, 1)
                LogAssertions.assert_last_error_log().has_message_containing(name)

    def test_GIVEN_missingCredentialsFile_WHEN_loading_THEN_exit(self):
        missing = os.path.join(self._tmp_dir.name, "nope.json")
        with mock.patch.dict(
            os.environ,
            self._environment(GOOGLE_APPLICATION_CREDENTIALS=missing),
            clear=True,
        ):
            with self.assertRaises(SystemExit):
                Config(env_file=self._missing_env_file)
        LogAssertions.assert_last_error_log().has_message_containing(
            "Path to Google Cloud Credentials doesn't exist"
        )

    def test_GIVEN_envFile_WHEN_loading_THEN_readSettingsFromFile(self):
        env_file = os.path.join(self._tmp_dir.name, ".env")
        with open(env_file, "w", encoding="utf-8") as f:
            f.write("CHECK_INTERVAL_MS=5000\nZONE_DNS_NAME=example.com.\n")
        with mock.patch.dict(
            os.environ, self._environment(CHECK_INTERVAL_MS=None), clear=True
        ):
            config = Config(env_file=env_file)
        self.assertEqual(config.loop_options.check_interval_ms, 5000)
        self.assertEqual(config.zone_dns_name, "example.com.")

    def test_GIVEN_envFile_WHEN_loadEnvFile_THEN_keepExistingVariables(self):
        env_file = os.path.join(self._tmp_dir.name, ".env")
        with open(env_file, "w", encoding="utf-8") as f:
            f.write("LOG_LEVEL=DEBUG\nHOSTNAME=other.example.com\n")
        with mock.patch.dict(os.environ, {"HOSTNAME": "home.example.com"}, clear=True):
            self.assertTrue(load_env_file(env_file))
            self.assertEqual(os.environ["LOG_LEVEL"], "DEBUG")
            self.assertEqual(os.environ["HOSTNAME"], "home.example.com")
        self.assertFalse(load_env_file(self._missing_env_file))
