"""Tests for core.settings module.

Covers:
- ForkQueueSettings defaults
- FORKQUEUE_* environment variable override
- Octal umask parsing and field validation
"""

import os

import pytest
from pydantic import ValidationError

from forkqueue.core.settings import ForkQueueSettings, default_concurrency


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """No stray FORKQUEUE_* variables or .env file leak into the tests."""
    for key in list(os.environ):
        if key.startswith("FORKQUEUE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestForkQueueSettingsDefaults:
    def test_default_concurrency_is_cpu_count(self):
        s = ForkQueueSettings()
        assert s.concurrency == default_concurrency()
        assert s.concurrency >= 1

    def test_default_detach(self):
        s = ForkQueueSettings()
        assert s.chdir is None
        assert s.umask == 0
        assert s.setsid is False
        assert s.redirect_output is None

    def test_default_scheduling(self):
        s = ForkQueueSettings()
        assert s.poll_interval == 0.2
        assert s.spawn_stagger == 0.1
        assert s.spawn_backoff == 5.0
        assert s.spawn_retries == 10
        assert s.on_spawn_failure == "skip"

    def test_default_logging(self):
        s = ForkQueueSettings()
        assert s.log_level == "INFO"
        assert s.log_format is None


class TestForkQueueSettingsEnvOverride:
    def test_concurrency_from_env(self, monkeypatch):
        monkeypatch.setenv("FORKQUEUE_CONCURRENCY", "3")
        assert ForkQueueSettings().concurrency == 3

    def test_setsid_from_env(self, monkeypatch):
        monkeypatch.setenv("FORKQUEUE_SETSID", "true")
        assert ForkQueueSettings().setsid is True

    def test_umask_from_env_is_octal(self, monkeypatch):
        monkeypatch.setenv("FORKQUEUE_UMASK", "022")
        assert ForkQueueSettings().umask == 0o22

    def test_redirect_output_from_env(self, monkeypatch):
        monkeypatch.setenv("FORKQUEUE_REDIRECT_OUTPUT", "/var/log/jobs")
        assert ForkQueueSettings().redirect_output == "/var/log/jobs"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("FORKQUEUE_SPAWN_RETRIES=2\n")
        assert ForkQueueSettings().spawn_retries == 2

    def test_init_kwargs_beat_env(self, monkeypatch):
        monkeypatch.setenv("FORKQUEUE_CONCURRENCY", "3")
        assert ForkQueueSettings(concurrency=7).concurrency == 7


class TestForkQueueSettingsValidation:
    def test_umask_string_kwarg_is_octal(self):
        assert ForkQueueSettings(umask="077").umask == 0o77

    def test_umask_int_is_taken_as_is(self):
        assert ForkQueueSettings(umask=0o27).umask == 0o27

    @pytest.mark.parametrize("value", ["999", "0o1000", "abc"])
    def test_bad_umask_rejected(self, value):
        with pytest.raises(ValidationError):
            ForkQueueSettings(umask=value)

    def test_negative_concurrency_rejected(self):
        with pytest.raises(ValidationError):
            ForkQueueSettings(concurrency=-1)

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            ForkQueueSettings(on_spawn_failure="retry")

    def test_zero_concurrency_means_unbounded(self):
        assert ForkQueueSettings(concurrency=0).concurrency == 0
