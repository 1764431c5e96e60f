"""Tests for the ``forkqueue`` CLI."""

from __future__ import annotations

import json
import os

import pytest
from typer.testing import CliRunner

from forkqueue import __version__
from forkqueue.cli.app import app
from forkqueue.cli.utils import parse_key_values, resolve_callback
from forkqueue.core.errors import CallbackResolutionError
from tests._support import process_gone, read_marker, wait_for
from tests._support.jobs import record

runner = CliRunner()

ENV = {"FORKQUEUE_LOG_LEVEL": "CRITICAL", "FORKQUEUE_SPAWN_STAGGER": "0", "FORKQUEUE_POLL_INTERVAL": "0.05"}


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"forkqueue {__version__}" in result.output


class TestRun:
    def test_run_json_summary(self, job_dir):
        result = runner.invoke(
            app,
            [
                "run", "a", "b", "c",
                "--callback", "tests._support.jobs:record",
                "--concurrency", "2",
                "--arg", f"dir={job_dir}",
                "--json",
            ],
            env=ENV,
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["jobs_total"] == 3
        assert data["succeeded"] == 3
        assert data["peak_running"] <= 2
        assert sorted(entry["job_id"] for entry in data["statuses"]) == ["a", "b", "c"]
        assert all(entry["status"] == 0 for entry in data["statuses"])

    def test_run_table_summary(self, job_dir):
        result = runner.invoke(
            app,
            ["run", "x", "--callback", "tests._support.jobs:record", "--arg", f"dir={job_dir}"],
            env=ENV,
        )
        assert result.exit_code == 0, result.output
        assert "succeeded" in result.output
        assert (job_dir / "x.ran").exists()

    def test_failing_job_exits_1(self, job_dir):
        result = runner.invoke(
            app,
            [
                "run", "a", "b",
                "--callback", "tests._support.jobs:record",
                "--arg", f"dir={job_dir}",
                "--arg", "fail=b",
                "--json",
            ],
            env=ENV,
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["success"] is False
        assert data["failed"] == 1

    def test_options_reach_workers(self, job_dir, tmp_path):
        base = tmp_path / "out"
        result = runner.invoke(
            app,
            [
                "run", "p",
                "--callback", "tests._support.jobs:probe",
                "--arg", f"dir={job_dir}",
                "--arg", "colour=blue",
                "--umask", "027",
                "--setsid",
                "--chdir", str(tmp_path / "missing"),
                "--redirect-output", str(base),
            ],
            env=ENV,
        )
        assert result.exit_code == 0, result.output
        info = read_marker(job_dir / "p.probe")
        assert info["args"] == {"colour": "blue"}
        assert info["umask"] == 0o027
        assert info["session_leader"] is True
        assert info["cwd"] == "/"
        assert (tmp_path / "out.p").exists()

    def test_unknown_callback(self):
        result = runner.invoke(app, ["run", "a", "--callback", "no_such_module_xyz:run"], env=ENV)
        assert result.exit_code == 1
        assert "Cannot import module" in result.output

    def test_invalid_umask(self):
        result = runner.invoke(
            app, ["run", "a", "--callback", "tests._support.jobs:record", "--umask", "999"], env=ENV
        )
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_malformed_arg(self):
        result = runner.invoke(
            app, ["run", "a", "--callback", "tests._support.jobs:record", "--arg", "novalue"], env=ENV
        )
        assert result.exit_code == 2

    def test_duplicate_job_ids_rejected(self, job_dir):
        result = runner.invoke(
            app,
            ["run", "a", "b", "a", "--callback", "tests._support.jobs:record", "--arg", f"dir={job_dir}"],
            env=ENV,
        )
        assert result.exit_code == 1
        assert "must be unique" in result.output
        assert list(job_dir.iterdir()) == []

    def test_settings_from_environment(self, job_dir, monkeypatch):
        calls = []
        real_fork = os.fork

        def fork_denied_once():
            calls.append(1)
            if len(calls) == 1:
                raise OSError(1, "Operation not permitted")
            return real_fork()

        monkeypatch.setattr(os, "fork", fork_denied_once)
        result = runner.invoke(
            app,
            ["run", "a", "b", "--callback", "tests._support.jobs:record", "--arg", f"dir={job_dir}", "--json"],
            env={**ENV, "FORKQUEUE_ON_SPAWN_FAILURE": "abort"},
        )
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["spawn_failures"] == ["a"]
        assert data["dispatched"] == 0
        assert not (job_dir / "b.ran").exists()


class TestDetach:
    def test_detach_dispatches_worker(self, job_dir):
        result = runner.invoke(
            app,
            ["detach", "--callback", "tests._support.jobs:probe", "--arg", f"dir={job_dir}", "--name", "bg"],
            env=ENV,
        )
        assert result.exit_code == 0, result.output
        assert "Dispatched" in result.output

        path = job_dir / "bg.probe"
        assert wait_for(path.exists)
        info = read_marker(path)
        assert info["job_id"] == "bg"
        assert info["stdout_is_devnull"] is True
        assert wait_for(lambda: process_gone(info["pid"]))
        os.waitpid(info["pid"], 0)

    @pytest.mark.parametrize(
        ("env", "expected"),
        [({}, 0o027), ({"FORKQUEUE_UMASK": "022"}, 0o022)],
    )
    def test_detach_umask_inherited_unless_configured(self, job_dir, env, expected):
        previous = os.umask(0o027)
        try:
            result = runner.invoke(
                app,
                ["detach", "--callback", "tests._support.jobs:probe", "--arg", f"dir={job_dir}"],
                env={**ENV, **env},
            )
        finally:
            os.umask(previous)
        assert result.exit_code == 0, result.output

        path = job_dir / "async.probe"
        assert wait_for(path.exists)
        info = read_marker(path)
        assert wait_for(lambda: process_gone(info["pid"]))
        os.waitpid(info["pid"], 0)
        assert info["umask"] == expected

    def test_detach_unknown_callback(self):
        result = runner.invoke(app, ["detach", "--callback", "tests._support.jobs:nope"], env=ENV)
        assert result.exit_code == 1
        assert "no attribute" in result.output


class TestUtils:
    def test_resolve_colon_and_dotted(self):
        assert resolve_callback("tests._support.jobs:record") is record
        assert resolve_callback("tests._support.jobs.record") is record

    def test_resolve_rejects_non_callable(self):
        with pytest.raises(CallbackResolutionError):
            resolve_callback("os:sep")

    def test_resolve_rejects_bare_name(self):
        with pytest.raises(CallbackResolutionError):
            resolve_callback("record")

    def test_parse_key_values(self):
        assert parse_key_values(["a=1", "b=x=y", "a=2"]) == {"a": "2", "b": "x=y"}
        assert parse_key_values(None) == {}
