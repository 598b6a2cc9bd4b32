"""Unit tests for the Pulse CLI."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
import re

import pytest
from typer.testing import CliRunner

from pulse import __version__
from pulse.cli.main import app
from pulse.config.loader import load_config
from pulse.config.models import PulseConfig
from pulse.events.base import EventType
from pulse.events.payloads import UserRegistrationData
from pulse.runtime import Runtime, open_runtime

runner = CliRunner()


def _clean(output: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", output)


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolated ~/.pulse and a SQLite database under tmp_path."""
    home = tmp_path / "pulse-home"
    monkeypatch.setattr("pulse.config.loader.get_config_dir", lambda: home)
    monkeypatch.setattr("pulse.cli.commands.config.get_config_dir", lambda: home)
    monkeypatch.setenv("PULSE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'pulse.db'}")
    monkeypatch.setenv("COLUMNS", "200")
    for name in ("PULSE_REDIS_URL", "PULSE_ROLLOUT_SEED"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def with_runtime(config_dir, shared_store, monkeypatch):
    """Route CLI runtimes to the in-memory shared store; return a seeding helper."""

    @asynccontextmanager
    async def fake_open_runtime(
        config: PulseConfig, *, notify: bool | None = None
    ) -> AsyncIterator[Runtime]:
        async with open_runtime(config, store=shared_store, notify=False) as runtime:
            yield runtime

    monkeypatch.setattr("pulse.cli.session.open_runtime", fake_open_runtime)

    def run(action):
        async def _run():
            async with fake_open_runtime(load_config()) as runtime:
                return await action(runtime)

        return asyncio.run(_run())

    return run


class TestMainApp:
    """Tests for the main Typer application."""

    def test_app_has_help(self) -> None:
        """--help lists every command group."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        for group in ("config", "experiments", "events", "worker"):
            assert group in result.output

    def test_app_version_option(self) -> None:
        """--version shows version information."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"Pulse version {__version__}" in _clean(result.output)

    def test_no_args_shows_help(self) -> None:
        """Running without arguments shows help."""
        result = runner.invoke(app, [])

        assert result.exit_code == 2
        assert "Pulse" in result.output


class TestConfigCommands:
    """Tests for pulse config."""

    def test_init_writes_default_config(self, config_dir: Path) -> None:
        """config init creates config.yaml once."""
        result = runner.invoke(app, ["config", "init"])

        assert result.exit_code == 0
        assert (config_dir / "config.yaml").exists()

        again = runner.invoke(app, ["config", "init"])
        assert again.exit_code == 1
        assert "already exists" in _clean(again.output)

        forced = runner.invoke(app, ["config", "init", "--overwrite"])
        assert forced.exit_code == 0

    def test_show_masks_credentials(self, config_dir, monkeypatch) -> None:
        """config show never prints connection secrets."""
        monkeypatch.setenv("PULSE_REDIS_URL", "redis://:hunter2@cache:6379/0")
        monkeypatch.setenv("PULSE_DISCORD_SECURITY_WEBHOOK", "https://discord.test/hook")

        result = runner.invoke(app, ["config", "show"])
        output = _clean(result.output)

        assert result.exit_code == 0
        assert "redis://***@cache:6379/0" in output
        assert "hunter2" not in output
        assert "discord.test" not in output
        assert "<set>" in output

    def test_invalid_config_exits(self, config_dir, tmp_path) -> None:
        """A config that fails validation exits with status 1."""
        bad = tmp_path / "bad.yaml"
        bad.write_text("bus:\n  worker_count: 0\n")

        result = runner.invoke(app, ["config", "show", "--config", str(bad)])

        assert result.exit_code == 1
        assert "Configuration error" in _clean(result.output)


class TestExperimentCommands:
    """Tests for pulse experiments."""

    def test_create_list_delete(self, with_runtime) -> None:
        """An experiment can be created, listed and deleted."""
        created = runner.invoke(app, ["experiments", "create", "Profile music", "profile_music"])
        assert created.exit_code == 0
        assert "profile_music" in _clean(created.output)

        listed = runner.invoke(app, ["experiments", "list"])
        assert listed.exit_code == 0
        assert "profile_music" in _clean(listed.output)

        deleted = runner.invoke(app, ["experiments", "delete", "profile_music", "--yes"])
        assert deleted.exit_code == 0

        empty = runner.invoke(app, ["experiments", "list"])
        assert "No experiments defined." in _clean(empty.output)

    def test_duplicate_requires_force(self, with_runtime) -> None:
        """Creating an existing experiment needs --force."""
        runner.invoke(app, ["experiments", "create", "Profile music", "profile_music"])

        duplicate = runner.invoke(app, ["experiments", "create", "Again", "profile_music"])
        forced = runner.invoke(
            app, ["experiments", "create", "Again", "profile_music", "--force"]
        )

        assert duplicate.exit_code == 1
        assert "already exists" in _clean(duplicate.output)
        assert forced.exit_code == 0

    def test_delete_unknown(self, with_runtime) -> None:
        """Deleting an unknown experiment warns."""
        result = runner.invoke(app, ["experiments", "delete", "nope", "--yes"])

        assert result.exit_code == 0
        assert "No experiment named 'nope'." in _clean(result.output)

    def test_process_without_experiments(self, with_runtime) -> None:
        """A tick with nothing to do says so."""
        result = runner.invoke(app, ["experiments", "process"])

        assert result.exit_code == 0
        assert "No experiments to process." in _clean(result.output)

    def test_initial_members_and_features(self, with_runtime) -> None:
        """Initial members see the feature; a tick reports the experiment."""

        async def seed(runtime: Runtime) -> None:
            await runtime.users.add("admin", uid=1, staff_level=4)
            for uid in range(2, 6):
                await runtime.users.add(f"user{uid}", uid=uid)

        with_runtime(seed)

        created = runner.invoke(
            app, ["experiments", "create", "Profile music", "profile_music", "--initial", "10"]
        )
        features = runner.invoke(app, ["experiments", "features", "3"])
        processed = runner.invoke(app, ["experiments", "process"])

        assert created.exit_code == 0
        assert features.exit_code == 0
        assert "profile_music" in _clean(features.output)
        assert processed.exit_code == 0
        assert "profile_music" in _clean(processed.output)

    def test_features_for_unenrolled_user(self, with_runtime) -> None:
        """A user outside every experiment gets an info message."""
        result = runner.invoke(app, ["experiments", "features", "99"])

        assert result.exit_code == 0
        assert "not in any running experiment" in _clean(result.output)


class TestEventCommands:
    """Tests for pulse events."""

    def test_unprocessed_empty(self, with_runtime) -> None:
        """No stored events prints an info message."""
        result = runner.invoke(app, ["events", "unprocessed"])

        assert result.exit_code == 0
        assert "No unprocessed events." in _clean(result.output)

    def test_list_and_ack(self, with_runtime) -> None:
        """Published events are listed until acknowledged."""

        async def publish(runtime: Runtime) -> str:
            result = await runtime.bus.publish(
                EventType.USER_REGISTERED, UserRegistrationData(uid=42, username="abc")
            )
            return result.value.id

        event_id = with_runtime(publish)

        listed = runner.invoke(app, ["events", "unprocessed", "--type", "user.registered"])
        assert listed.exit_code == 0
        assert event_id in _clean(listed.output)

        acked = runner.invoke(app, ["events", "ack", event_id])
        assert acked.exit_code == 0

        after = runner.invoke(app, ["events", "unprocessed"])
        assert "No unprocessed events." in _clean(after.output)

    def test_ack_unknown(self, with_runtime) -> None:
        """Acknowledging an unknown id exits with status 1."""
        result = runner.invoke(app, ["events", "ack", "missing"])

        assert result.exit_code == 1
        assert "No event with id 'missing'." in _clean(result.output)


class TestWorkerCommands:
    """Tests for pulse worker."""

    def test_run_once(self, with_runtime) -> None:
        """--once runs a single rollout tick and exits."""
        result = runner.invoke(app, ["worker", "run", "--once", "--replay"])

        assert result.exit_code == 0
        assert "Replayed 0 unprocessed event(s)." in _clean(result.output)
