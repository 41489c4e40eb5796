"""Tests for settings loading, restore authentication and the command line."""

from __future__ import annotations

import asyncio
import os
import signal

import pytest

import cli
from fakes import MemoryStore
from models import RecurrenceSpec
from scheduling import APSchedulerEngine
from backup.prompts import PasswordAuthenticator, hash_password
from settings import BackupSettings, MongoSettings, Settings, get_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "BACKUP_PATH",
        "BACKUP_RETENTION",
        "BACKUP_SCHEDULE",
        "BACKUP_UTC_OFFSET",
        "MONGO_URI",
        "MONGO_HOST",
        "MONGO_PORT",
        "MONGO_USERNAME",
        "MONGO_PASSWORD",
        "MONGO_DATABASE",
        "DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_backup_settings_from_env(clean_env) -> None:
    clean_env.setenv("BACKUP_PATH", "~/backups")
    clean_env.setenv("BACKUP_RETENTION", "3")
    clean_env.setenv("BACKUP_SCHEDULE", '{"hour": 23, "minute": 30, "dayOfWeek": [4, 5]}')
    clean_env.setenv("BACKUP_UTC_OFFSET", "-3")

    settings = BackupSettings()

    assert settings.path == "~/backups"
    assert settings.retention == 3
    assert settings.schedule.hour == 23
    assert settings.schedule.day_of_week == [4, 5]
    assert settings.utc_offset == -3.0
    assert settings.list_limit == 20


def test_settings_defaults(clean_env) -> None:
    settings = Settings()

    assert settings.backup.retention == 10
    assert settings.backup.schedule is None
    assert settings.mongo.build_uri() == "mongodb://localhost:27017"


def test_mongo_uri_quotes_credentials(clean_env) -> None:
    settings = MongoSettings(host="db", username="admin", password="p@ss word", auth="admin")

    assert settings.build_uri() == "mongodb://admin:p%40ss+word@db:27017/admin"
    assert MongoSettings(uri="mongodb://other:1/x", host="db").build_uri() == "mongodb://other:1/x"


def test_password_authenticator() -> None:
    digest = hash_password("s3cret")
    supplied = iter(["s3cret", "wrong"])
    authenticator = PasswordAuthenticator(digest.upper(), supply=lambda: next(supplied))

    assert authenticator.verify() is True
    assert authenticator.verify() is False
    assert authenticator.check(None) is False


def test_password_authenticator_without_configured_digest() -> None:
    asked = []
    authenticator = PasswordAuthenticator(None, supply=lambda: asked.append(1) or "anything")

    assert authenticator.verify() is False
    assert asked == []


def test_parser_collects_filters() -> None:
    args = cli.build_parser().parse_args(
        ["--path", "/tmp/bk", "backup", "--filter", "status:paid", "--filter", "age:gte:18"]
    )

    assert args.command == "backup"
    assert args.filters == ["status:paid", "age:gte:18"]


def test_ls_lists_snapshots(clean_env, tmp_path, capsys) -> None:
    (tmp_path / "mydb-240105-031500" / "users").mkdir(parents=True)

    assert cli.main(["--path", str(tmp_path), "ls"]) == cli.EXIT_OK
    assert "Available backups" in capsys.readouterr().out


def test_restore_ls_on_empty_root(clean_env, tmp_path, capsys) -> None:
    assert cli.main(["--path", str(tmp_path), "restore", "ls"]) == cli.EXIT_OK
    assert "No snapshots" in capsys.readouterr().out


@pytest.mark.parametrize(
    "argv",
    [
        ["backup"],
        ["restore"],
        ["--path", "/tmp/bk", "schedule"],
        ["--path", "/tmp/bk", "backup", "--filter", "$where:1"],
    ],
)
def test_configuration_errors_exit_before_connecting(clean_env, argv) -> None:
    connects = []

    async def fail_connect(self):
        connects.append(self)

    clean_env.setattr(cli.MongoStore, "connect", fail_connect)

    assert cli.main(argv) == cli.EXIT_CONFIG
    assert connects == []


class _SignalledEngine(APSchedulerEngine):
    """Scheduler engine that delivers SIGTERM to the process once started."""

    instances: list["_SignalledEngine"] = []

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.started = False
        self.stopped = False
        type(self).instances.append(self)

    def start(self) -> None:
        super().start()
        self.started = True
        asyncio.get_running_loop().call_soon(os.kill, os.getpid(), signal.SIGTERM)

    def shutdown(self) -> None:
        super().shutdown()
        self.stopped = True


@pytest.mark.asyncio
async def test_schedule_stops_engine_and_closes_store_on_signal(clean_env, tmp_path) -> None:
    store = MemoryStore({"users": []}, connected=False)
    _SignalledEngine.instances = []
    clean_env.setattr(cli.MongoStore, "from_settings", classmethod(lambda cls, *args: store))
    clean_env.setattr(cli, "APSchedulerEngine", _SignalledEngine)

    args = cli.build_parser().parse_args(["--path", str(tmp_path), "schedule"])
    settings = Settings()
    backup_settings = settings.backup.model_copy(
        update={"path": str(tmp_path), "schedule": RecurrenceSpec(hour=3)}
    )

    assert await cli._dispatch(args, settings, backup_settings) == cli.EXIT_OK

    [engine] = _SignalledEngine.instances
    assert engine.started and engine.stopped
    assert not engine.scheduler.running
    assert store.closed == 1
    assert not store.is_connected
    assert list(tmp_path.iterdir()) == []
