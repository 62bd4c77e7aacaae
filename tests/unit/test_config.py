"""Tests for configuration loading."""

import pytest

from caseflow.config import load_config
from caseflow.events import get_event_sink
from caseflow.events.redis import RedisEventSink
from caseflow.persistence import InMemoryInstanceStore, SQLiteInstanceStore, get_store


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
events:
  backend: redis
  redis:
    host: testhost
    port: 1234
engine:
  max_advance_attempts: 5
definitions_path: /srv/definitions
"""
    )
    monkeypatch.setenv("CASEFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("CASEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.events.backend == "redis"
    assert config.events.redis.host == "testhost"
    assert config.events.redis.port == 1234
    assert config.engine.max_advance_attempts == 5
    assert config.engine.conflict_backoff == 0.01
    assert config.definitions_path == "/srv/definitions"
    assert config.store.database_url is None


def test_missing_config_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("CASEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("CASEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.events.backend == "inmemory"
    assert config.engine.max_advance_attempts == 3


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("store:\n  database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("CASEFLOW_CONFIG", str(config_path))
    monkeypatch.setenv("CASEFLOW_DATABASE_URL", "sqlite:///from-env.db")

    assert load_config().store.database_url == "sqlite:///from-env.db"


def test_get_event_sink_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
events:
  backend: redis
  redis:
    host: confighost
    prefix: permits
"""
    )
    monkeypatch.setenv("CASEFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("CASEFLOW_EVENT_SINK", raising=False)

    sink = get_event_sink()
    assert isinstance(sink, RedisEventSink)
    assert sink.host == "confighost"
    assert sink.queue_name("ProcessCompleted") == "permits:ProcessCompleted"


def test_get_store_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setenv("CASEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("CASEFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert isinstance(get_store(), InMemoryInstanceStore)

    db_path = tmp_path / "instances.db"
    store = get_store(f"sqlite://{db_path}")
    assert isinstance(store, SQLiteInstanceStore)
    assert store.db_path == str(db_path)
    store.close()


def test_get_store_rejects_unknown_scheme(tmp_path, monkeypatch):
    monkeypatch.setenv("CASEFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    with pytest.raises(ValueError):
        get_store("mysql://localhost/cases")
