from __future__ import annotations

import json
from pathlib import Path

from studio_sync.domain.models import RemoteConfig
from studio_sync.infrastructure import local_config
from studio_sync.infrastructure.local_config import RemoteConfigStore


def test_resolve_appdata_dir_prefers_studio_sync_home(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("STUDIO_SYNC_HOME", str(tmp_path / "home"))

    assert local_config.resolve_appdata_dir() == tmp_path / "home" / "StudioSync"


def test_resolve_appdata_dir_falls_back_to_user_share(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("STUDIO_SYNC_HOME", raising=False)
    monkeypatch.delenv("LOCALAPPDATA", raising=False)
    monkeypatch.setattr(local_config.Path, "home", lambda: tmp_path)

    assert local_config.resolve_appdata_dir() == tmp_path / ".local" / "share" / "StudioSync"


def test_load_returns_none_without_file_or_with_invalid_json(tmp_path: Path) -> None:
    store = RemoteConfigStore(base_dir=tmp_path)
    assert store.load() is None

    (tmp_path / "config.json").write_text("{ broken", encoding="utf-8")
    assert store.load() is None


def test_load_generates_and_persists_device_id(tmp_path: Path) -> None:
    store = RemoteConfigStore(base_dir=tmp_path)
    (tmp_path / "config.json").write_text(
        json.dumps({"remote_url": "https://sync.example.test", "api_key": "k"}),
        encoding="utf-8",
    )

    config = store.load()

    assert config is not None
    assert config.device_id
    assert config.user_id == "local"
    persisted = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert persisted["device_id"] == config.device_id
    assert store.load().device_id == config.device_id


def test_config_without_remote_url_is_not_configured(tmp_path: Path) -> None:
    store = RemoteConfigStore(base_dir=tmp_path)
    (tmp_path / "config.json").write_text(json.dumps({"api_key": "k"}), encoding="utf-8")

    assert store.load() is None


def test_save_round_trip(tmp_path: Path) -> None:
    store = RemoteConfigStore(base_dir=tmp_path / "nested")

    saved = store.save(RemoteConfig(remote_url="https://sync.example.test", api_key="k", device_id="", user_id="u-7"))

    assert saved.device_id
    assert store.load() == saved
