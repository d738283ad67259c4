from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path

from studio_sync.domain.models import RemoteConfig
from studio_sync.domain.ports import RemoteConfigStorePort

logger = logging.getLogger(__name__)


def resolve_appdata_dir() -> Path:
    env_dir = os.environ.get("STUDIO_SYNC_HOME") or os.environ.get("LOCALAPPDATA")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / "StudioSync"


class RemoteConfigStore(RemoteConfigStorePort):
    """Reads and writes the remote endpoint settings in `config.json`.

    A device id is minted on first read and persisted, so the same install
    always identifies itself the same way to the remote side.
    """

    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / "config.json"

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> RemoteConfig | None:
        if not self._config_path.exists():
            return None
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("Could not read config.json: %s", exc)
            return None
        if not isinstance(payload, dict):
            logger.error("Ignoring config.json: expected a JSON object")
            return None
        remote_url = str(payload.get("remote_url", "")).strip()
        api_key = str(payload.get("api_key", "")).strip()
        user_id = str(payload.get("user_id", "")).strip() or "local"
        device_id = str(payload.get("device_id", "")).strip()
        if not device_id:
            device_id = self._generate_device_id()
            payload["device_id"] = device_id
            self._write_payload(payload)
        if not remote_url:
            return None
        return RemoteConfig(remote_url=remote_url, api_key=api_key, device_id=device_id, user_id=user_id)

    def save(self, config: RemoteConfig) -> RemoteConfig:
        payload = {
            "remote_url": config.remote_url,
            "api_key": config.api_key,
            "device_id": config.device_id or self._generate_device_id(),
            "user_id": config.user_id or "local",
        }
        self._write_payload(payload)
        return RemoteConfig(
            remote_url=payload["remote_url"],
            api_key=payload["api_key"],
            device_id=payload["device_id"],
            user_id=payload["user_id"],
        )

    def _write_payload(self, payload: dict[str, str]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _generate_device_id() -> str:
        return str(uuid.uuid4())
