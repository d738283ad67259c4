from __future__ import annotations

import logging
from typing import Any, Callable

import requests

from studio_sync.domain.models import RemoteConfig, SyncAction, SyncResult
from studio_sync.domain.ports import RemoteSyncPort
from studio_sync.infrastructure.remote_errors import (
    extract_error_message,
    is_application_rejection,
    is_retryable_exception,
    is_retryable_status,
    is_unreachable_exception,
)

logger = logging.getLogger(__name__)

USER_AGENT = "StudioSync/1.0"
NOT_CONFIGURED_MESSAGE = "Remote sync is not configured."


class RemoteSyncBridge(RemoteSyncPort):
    """Sends one queued mutation to the remote `sync` endpoint.

    The request body is `{"action", "entity", "data"}`. `submit` never raises:
    transport errors, HTTP errors and application-level rejections all come
    back as a failed `SyncResult` with a flat message and a retry hint.
    """

    def __init__(
        self,
        config_provider: Callable[[], RemoteConfig | None],
        *,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self._config_provider = config_provider
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def submit(self, action: SyncAction | str, entity_type: str, payload: dict[str, Any]) -> SyncResult:
        config = self._config_provider()
        if config is None or not config.remote_url:
            return SyncResult.failure(NOT_CONFIGURED_MESSAGE, retryable=True, unreachable=True)

        body = {"action": SyncAction(action).value, "entity": entity_type, "data": payload}
        try:
            response = self.session.post(
                config.remote_url,
                json=body,
                headers=self._headers(config),
                timeout=self.timeout_seconds,
            )
        except requests.exceptions.RequestException as exc:
            retryable = is_retryable_exception(exc)
            message = extract_error_message(None, exc)
            logger.warning(
                "Remote sync transport error",
                extra={"extra": {"action": body["action"], "entity": entity_type, "retryable": retryable}},
            )
            return SyncResult.failure(message, retryable=retryable, unreachable=is_unreachable_exception(exc))

        return self._to_result(response)

    def _headers(self, config: RemoteConfig) -> dict[str, str]:
        headers = {"X-Device-Id": config.device_id}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return headers

    @staticmethod
    def _to_result(response: requests.Response) -> SyncResult:
        status_code = response.status_code
        if status_code >= 400:
            return SyncResult.failure(
                extract_error_message(response),
                retryable=is_retryable_status(status_code),
                status_code=status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if is_application_rejection(data):
            return SyncResult.failure(extract_error_message(response), retryable=False, status_code=status_code)
        if isinstance(data, dict) and "data" in data:
            data = data["data"]
        return SyncResult.ok(data, status_code=status_code)
