from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from parley.config import RealtimeSettings, SessionConfig
from parley.errors import BootstrapError
from parley.telemetry.logging import get_logger


@dataclass(frozen=True, slots=True)
class SessionGrant:
    credential: str
    model: str
    config: SessionConfig


class SessionBootstrap(Protocol):
    async def fetch(self) -> SessionGrant: ...


class SettingsBootstrap:
    """Grants a session from local configuration (API key in the environment)."""

    def __init__(self, settings: RealtimeSettings) -> None:
        self._settings = settings

    async def fetch(self) -> SessionGrant:
        api_key = (self._settings.api_key or "").strip()
        if not api_key:
            raise BootstrapError("OpenAI API key not configured")
        return SessionGrant(credential=api_key, model=self._settings.model, config=self._settings.session)


class HttpBootstrap:
    """Fetches a credential and session configuration from a token endpoint."""

    def __init__(
        self,
        url: str,
        default_model: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._default_model = default_model
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
        self._logger = get_logger(__name__)

    async def fetch(self) -> SessionGrant:
        try:
            resp = await self._client.post(self._url)
        except httpx.HTTPError as exc:
            raise BootstrapError(f"session endpoint unreachable: {exc}") from exc
        try:
            data: Any = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise BootstrapError(f"session endpoint returned status {resp.status_code} without a JSON object")
        if resp.is_error or data.get("error"):
            raise BootstrapError(str(data.get("error") or f"Failed to create session ({resp.status_code})"))

        credential = _credential(data)
        if not credential:
            raise BootstrapError("session endpoint returned no credential")
        try:
            config = SessionConfig.model_validate(data.get("config") or {})
        except ValidationError as exc:
            raise BootstrapError(f"invalid session configuration: {exc}") from exc
        model = data.get("model") if isinstance(data.get("model"), str) else self._default_model
        self._logger.info("bootstrap.session.granted", model=model)
        return SessionGrant(credential=credential, model=model, config=config)

    async def aclose(self) -> None:
        await self._client.aclose()


def _credential(data: dict[str, Any]) -> str | None:
    for key in ("apiKey", "api_key", "token"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    secret = data.get("client_secret")
    if isinstance(secret, dict) and isinstance(secret.get("value"), str):
        return secret["value"].strip() or None
    return None


def bootstrap_from_settings(settings: RealtimeSettings) -> SessionBootstrap:
    if settings.bootstrap_url:
        return HttpBootstrap(settings.bootstrap_url, default_model=settings.model)
    return SettingsBootstrap(settings)


__all__ = ["HttpBootstrap", "SessionBootstrap", "SessionGrant", "SettingsBootstrap", "bootstrap_from_settings"]
