"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SessionSettings",
    "StealthSettings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".jarvis"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_API_KEY_FIELD = "api_key_ciphertext"
_ENV_OVERRIDES: Mapping[str, str] = {
    "OPENROUTER_API_KEY": "api_key",
    "JARVIS_API_KEY": "api_key",
    "JARVIS_BASE_URL": "base_url",
    "OPENROUTER_MODEL": "model",
    "IMAGE_MODEL": "image_model",
    "SITE_URL": "site_url",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "JARVIS_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "JARVIS_REQUEST_TIMEOUT": "request_timeout",
    "JARVIS_IMAGE_TIMEOUT": "image_timeout",
}
_SESSION_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "JARVIS_MAX_HISTORY_ITEMS": "max_history_items",
    "JARVIS_MAX_RECENT_ITEMS": "max_recent_items",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


@dataclass(slots=True)
class SessionSettings:
    """Bounds applied to the in-memory conversation history."""

    max_history_items: int = 50
    max_recent_items: int = 10


@dataclass(slots=True)
class StealthSettings:
    """Overlay/stealth toggles applied when the desktop app starts."""

    enabled: bool = True
    process_title: str = "Terminal "
    click_through: bool = True


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://openrouter.ai/api/v1"
    api_key: str = ""
    model: str = "openai/gpt-3.5-turbo"
    image_model: str = "google/gemini-2.5-flash-image"
    site_url: str = "https://jarvis"
    app_title: str = "Jarvis"
    request_timeout: float = 90.0
    image_timeout: float = 60.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tool_steps: int = 10
    temperature: float | None = None
    debug_logging: bool = False
    window_width: int = 1400
    window_height: int = 900
    session: SessionSettings = field(default_factory=SessionSettings)
    stealth: StealthSettings = field(default_factory=StealthSettings)

    def gateway_headers(self) -> dict[str, str]:
        """Attribution headers sent with every gateway request."""

        headers: dict[str, str] = {}
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.app_title:
            headers["X-Title"] = self.app_title
        return headers


class SecretVault:
    """Encrypts and decrypts the API key with a Fernet key stored on disk."""

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None, apply_env: bool = True) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present.

        ``apply_env=False`` skips the environment so the result can be saved
        back without capturing per-shell values.
        """

        payload = self._read_payload()
        settings = Settings()
        if payload:
            api_key = self._decrypt_api_key(payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None))
            data = _filter_fields(payload)
            session_payload = data.get("session")
            if isinstance(session_payload, Mapping):
                data["session"] = _build_nested(SessionSettings, session_payload)
            stealth_payload = data.get("stealth")
            if isinstance(stealth_payload, Mapping):
                data["stealth"] = _build_nested(StealthSettings, stealth_payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if api_key:
                settings = replace(settings, api_key=api_key)
            LOGGER.debug("Settings loaded from %s", self._path)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        if not apply_env:
            return settings
        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        body = json.dumps(data, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> str:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return ""
        return legacy_plaintext or ""

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        session_updates: Dict[str, Any] = {}
        stealth_updates: Dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            group, _, name = key.partition(".")
            if name and group == "session":
                session_updates[name] = value
            elif name and group == "stealth":
                stealth_updates[name] = value
            elif key in allowed:
                filtered[key] = value
        if session_updates:
            filtered["session"] = _merge_nested(settings.session, session_updates)
        if stealth_updates:
            filtered["stealth"] = _merge_nested(settings.stealth, stealth_updates)
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        for env_name, field_name in _SESSION_INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[f"session.{field_name}"] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        stealth_mode = os.environ.get("STEALTH_MODE")
        if stealth_mode is not None:
            overrides["stealth.enabled"] = stealth_mode.strip().lower() not in _FALSE_VALUES
        process_title = os.environ.get("PROCESS_TITLE")
        if process_title:
            overrides["stealth.process_title"] = process_title
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _build_nested(cls: type, payload: Mapping[str, Any]) -> Any:
    allowed = {item.name for item in fields(cls)}
    try:
        return cls(**{key: value for key, value in payload.items() if key in allowed})
    except TypeError:
        return cls()


def _merge_nested(current: Any, updates: Mapping[str, Any]) -> Any:
    allowed = {item.name for item in fields(type(current))}
    unknown = sorted(set(updates) - allowed)
    if unknown:
        LOGGER.warning("Ignoring unknown %s settings: %s", type(current).__name__, unknown)
    return replace(current, **{key: value for key, value in updates.items() if key in allowed})


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
