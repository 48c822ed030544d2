# -*- coding: utf-8 -*-
"""
Client secrets and flow options for the YouTube authorization flow.

- load_auth_config(secrets_path, scopes)  -> AuthConfig
- FlowOptions.from_env()                  -> FlowOptions

Env knobs (optional):
- YT_CLIENT_SECRETS="client_secret.json"
- YT_CLIENT_ID / YT_CLIENT_SECRET / YT_PROJECT_ID (used when the secrets file is absent)
- YT_SCOPES="scope.one,scope.two"
- YT_AUTH_STRATEGY="prompt" | "local"
- YT_CALLBACK_PORT, YT_CALLBACK_TIMEOUT, YT_OPEN_BROWSER, YT_APP_NAME
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from utils.env import _env, _env_bool, _env_int

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/youtube.upload"]

DEFAULT_SECRETS_FILE = "client_secret.json"
DEFAULT_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_APP_NAME = "youtube-upload"

STRATEGY_PROMPT = "prompt"
STRATEGY_LOCAL = "local"
STRATEGIES = (STRATEGY_PROMPT, STRATEGY_LOCAL)

_REQUIRED_FIELDS = ("client_id", "client_secret", "auth_uri", "token_uri")

MISSING_CLIENT_SECRETS_MESSAGE = """
Please configure OAuth 2.0
To run this tool you need to populate the client secrets file found at:
   {path}
with information from the Google Cloud Console
https://console.cloud.google.com/apis/credentials
or set YT_CLIENT_ID and YT_CLIENT_SECRET (a .env file works too).
"""


class ConfigError(RuntimeError):
    """Client secrets or options are missing or unparsable."""


@dataclass(frozen=True)
class AuthConfig:
    client_id: str
    client_secret: str
    auth_uri: str
    token_uri: str
    redirect_uris: Tuple[str, ...]
    scopes: Tuple[str, ...] = tuple(SCOPES)
    project_id: Optional[str] = None


@dataclass(frozen=True)
class FlowOptions:
    """How a missing token is acquired and where it is cached."""

    strategy: str = STRATEGY_PROMPT
    callback_host: str = "localhost"
    callback_port: Optional[int] = None
    callback_timeout: Optional[float] = None
    open_browser: bool = True
    app_name: str = DEFAULT_APP_NAME
    cache_dir: Optional[Path] = field(default=None)

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ConfigError(
                f"Unknown auth strategy {self.strategy!r}; expected one of {', '.join(STRATEGIES)}"
            )

    @classmethod
    def from_env(cls) -> "FlowOptions":
        try:
            port = _env_int("YT_CALLBACK_PORT")
            timeout = _env("YT_CALLBACK_TIMEOUT")
            return cls(
                strategy=(_env("YT_AUTH_STRATEGY", STRATEGY_PROMPT) or STRATEGY_PROMPT).lower(),
                callback_host=_env("YT_CALLBACK_HOST", "localhost") or "localhost",
                callback_port=port,
                callback_timeout=float(timeout) if timeout else None,
                open_browser=_env_bool("YT_OPEN_BROWSER", True),
                app_name=_env("YT_APP_NAME", DEFAULT_APP_NAME) or DEFAULT_APP_NAME,
            )
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc


def _configured_scopes() -> List[str]:
    raw = _env("YT_SCOPES")
    if not raw:
        return list(SCOPES)
    return [s for s in re.split(r"[\s,]+", raw) if s]


def _unwrap(data: Dict[str, Any]) -> Dict[str, Any]:
    # Console downloads nest everything under "installed" or "web".
    for key in ("installed", "web"):
        if isinstance(data.get(key), dict):
            return data[key]
    return data


def parse_client_secrets(data: Any, scopes: Optional[Sequence[str]] = None) -> AuthConfig:
    if not isinstance(data, dict):
        raise ConfigError("client secrets must be a JSON object")
    info = _unwrap(data)
    missing = [k for k in _REQUIRED_FIELDS if not info.get(k)]
    if missing:
        raise ConfigError(f"client secrets missing field(s): {', '.join(missing)}")
    redirect_uris = info.get("redirect_uris") or []
    if isinstance(redirect_uris, str):
        redirect_uris = [redirect_uris]
    if not redirect_uris:
        raise ConfigError("client secrets must list at least one redirect_uris entry")
    return AuthConfig(
        client_id=info["client_id"],
        client_secret=info["client_secret"],
        auth_uri=info["auth_uri"],
        token_uri=info["token_uri"],
        redirect_uris=tuple(redirect_uris),
        scopes=tuple(scopes or SCOPES),
        project_id=info.get("project_id"),
    )


def client_secrets_from_env() -> Optional[Dict[str, Any]]:
    cid = _env("YT_CLIENT_ID")
    csec = _env("YT_CLIENT_SECRET")
    if not (cid and csec):
        return None
    return {
        "installed": {
            "client_id": cid,
            "project_id": _env("YT_PROJECT_ID"),
            "auth_uri": DEFAULT_AUTH_URI,
            "token_uri": DEFAULT_TOKEN_URI,
            "client_secret": csec,
            "redirect_uris": ["http://localhost"],
        }
    }


def load_auth_config(secrets_path: Optional[str] = None,
                     scopes: Optional[Sequence[str]] = None) -> AuthConfig:
    path = Path(secrets_path or _env("YT_CLIENT_SECRETS", DEFAULT_SECRETS_FILE) or DEFAULT_SECRETS_FILE)
    scopes = list(scopes) if scopes else _configured_scopes()

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Unable to parse client secret file {path}: {exc}") from exc
        logger.info("Loaded client secrets from %s", path)
        return parse_client_secrets(data, scopes)

    data = client_secrets_from_env()
    if data is None:
        raise ConfigError(MISSING_CLIENT_SECRETS_MESSAGE.format(path=path.resolve()))
    logger.info("Client secrets file %s not found; using YT_CLIENT_ID/YT_CLIENT_SECRET", path)
    return parse_client_secrets(data, scopes)
