# -*- coding: utf-8 -*-
"""
File-backed cache for the OAuth token at ~/.credentials/<app-name>.json.

The directory is chmod 0700 and the file 0600 since the record carries a
refresh token. Writes go through a temp file and ``os.replace`` so a reader
never sees a half-written record.

There is no file locking: two processes authorizing at the same time both
write and the last one wins.
"""
from __future__ import annotations

import json
import logging
import os
import re
import stat
import tempfile
import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CREDENTIALS_DIRNAME = ".credentials"

# Go's time.Time marshals with up to nine fractional digits.
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class CacheReadError(RuntimeError):
    """Cache file absent or not a valid token record."""


class CacheWriteError(RuntimeError):
    """Token could not be persisted."""


@dataclass
class Token:
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expiry: Optional[datetime] = None
    scopes: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.expiry is not None and self.expiry.tzinfo is None:
            self.expiry = self.expiry.replace(tzinfo=timezone.utc)
        self.scopes = list(self.scopes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        if not isinstance(data, dict):
            raise ValueError("token record must be a JSON object")
        access_token = data.get("access_token")
        if not access_token or not isinstance(access_token, str):
            raise ValueError("token record has no access_token")
        scopes = data.get("scopes") or []
        if isinstance(scopes, str):
            scopes = scopes.split()
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise ValueError("scopes must be a list of strings")
        for key in ("refresh_token", "token_type"):
            if data.get(key) is not None and not isinstance(data[key], str):
                raise ValueError(f"{key} must be a string")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            token_type=data.get("token_type") or "Bearer",
            expiry=parse_expiry(data.get("expiry")),
            scopes=list(scopes),
        )


def parse_expiry(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 expiry into an aware datetime (naive means UTC)."""
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValueError(f"expiry must be a string, got {type(value).__name__}")
    text = _FRACTION_RE.sub(r"\1", value.strip())
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    # Go writes the zero time for tokens that never expire.
    if parsed.year <= 1:
        return None
    return parsed


def default_cache_path(app_name: str, home: Optional[Path] = None,
                       cache_dir: Optional[Path] = None) -> Path:
    if cache_dir is None:
        cache_dir = (Path(home) if home is not None else Path.home()) / CREDENTIALS_DIRNAME
    return Path(cache_dir) / f"{urllib.parse.quote(app_name, safe='')}.json"


class TokenCache:
    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> Token:
        """Read the cached token, raising ``CacheReadError`` on any problem."""
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError as exc:
            raise CacheReadError(f"no cached token at {self.path}") from exc
        except OSError as exc:
            raise CacheReadError(f"cannot read {self.path}: {exc}") from exc
        try:
            return Token.from_dict(json.loads(raw.decode("utf-8")))
        except (ValueError, TypeError) as exc:
            raise CacheReadError(f"invalid token record in {self.path}: {exc}") from exc

    def load(self) -> Optional[Token]:
        """Return the cached token, or None when the flow must re-authorize."""
        if not self.path.exists():
            logger.info("No cached token at %s", self.path)
            return None
        try:
            token = self.read()
        except CacheReadError as exc:
            logger.warning("Ignoring cached token: %s", exc)
            return None
        logger.info("Using cached token from %s", self.path)
        return token

    def save(self, token: Token) -> None:
        payload = json.dumps(token.to_dict(), indent=2)
        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(mode=stat.S_IRWXU, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.write("\n")
            os.chmod(tmp_name, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise CacheWriteError(f"Unable to cache oauth token at {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        logger.info("Saved credential file to %s", self.path)

    def clear(self) -> bool:
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info("Removed cached token %s", self.path)
        return True
