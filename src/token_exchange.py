# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests

from auth_config import AuthConfig
from token_cache import Token

logger = logging.getLogger(__name__)


class ExchangeError(RuntimeError):
    """The token endpoint did not trade the code for a token."""


def _describe_failure(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        desc = body.get("error_description")
        return f"{body['error']}: {desc}" if desc else str(body["error"])
    return (resp.text or "").strip()[:300] or resp.reason or "no body"


def token_from_response(data: Dict[str, Any], config: AuthConfig,
                        now: Optional[datetime] = None) -> Token:
    access_token = data.get("access_token")
    if not access_token:
        raise ExchangeError("token response has no access_token")
    now = now or datetime.now(timezone.utc)
    expires_in = data.get("expires_in")
    expiry = None
    if expires_in not in (None, ""):
        try:
            expiry = now + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError, OverflowError):
            logger.warning("Ignoring unusable expires_in %r", expires_in)
    scope = data.get("scope")
    scopes = scope.split() if isinstance(scope, str) and scope.strip() else list(config.scopes)
    return Token(
        access_token=access_token,
        refresh_token=data.get("refresh_token") or None,
        token_type=data.get("token_type") or "Bearer",
        expiry=expiry,
        scopes=scopes,
    )


def exchange_code(code: str, config: AuthConfig, redirect_uri: str,
                  session: Optional[requests.Session] = None, timeout: float = 30) -> Token:
    """Trade an authorization code for a token. Codes are single-use, so no retry."""
    http = session or requests
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "redirect_uri": redirect_uri,
    }
    try:
        resp = http.post(config.token_uri, data=payload,
                         headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as exc:
        raise ExchangeError(f"Unable to reach token endpoint {config.token_uri}: {exc}") from exc

    if not resp.ok:
        raise ExchangeError(
            f"Unable to retrieve token (HTTP {resp.status_code}): {_describe_failure(resp)}"
        )
    try:
        data = resp.json()
    except ValueError as exc:
        raise ExchangeError("Token endpoint returned a non-JSON body") from exc
    if not isinstance(data, dict):
        raise ExchangeError("Token endpoint returned an unexpected body")

    token = token_from_response(data, config)
    logger.info("Exchanged authorization code for a %s token", token.token_type)
    return token
