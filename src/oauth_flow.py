# -*- coding: utf-8 -*-
"""
Authorization orchestrator: cached token or a fresh authorization-code flow,
then an AuthorizedSession bound to the token.

The cached token is used as-is, expired or not. google-auth refreshes it on
demand inside the session when a refresh token is present; that refreshed
token is not written back to the cache.
"""
from __future__ import annotations

import logging
import urllib.parse
from datetime import timezone
from typing import Callable, Optional

from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials

from auth_code import DEFAULT_CALLBACK_PORT, CallbackCodeSource, PromptCodeSource
from auth_config import STRATEGY_LOCAL, AuthConfig, FlowOptions
from token_cache import CacheWriteError, Token, TokenCache, default_cache_path
from token_exchange import exchange_code

logger = logging.getLogger(__name__)

NEED_AUTH = "need_auth"
AUTHORIZED = "authorized"

_LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "[::1]", "::1")


def _callback_port(options: FlowOptions, config: AuthConfig) -> int:
    if options.callback_port is not None:
        return options.callback_port
    for uri in config.redirect_uris:
        parsed = urllib.parse.urlparse(uri)
        if parsed.scheme == "http" and parsed.hostname in _LOOPBACK_HOSTS and parsed.port:
            return parsed.port
    return DEFAULT_CALLBACK_PORT


def code_source_for(options: FlowOptions, config: AuthConfig):
    if options.strategy == STRATEGY_LOCAL:
        return CallbackCodeSource(
            host=options.callback_host,
            port=_callback_port(options, config),
            timeout=options.callback_timeout,
            open_browser=options.open_browser,
        )
    return PromptCodeSource()


def credentials_for(token: Token, config: AuthConfig) -> Credentials:
    expiry = None
    if token.expiry is not None:
        # google-auth compares against naive UTC.
        expiry = token.expiry.astimezone(timezone.utc).replace(tzinfo=None)
    return Credentials(
        token.access_token,
        refresh_token=token.refresh_token,
        token_uri=config.token_uri,
        client_id=config.client_id,
        client_secret=config.client_secret,
        scopes=list(token.scopes or config.scopes),
        expiry=expiry,
    )


def build_authorized_session(token: Token, config: AuthConfig) -> AuthorizedSession:
    return AuthorizedSession(credentials_for(token, config))


class Authorizer:
    """Check the cache, otherwise acquire a code, exchange it and persist the token."""

    def __init__(self, config: AuthConfig, options: Optional[FlowOptions] = None,
                 cache: Optional[TokenCache] = None, code_source=None,
                 exchanger: Callable[..., Token] = exchange_code):
        self.config = config
        self.options = options or FlowOptions()
        self.cache = cache or TokenCache(
            default_cache_path(self.options.app_name, cache_dir=self.options.cache_dir)
        )
        self.code_source = code_source
        self.exchanger = exchanger
        self.state = NEED_AUTH
        self.token: Optional[Token] = None

    def _fetch_token(self) -> Token:
        source = self.code_source or code_source_for(self.options, self.config)
        print(f"Trying to get token from {'web' if isinstance(source, CallbackCodeSource) else 'prompt'}",
              flush=True)
        code = source.acquire(self.config)
        token = self.exchanger(code, self.config, redirect_uri=source.redirect_uri)
        try:
            self.cache.save(token)
        except CacheWriteError as exc:
            logger.warning("%s; continuing with the in-memory token for this run", exc)
        return token

    def authorize(self) -> AuthorizedSession:
        token = self.cache.load()
        if token is None:
            token = self._fetch_token()
        self.token = token
        self.state = AUTHORIZED
        return build_authorized_session(token, self.config)
