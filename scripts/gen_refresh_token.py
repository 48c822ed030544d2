#!/usr/bin/env python3
"""Run the YouTube authorization flow, cache the token and print the refresh token."""
from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace

from auth_config import STRATEGIES, ConfigError, FlowOptions, SCOPES, load_auth_config
from auth_code import AcquisitionError
from oauth_flow import Authorizer
from token_exchange import ExchangeError
from utils.env import load_env_file


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Authorize the configured client, store the token under ~/.credentials "
            "and print the refresh token."
        )
    )
    parser.add_argument(
        "--client-secrets",
        "-c",
        default=None,
        help="Path to the OAuth client JSON downloaded from Google Cloud Console "
        "(defaults to YT_CLIENT_SECRETS or client_secret.json).",
    )
    parser.add_argument(
        "--scopes",
        nargs="+",
        default=None,
        help=f"OAuth scopes to request. Defaults to YT_SCOPES or {' '.join(SCOPES)}.",
    )
    parser.add_argument("--strategy", choices=STRATEGIES, default=None,
                        help="How to receive the authorization code (defaults to YT_AUTH_STRATEGY).")
    parser.add_argument("--port", type=int, default=None, help="Loopback port for --strategy local.")
    parser.add_argument("--force", action="store_true",
                        help="Discard the cached token and authorize again.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_env_file()
    logging.basicConfig(level=logging.INFO)

    try:
        config = load_auth_config(args.client_secrets, scopes=args.scopes)
        options = FlowOptions.from_env()
        if args.strategy:
            options = replace(options, strategy=args.strategy)
        if args.port is not None:
            options = replace(options, callback_port=args.port)
    except ConfigError as exc:
        raise SystemExit(str(exc))

    authorizer = Authorizer(config, options)
    if args.force:
        authorizer.cache.clear()

    try:
        authorizer.authorize()
    except (AcquisitionError, ExchangeError) as exc:
        raise SystemExit(f"Authorization failed: {exc}")

    print(f"Token cached at {authorizer.cache.path}", file=sys.stderr)
    refresh_token = authorizer.token.refresh_token if authorizer.token else None
    if not refresh_token:
        raise SystemExit(
            "No refresh_token was returned. Revoke the app's access and rerun with "
            "--force so offline access is granted again."
        )

    print(refresh_token)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nAborted by user.", file=sys.stderr)
        raise SystemExit(1)
