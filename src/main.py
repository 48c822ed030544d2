# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, sys

from utils.env import _env, load_env_file
from auth_config import ConfigError, FlowOptions, load_auth_config
from auth_code import AcquisitionError
from token_exchange import ExchangeError
from oauth_flow import Authorizer
from youtube_upload import parse_tags, upload_video

logger = logging.getLogger("main")

def _setup_logging() -> None:
    level = (_env("LOG_LEVEL", "INFO") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

def main() -> int:
    load_env_file()
    _setup_logging()

    try:
        config = load_auth_config()
        options = FlowOptions.from_env()
    except ConfigError as e:
        logger.error("Unable to load client configuration: %s", e)
        return 1

    print(">> Authorizing...", flush=True)
    try:
        session = Authorizer(config, options).authorize()
    except (AcquisitionError, ExchangeError) as e:
        logger.error("Authorization failed: %s", e)
        return 1

    video_path = _env("YT_VIDEO_FILE", "video.mp4") or "video.mp4"
    print(f">> Uploading {video_path}...", flush=True)
    try:
        vid = upload_video(
            session,
            video_path,
            title=_env("YT_TITLE", "Untitled") or "Untitled",
            description=_env("YT_DESCRIPTION", "") or "",
            privacy_status=(_env("YT_PRIVACY", "unlisted") or "unlisted").lower(),
            category_id=_env("YT_CATEGORY_ID", "22") or "22",
            tags=parse_tags(_env("YT_TAGS")),
        )
    except RuntimeError as e:
        logger.error("%s", e)
        return 1

    print(f"Upload successful! Video ID: {vid}", flush=True)
    print(f">> https://youtu.be/{vid}", flush=True)
    return 0

def run() -> None:
    try:
        code = main()
    except KeyboardInterrupt:
        print("\nAborted by user.", file=sys.stderr)
        code = 1
    except Exception:
        logger.exception("Fatal error")
        code = 1
    sys.exit(code)

if __name__ == "__main__":
    run()
