# -*- coding: utf-8 -*-
from __future__ import annotations
import os, json, mimetypes, pathlib, logging
from typing import Optional, List, Any

from googleapiclient.discovery import build
from googleapiclient.http import MediaFileUpload
from googleapiclient.errors import HttpError
from google.auth.exceptions import GoogleAuthError, RefreshError

logger = logging.getLogger(__name__)

VALID_PRIVACY_STATUSES = ("public", "private", "unlisted")

def _dump_json(path: str, obj: Any) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)

def parse_tags(raw: Optional[str]) -> List[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]

def build_video_body(title: str, description: str, privacy_status: str = "unlisted",
                     category_id: str = "22", tags: Optional[List[str]] = None) -> dict:
    if privacy_status not in VALID_PRIVACY_STATUSES:
        logger.warning("Invalid privacy status %r, using 'unlisted'", privacy_status)
        privacy_status = "unlisted"
    body = {
        "snippet": {"title": title or "", "description": description or "", "categoryId": category_id},
        "status": {"privacyStatus": privacy_status},
    }
    # The API answers 400 when tags is present but empty.
    if tags:
        body["snippet"]["tags"] = list(tags)
    return body

def upload_video(session, video_path: str, title: str, description: str,
                 privacy_status: str = "unlisted", category_id: str = "22",
                 tags: Optional[List[str]] = None) -> str:
    """Insert one video using the credentials bound to ``session``. Returns the video id."""
    p = pathlib.Path(video_path)
    if not p.exists() or p.stat().st_size <= 0:
        raise RuntimeError(f"Error opening {video_path}: missing or empty")

    body = build_video_body(title, description, privacy_status, category_id, tags)

    logger.info("Uploading %s as %r (%s)", p, body["snippet"]["title"], body["status"]["privacyStatus"])
    try:
        yt = build("youtube", "v3", credentials=session.credentials, cache_discovery=False)
        mime, _ = mimetypes.guess_type(str(p))
        media = MediaFileUpload(str(p), mimetype=mime or "video/mp4", chunksize=-1, resumable=True)
        req = yt.videos().insert(part="snippet,status", body=body, media_body=media)
        resp = None
        while resp is None:
            status, resp = req.next_chunk()
            if status is not None:
                logger.info("[upload] %d%%", int(status.progress() * 100))
    except HttpError as e:
        raise RuntimeError(f"Error making YouTube API call: {e}") from e
    except RefreshError as e:
        raise RuntimeError(f"Cached token rejected, delete the credential file and re-run: {e}") from e
    except GoogleAuthError as e:
        raise RuntimeError(f"Authorization error during upload: {e}") from e
    except OSError as e:
        raise RuntimeError(f"Upload of {video_path} failed: {e}") from e

    _dump_json("out/youtube_response.json", resp or {})
    vid = (resp or {}).get("id")
    if not vid:
        raise RuntimeError("Video id missing from YouTube response")
    return vid
