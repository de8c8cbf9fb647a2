from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from signal_engine.settings import DiscourseSettings

logger = logging.getLogger(__name__)


def _headers(settings: DiscourseSettings) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    if settings.discourse_api_key:
        headers["Api-Key"] = settings.discourse_api_key
        if settings.discourse_api_username:
            headers["Api-Username"] = settings.discourse_api_username
    return headers


def _extract_actions(data: Any) -> list[dict] | None:
    # The forum returns either a bare list or {"user_actions": [...]}
    if isinstance(data, dict):
        data = data.get("user_actions")
    if not isinstance(data, list):
        return None
    return [action for action in data if isinstance(action, dict)]


async def fetch_user_activity(
    username: str,
    settings: DiscourseSettings,
    client: httpx.AsyncClient | None = None,
) -> dict[str, list[dict]] | None:
    """GET /u/<username>/activity.json.

    Returns {"actions": [...]} or None on timeout, transport error,
    non-2xx status or a malformed body. Never raises.
    """
    url = f"{settings.base_url}/u/{quote(username, safe='')}/activity.json"
    logger.info(f"[discourse] Fetching user activity from {url}")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.discourse_request_timeout_sec) as own_client:
                resp = await own_client.get(url, headers=_headers(settings))
        else:
            resp = await client.get(url, headers=_headers(settings), timeout=settings.discourse_request_timeout_sec)
    except httpx.TimeoutException as e:
        logger.error(f"[discourse] Timed out fetching activity for {username}: {e}")
        return None
    except httpx.HTTPError as e:
        logger.error(f"[discourse] Request failed for {username}: {e}")
        return None

    if not resp.is_success:
        logger.error(
            f"[discourse] Failed to fetch activity for {username}: HTTP {resp.status_code}, body={resp.text[:500]!r}"
        )
        return None

    try:
        data = resp.json()
    except ValueError as e:
        logger.error(f"[discourse] Activity response for {username} is not JSON: {e}")
        return None

    actions = _extract_actions(data)
    if actions is None:
        logger.error(f"[discourse] Unexpected activity payload type for {username}: {type(data).__name__}")
        return None
    return {"actions": actions}
