"""YouTube Data API v3 client.

Fetches a channel's uploads page by page (``channels`` → uploads playlist →
``playlistItems`` → ``videos``) and the channel's aggregate statistics. Every
HTTP request, retries included, is reported with ``report_attempt`` so the
ingestion pipeline can charge the ledger for what was actually sent.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from ..config import YouTubeSettings
from ..errors import (
    ConfigurationError,
    ProviderError,
    ProviderValidationError,
    QuotaExceededError,
    TransientProviderError,
)
from ..logging import get_logger
from ..quota.policy import Operation, Provider
from .base import (
    PageRequest,
    ProviderItem,
    ProviderPage,
    SourceInfo,
    report_attempt,
    to_naive_utc,
)

logger = get_logger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

# Error reasons YouTube reports with a 403 when the project's quota is spent
QUOTA_REASONS = frozenset({"quotaExceeded", "dailyLimitExceeded", "rateLimitExceeded"})

# Quota operation billed for each endpoint
ENDPOINT_OPERATIONS = {
    "channels": Operation.CHANNEL_INFO,
    "playlistItems": Operation.PLAYLIST_ITEMS,
    "videos": Operation.VIDEO_DETAILS,
}

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


def parse_duration(iso_duration: str | None) -> int:
    """Convert an ISO 8601 duration (``PT4M13S``) to seconds.

    Unparseable values, such as ``P0D`` for upcoming streams, yield 0.
    """
    if not iso_duration:
        return 0
    match = _DURATION_RE.match(iso_duration)
    if not match:
        return 0
    parts = {k: int(v) for k, v in match.groupdict(default="0").items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def _error_reasons(payload: Any) -> set[str]:
    try:
        return {e.get("reason", "") for e in payload["error"]["errors"]}
    except (KeyError, TypeError, AttributeError):
        return set()


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class YouTubeClient:
    """Async client for the subset of the YouTube Data API used by sync."""

    provider = Provider.YOUTUBE

    def __init__(
        self,
        settings: YouTubeSettings,
        http_client: httpx.AsyncClient | None = None,
        retry_wait: wait_base | None = None,
    ):
        """Initialize the client.

        Args:
            settings: API key, base URL, timeout and retry settings.
            http_client: Pre-built client, mainly for tests. Its base URL and
                timeout are used as-is.
            retry_wait: Wait strategy between transient-error retries.
        """
        if not settings.api_key:
            raise ConfigurationError("YouTube API key is required (YOUTUBE_API_KEY)")

        self._api_key = settings.api_key
        self._max_retries = settings.max_retries
        self._retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=8)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
        )
        # Uploads playlists never change for a channel
        self._uploads: dict[str, str] = {}

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_source_items(self, external_id: str, request: PageRequest) -> ProviderPage:
        """Fetch one page of a channel's uploads with full video details.

        When ``request.published_after`` is set, only videos published strictly
        after it are returned; the uploads playlist is newest-first, so the
        continuation token is dropped once an older video is seen.
        """
        logger.debug(
            "Fetching YouTube channel videos",
            channel_id=external_id,
            max_results=request.max_results,
            has_page_token=request.page_token is not None,
        )

        playlist_id = await self.get_uploads_playlist_id(external_id)
        if not playlist_id:
            return ProviderPage(items=[], total_results=0)

        params: dict[str, Any] = {
            "playlistId": playlist_id,
            "part": "snippet,contentDetails",
            "maxResults": request.max_results,
        }
        if request.page_token:
            params["pageToken"] = request.page_token

        playlist = await self._get("playlistItems", params)
        try:
            video_ids = [
                item["contentDetails"]["videoId"]
                for item in playlist.get("items", [])
                if item.get("contentDetails", {}).get("videoId")
            ]
            next_page_token = playlist.get("nextPageToken")
            total_results = _to_int(playlist.get("pageInfo", {}).get("totalResults"))
        except (KeyError, TypeError, AttributeError) as e:
            raise ProviderValidationError(f"Malformed playlistItems response: {e}") from e

        if not video_ids:
            return ProviderPage(items=[], next_page_token=next_page_token, total_results=total_results)

        details = await self._get(
            "videos",
            {"id": ",".join(video_ids), "part": "snippet,statistics,contentDetails"},
        )
        items = [self._parse_video(raw) for raw in details.get("items", [])]

        if request.published_after is not None:
            fresh = [i for i in items if to_naive_utc(i.published_at) > request.published_after]
            if len(fresh) < len(items):
                next_page_token = None
            items = fresh

        logger.debug("YouTube channel videos fetched", channel_id=external_id, video_count=len(items))
        return ProviderPage(items=items, next_page_token=next_page_token, total_results=total_results)

    async def get_source_info(self, external_id: str) -> SourceInfo | None:
        """Fetch subscriber, video and view counts for a channel."""
        payload = await self._get("channels", {"id": external_id, "part": "statistics"})
        items = payload.get("items") or []
        if not items:
            logger.warning("YouTube channel not found", channel_id=external_id)
            return None

        stats = items[0].get("statistics") or {}
        return SourceInfo(
            follower_count=_to_int(stats.get("subscriberCount")),
            item_count=_to_int(stats.get("videoCount")),
            total_views=_to_int(stats.get("viewCount")),
        )

    async def get_uploads_playlist_id(self, channel_id: str) -> str | None:
        """Resolve the channel's uploads playlist, once per channel."""
        if channel_id in self._uploads:
            return self._uploads[channel_id]

        payload = await self._get("channels", {"id": channel_id, "part": "contentDetails"})
        items = payload.get("items") or []
        if not items:
            logger.warning("YouTube channel content not found", channel_id=channel_id)
            return None
        try:
            playlist_id = items[0]["contentDetails"]["relatedPlaylists"]["uploads"] or None
        except (KeyError, TypeError) as e:
            raise ProviderValidationError(f"Malformed channels response: {e}") from e
        if playlist_id:
            self._uploads[channel_id] = playlist_id
        return playlist_id

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_video(self, raw: dict[str, Any]) -> ProviderItem:
        try:
            snippet = raw["snippet"]
            thumbnails = snippet.get("thumbnails") or {}
            statistics = raw.get("statistics") or {}
            return ProviderItem(
                id=raw["id"],
                title=snippet["title"],
                description=snippet.get("description") or None,
                published_at=snippet["publishedAt"],
                channel_id=snippet.get("channelId"),
                channel_title=snippet.get("channelTitle"),
                thumbnails={size: (thumbnails.get(size) or {}).get("url") for size in
                            ("default", "medium", "high", "standard", "maxres")},
                statistics={
                    "view_count": _to_int(statistics.get("viewCount")),
                    "like_count": _to_int(statistics.get("likeCount")),
                    "comment_count": _to_int(statistics.get("commentCount")),
                },
                duration_seconds=parse_duration((raw.get("contentDetails") or {}).get("duration")),
                tags=snippet.get("tags") or [],
                category_id=snippet.get("categoryId"),
                live_broadcast_content=snippet.get("liveBroadcastContent"),
                default_language=snippet.get("defaultLanguage"),
                url=WATCH_URL.format(video_id=raw["id"]),
            )
        except (KeyError, TypeError, ValidationError) as e:
            logger.error("YouTube video data validation failed", video_id=raw.get("id"), error=str(e))
            raise ProviderValidationError(f"Invalid video payload: {e}") from e

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET with retries on transient failures."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception_type(TransientProviderError),
            reraise=True,
        )
        return await retrying(self._request, path, params)

    async def _request(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        operation = ENDPOINT_OPERATIONS.get(path, Operation.CHANNEL_INFO)
        try:
            payload = await self._send(path, params)
        except Exception as e:
            report_attempt(
                operation,
                path,
                status_code=getattr(e, "status_code", None),
                error=str(e) or type(e).__name__,
            )
            raise
        report_attempt(operation, path, status_code=200)
        return payload

    async def _send(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._http.get(path, params={**params, "key": self._api_key})
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"YouTube API timeout on {path}") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"YouTube API transport error on {path}: {e}") from e

        if response.status_code >= 400:
            self._raise_for_status(path, response)

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderValidationError(f"YouTube API returned non-JSON body on {path}") from e
        if not isinstance(payload, dict):
            raise ProviderValidationError(f"YouTube API returned unexpected body on {path}")
        return payload

    def _raise_for_status(self, path: str, response: httpx.Response) -> None:
        status = response.status_code
        try:
            reasons = _error_reasons(response.json())
        except ValueError:
            reasons = set()

        if status == 403 and reasons & QUOTA_REASONS:
            raise QuotaExceededError(
                "YouTube API quota exceeded",
                provider=self.provider.value,
            )
        if status == 429 or status >= 500:
            raise TransientProviderError(
                f"YouTube API returned {status} on {path}",
                status_code=status,
            )
        raise ProviderError(
            f"YouTube API returned {status} on {path}: {', '.join(sorted(reasons)) or 'no reason'}",
            status_code=status,
        )
