"""YouTube Data API v3 client."""

from typing import Any, Dict, List, Optional

from ..errors import ProviderError
from ..logger import get_logger
from .common import ProviderClient

logger = get_logger()


class YouTubeClient(ProviderClient):
    source = "youtube"
    base_url = "https://www.googleapis.com/youtube/v3"

    def get_channel(self, channel_id: Optional[str] = None) -> Dict[str, Any]:
        params = {"part": "snippet,statistics"}
        if channel_id:
            params["id"] = channel_id
        else:
            params["mine"] = "true"
        data = self.get_json("/channels", params=params)
        items = data.get("items") or [] if isinstance(data, dict) else []
        if not items:
            raise ProviderError(f"youtube channel not found: {channel_id or 'mine'}", status=404)
        return items[0]

    def list_videos(self, channel_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        search = self.get_json(
            "/search",
            params={
                "part": "snippet",
                "channelId": channel_id,
                "order": "date",
                "type": "video",
                "maxResults": limit,
            },
        )
        ids = [
            item["id"]["videoId"]
            for item in search.get("items", [])
            if isinstance(item.get("id"), dict) and item["id"].get("videoId")
        ]
        if not ids:
            return []
        data = self.get_json("/videos", params={"part": "statistics,snippet", "id": ",".join(ids)})
        return data.get("items", []) if isinstance(data, dict) else []


def fetch_youtube_snapshot(client: YouTubeClient, channel_id: Optional[str] = None) -> Dict[str, Any]:
    """Channel statistics and recent videos. A failed video listing degrades to no videos."""
    channel = client.get_channel(channel_id)
    stats = channel.get("statistics") or {}
    snippet = channel.get("snippet") or {}
    limitations: List[str] = []

    videos: List[Dict[str, Any]] = []
    try:
        videos = client.list_videos(channel["id"])
    except ProviderError as e:
        if e.transient:
            raise
        logger.info("YouTube video listing not available", channel=channel.get("id"), status=e.status)
        limitations.append("recent videos unavailable")

    if stats.get("hiddenSubscriberCount"):
        limitations.append("subscriber count hidden")

    return {
        "channel": {
            "id": channel.get("id"),
            "title": snippet.get("title"),
            "custom_url": snippet.get("customUrl"),
            "published_at": snippet.get("publishedAt"),
        },
        "statistics": {
            "subscriber_count": int(stats.get("subscriberCount") or 0),
            "view_count": int(stats.get("viewCount") or 0),
            "video_count": int(stats.get("videoCount") or 0),
        },
        "videos": [
            {
                "id": v.get("id"),
                "published_at": (v.get("snippet") or {}).get("publishedAt"),
                "views": int((v.get("statistics") or {}).get("viewCount") or 0),
                "likes": int((v.get("statistics") or {}).get("likeCount") or 0),
                "comments": int((v.get("statistics") or {}).get("commentCount") or 0),
            }
            for v in videos
        ],
        "limitations": limitations,
    }
