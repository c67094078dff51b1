"""Instagram Graph API client."""

from typing import Any, Dict, List, Optional

from ..errors import ProviderError
from ..logger import get_logger
from .common import ProviderClient

logger = get_logger()

PROFILE_FIELDS = "id,username,name,biography,website,account_type,media_count"
MEDIA_FIELDS = "id,media_type,permalink,timestamp,like_count,comments_count"
INSIGHT_METRICS = "follower_count,follows_count,impressions,reach,profile_views"


class InstagramClient(ProviderClient):
    source = "instagram"
    base_url = "https://graph.instagram.com"

    def _auth(self, headers, params):
        if self.access_token:
            params["access_token"] = self.access_token

    def get_profile(self) -> Dict[str, Any]:
        return self.get_json("/me", params={"fields": PROFILE_FIELDS})

    def get_insights(self, user_id: str) -> Dict[str, Any]:
        data = self.get_json(
            f"/{user_id}/insights", params={"metric": INSIGHT_METRICS, "period": "day"}
        )
        insights = {}
        for metric in data.get("data", []) if isinstance(data, dict) else []:
            values = metric.get("values") or []
            if values and values[0].get("value") is not None:
                insights[metric.get("name")] = values[0]["value"]
        return insights

    def list_media(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        data = self.get_json(f"/{user_id}/media", params={"fields": MEDIA_FIELDS, "limit": limit})
        return data.get("data", []) if isinstance(data, dict) else []


def fetch_instagram_snapshot(client: InstagramClient, identifier: Optional[str] = None) -> Dict[str, Any]:
    """
    Profile, insights and recent media.

    Insights require a business or creator account; on personal accounts the
    call fails and audience counts are recorded as unavailable instead.
    """
    profile = client.get_profile()
    limitations: List[str] = []

    insights: Dict[str, Any] = {}
    try:
        insights = client.get_insights(profile["id"])
    except ProviderError as e:
        if e.transient:
            raise
        logger.info("Instagram insights not available", username=profile.get("username"), status=e.status)
    if not insights:
        limitations.append("insights unavailable (personal account or missing scope)")

    media = client.list_media(profile["id"])

    return {
        "profile": {
            "id": profile.get("id"),
            "username": profile.get("username") or identifier,
            "name": profile.get("name"),
            "account_type": profile.get("account_type") or "PERSONAL",
            "media_count": int(profile.get("media_count") or 0),
        },
        "insights": {
            "followers_count": insights.get("follower_count"),
            "follows_count": insights.get("follows_count"),
            "impressions": insights.get("impressions"),
            "reach": insights.get("reach"),
            "profile_views": insights.get("profile_views"),
        },
        "media": [
            {
                "id": m.get("id"),
                "media_type": m.get("media_type"),
                "timestamp": m.get("timestamp"),
                "like_count": int(m.get("like_count") or 0),
                "comments_count": int(m.get("comments_count") or 0),
            }
            for m in media
        ],
        "limitations": limitations,
    }
