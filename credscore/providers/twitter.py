"""Twitter API v2 client."""

from typing import Any, Dict, List, Optional

from ..errors import ProviderError
from ..logger import get_logger
from .common import ProviderClient

logger = get_logger()

USER_FIELDS = "id,name,username,verified,verified_type,created_at,public_metrics"


class TwitterClient(ProviderClient):
    source = "twitter"
    base_url = "https://api.twitter.com/2"

    def get_user(self, username: Optional[str] = None) -> Dict[str, Any]:
        path = f"/users/by/username/{username}" if username else "/users/me"
        data = self.get_json(path, params={"user.fields": USER_FIELDS})
        return data.get("data") or {}

    def list_tweets(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        data = self.get_json(
            f"/users/{user_id}/tweets",
            params={"max_results": limit, "tweet.fields": "public_metrics,created_at"},
        )
        return data.get("data", []) if isinstance(data, dict) else []


def fetch_twitter_snapshot(client: TwitterClient, username: Optional[str] = None) -> Dict[str, Any]:
    """Profile, public metrics and recent tweets. A forbidden timeline degrades to no tweets."""
    user = client.get_user(username)
    if not user.get("id"):
        raise ProviderError(f"twitter user not found: {username or 'me'}", status=404)
    metrics = user.get("public_metrics") or {}
    limitations: List[str] = []

    tweets: List[Dict[str, Any]] = []
    try:
        tweets = client.list_tweets(user["id"])
    except ProviderError as e:
        if e.transient:
            raise
        logger.info("Twitter timeline not available", username=user.get("username"), status=e.status)
        limitations.append("recent tweets unavailable")

    verified_type = user.get("verified_type") or "none"
    return {
        "profile": {
            "id": user.get("id"),
            "username": user.get("username") or username,
            "name": user.get("name"),
            "verified": bool(user.get("verified")),
            "verified_type": verified_type,
            "created_at": user.get("created_at"),
        },
        "metrics": {
            "followers_count": int(metrics.get("followers_count") or 0),
            "following_count": int(metrics.get("following_count") or 0),
            "tweet_count": int(metrics.get("tweet_count") or 0),
            "listed_count": int(metrics.get("listed_count") or 0),
        },
        "tweets": [
            {
                "id": t.get("id"),
                "created_at": t.get("created_at"),
                "like_count": int((t.get("public_metrics") or {}).get("like_count") or 0),
                "retweet_count": int((t.get("public_metrics") or {}).get("retweet_count") or 0),
                "reply_count": int((t.get("public_metrics") or {}).get("reply_count") or 0),
                "quote_count": int((t.get("public_metrics") or {}).get("quote_count") or 0),
            }
            for t in tweets
        ],
        "limitations": limitations,
    }
