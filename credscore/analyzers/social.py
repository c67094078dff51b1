"""
Social-platform analyzers.

All platforms share the same shape: an engagement rate (average interactions
per post divided by audience size, as a percentage capped at 100), a posting
regularity score from the coefficient of variation of publish gaps, and an
influence score built from a fixed per-platform point budget. The influence
score is the source sub-score.
"""

from datetime import datetime
from typing import Any, Dict, List

from .base import (
    AnalysisResult,
    collect_timestamps,
    log_points,
    parse_timestamp,
    per_week,
    regularity_score,
    round_half_up,
    round_metric,
    years_between,
)

INSTAGRAM_BUDGET = {
    "audience": 35,
    "engagement": 25,
    "ratio": 15,
    "consistency": 10,
    "account_type": 10,
    "frequency": 5,
}

TWITTER_BUDGET = {
    "audience": 35,
    "engagement": 25,
    "ratio": 15,
    "verification": 15,
    "account_age": 5,
    "listed": 5,
}

YOUTUBE_BUDGET = {
    "subscribers": 30,
    "views": 20,
    "engagement": 20,
    "consistency": 15,
    "video_count": 10,
    "views_per_subscriber": 5,
}

ACCOUNT_TYPE_POINTS = {"CREATOR": 8, "BUSINESS": 10}
VERIFICATION_POINTS = {"blue": 10, "business": 12, "government": 15}
LEGACY_VERIFIED_POINTS = 10

IDEAL_POSTS_PER_WEEK = 5


def engagement_rate(avg_interactions: float, audience: int) -> float:
    """Average interactions per post as a percentage of audience, capped at 100."""
    if audience <= 0 or avg_interactions <= 0:
        return 0.0
    return min(100.0, avg_interactions / audience * 100)


def frequency_points(posts_per_week: float, cap: float = INSTAGRAM_BUDGET["frequency"]) -> float:
    """Peaked at the ideal weekly rate, falling off linearly on both sides."""
    return max(0.0, cap - abs(posts_per_week - IDEAL_POSTS_PER_WEEK))


def _finish(platform: str, metrics: Dict[str, Any], components: Dict[str, float],
            verified: bool, limitations: List[str]) -> AnalysisResult:
    influence = min(100, round_half_up(sum(components.values())))
    metrics["platform"] = platform
    metrics["score_components"] = {k: round_metric(v) for k, v in sorted(components.items())}
    metrics["influence_score"] = influence
    metrics["limitations"] = limitations
    return AnalysisResult(metrics=metrics, subscore=influence, verified=verified, limitations=limitations)


def analyze_instagram(snapshot: Dict[str, Any], as_of: datetime) -> AnalysisResult:
    profile = snapshot.get("profile") or {}
    insights = snapshot.get("insights") or {}
    media = snapshot.get("media") or []
    limitations = list(snapshot.get("limitations") or [])

    followers = int(insights.get("followers_count") or 0)
    follows = int(insights.get("follows_count") or 0)

    posts = len(media)
    avg_likes = round_half_up(sum(m.get("like_count", 0) for m in media) / posts) if posts else 0
    avg_comments = round_half_up(sum(m.get("comments_count", 0) for m in media) / posts) if posts else 0
    avg_engagement = avg_likes + avg_comments
    stamps = collect_timestamps(m.get("timestamp") for m in media)
    frequency = round_metric(per_week(posts, stamps), 1)
    consistency = regularity_score(stamps, min_points=2)
    rate = engagement_rate(avg_engagement, followers)
    if posts == 0:
        limitations.append("no recent media")

    ratio = followers / (follows or 1)
    account_type = (profile.get("account_type") or "PERSONAL").upper()
    components = {
        "audience": log_points(followers, 7, INSTAGRAM_BUDGET["audience"]),
        "engagement": min(INSTAGRAM_BUDGET["engagement"], rate * 5),
        "ratio": log_points(ratio, 10, INSTAGRAM_BUDGET["ratio"]),
        "consistency": consistency / 100 * INSTAGRAM_BUDGET["consistency"],
        "account_type": ACCOUNT_TYPE_POINTS.get(account_type, 0),
        "frequency": frequency_points(frequency) if posts else 0.0,
    }

    post_types = {"images": 0, "videos": 0, "carousels": 0}
    for m in media:
        kind = m.get("media_type")
        if kind == "IMAGE":
            post_types["images"] += 1
        elif kind == "VIDEO":
            post_types["videos"] += 1
        elif kind == "CAROUSEL_ALBUM":
            post_types["carousels"] += 1

    metrics = {
        "username": profile.get("username"),
        "profile_url": f"https://instagram.com/{profile.get('username')}" if profile.get("username") else None,
        "account_type": account_type,
        "followers": followers,
        "following": follows,
        "media_count": int(profile.get("media_count") or 0),
        "posts_analyzed": posts,
        "avg_likes": avg_likes,
        "avg_comments": avg_comments,
        "avg_engagement": avg_engagement,
        "post_types": post_types,
        "posting_frequency": frequency,
        "consistency_score": consistency,
        "engagement_rate": round_metric(rate),
        "reach": insights.get("reach"),
        "impressions": insights.get("impressions"),
    }
    return _finish("instagram", metrics, components, account_type in ACCOUNT_TYPE_POINTS, limitations)


def _verification_points(verified: bool, verified_type: str) -> int:
    if verified_type in VERIFICATION_POINTS:
        return VERIFICATION_POINTS[verified_type]
    return LEGACY_VERIFIED_POINTS if verified else 0


def analyze_twitter(snapshot: Dict[str, Any], as_of: datetime) -> AnalysisResult:
    profile = snapshot.get("profile") or {}
    counts = snapshot.get("metrics") or {}
    tweets = snapshot.get("tweets") or []
    limitations = list(snapshot.get("limitations") or [])

    followers = int(counts.get("followers_count") or 0)
    following = int(counts.get("following_count") or 0)
    listed = int(counts.get("listed_count") or 0)

    interactions = [
        t.get("like_count", 0) + t.get("retweet_count", 0) + t.get("reply_count", 0) + t.get("quote_count", 0)
        for t in tweets
    ]
    avg_interactions = sum(interactions) / len(interactions) if interactions else 0.0
    rate = engagement_rate(avg_interactions, followers)
    if not tweets and "recent tweets unavailable" not in limitations:
        limitations.append("no recent tweets")

    created = parse_timestamp(profile.get("created_at"))
    age_years = years_between(created, as_of) if created else 0.0
    if created is None:
        limitations.append("account creation date unavailable")

    verified_type = (profile.get("verified_type") or "none").lower()
    verified = bool(profile.get("verified")) or verified_type != "none"
    ratio = followers / following if following > 0 else 0.0

    components = {
        "audience": log_points(followers, 7, TWITTER_BUDGET["audience"]),
        "engagement": min(TWITTER_BUDGET["engagement"], rate * 2.5),
        "ratio": log_points(ratio, 10, TWITTER_BUDGET["ratio"]),
        "verification": _verification_points(verified, verified_type),
        "account_age": min(TWITTER_BUDGET["account_age"], age_years),
        "listed": log_points(listed, 2, TWITTER_BUDGET["listed"]),
    }

    stamps = collect_timestamps(t.get("created_at") for t in tweets)
    metrics = {
        "username": profile.get("username"),
        "profile_url": f"https://twitter.com/{profile.get('username')}" if profile.get("username") else None,
        "followers": followers,
        "following": following,
        "tweet_count": int(counts.get("tweet_count") or 0),
        "listed_count": listed,
        "verified": verified,
        "verified_type": verified_type,
        "account_age_years": round_metric(age_years),
        "tweets_analyzed": len(tweets),
        "posting_frequency": round_metric(per_week(len(tweets), stamps), 1),
        "consistency_score": regularity_score(stamps, min_points=2),
        "engagement_rate": round_metric(rate),
    }
    return _finish("twitter", metrics, components, verified, limitations)


def analyze_youtube(snapshot: Dict[str, Any], as_of: datetime) -> AnalysisResult:
    channel = snapshot.get("channel") or {}
    stats = snapshot.get("statistics") or {}
    videos = snapshot.get("videos") or []
    limitations = list(snapshot.get("limitations") or [])

    subscribers = int(stats.get("subscriber_count") or 0)
    views = int(stats.get("view_count") or 0)
    video_count = int(stats.get("video_count") or 0)

    n = len(videos)
    avg_views = round_half_up(sum(v.get("views", 0) for v in videos) / n) if n else 0
    avg_likes = round_half_up(sum(v.get("likes", 0) for v in videos) / n) if n else 0
    avg_comments = round_half_up(sum(v.get("comments", 0) for v in videos) / n) if n else 0
    avg_engagement = avg_likes + avg_comments
    stamps = collect_timestamps(v.get("published_at") for v in videos)
    consistency = regularity_score(stamps, min_points=3)
    rate = engagement_rate(avg_engagement, subscribers)
    if n == 0 and "recent videos unavailable" not in limitations:
        limitations.append("no recent videos")

    views_per_sub = views / subscribers if subscribers > 0 else 0.0
    components = {
        "subscribers": log_points(subscribers, 6, YOUTUBE_BUDGET["subscribers"]),
        "views": log_points(views, 2, YOUTUBE_BUDGET["views"]),
        "engagement": min(YOUTUBE_BUDGET["engagement"], rate * 4),
        "consistency": consistency / 100 * YOUTUBE_BUDGET["consistency"],
        "video_count": log_points(video_count, 3, YOUTUBE_BUDGET["video_count"]),
        "views_per_subscriber": log_points(views_per_sub, 2, YOUTUBE_BUDGET["views_per_subscriber"]),
    }

    custom_url = channel.get("custom_url")
    metrics = {
        "channel_id": channel.get("id"),
        "title": channel.get("title"),
        "profile_url": f"https://youtube.com/{custom_url}" if custom_url
        else f"https://youtube.com/channel/{channel.get('id')}",
        "subscribers": subscribers,
        "followers": subscribers,
        "views": views,
        "video_count": video_count,
        "videos_analyzed": n,
        "avg_views": avg_views,
        "avg_likes": avg_likes,
        "avg_comments": avg_comments,
        "avg_engagement": avg_engagement,
        "upload_frequency_per_week": round_metric(per_week(n, stamps), 1),
        "consistency_score": consistency,
        "engagement_rate": round_metric(rate),
        "recent_videos": [
            {"id": v.get("id"), "views": v.get("views", 0), "published_at": v.get("published_at")}
            for v in videos[:10]
        ],
    }
    return _finish("youtube", metrics, components, False, limitations)
