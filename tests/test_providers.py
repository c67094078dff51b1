"""
Tests for provider clients and snapshot fetching.
"""

import pytest
import requests

from credscore.errors import ProviderError
from credscore.providers import fetch_snapshot
from credscore.providers.github import GitHubClient, fetch_github_snapshot
from credscore.providers.instagram import InstagramClient, fetch_instagram_snapshot
from credscore.providers.twitter import TwitterClient, fetch_twitter_snapshot
from credscore.providers.youtube import YouTubeClient, fetch_youtube_snapshot

from conftest import GITHUB_API, FakeHTTP, FakeResponse

TWITTER_API = "https://api.twitter.com/2"
YOUTUBE_API = "https://www.googleapis.com/youtube/v3"
INSTAGRAM_API = "https://graph.instagram.com"


class TestProviderClient:
    """Shared HTTP behavior, exercised through the GitHub client."""

    def test_bearer_auth_header(self, github_http):
        GitHubClient("secret", session=github_http).get_user("octocat")

        url, request = github_http.calls[0]
        assert url == f"{GITHUB_API}/users/octocat"
        assert request["headers"]["Authorization"] == "Bearer secret"
        assert request["headers"]["Accept"] == "application/vnd.github+json"

    def test_no_token_no_auth_header(self, github_http):
        GitHubClient(None, session=github_http).get_user("octocat")
        assert "Authorization" not in github_http.calls[0][1]["headers"]

    def test_not_found_is_permanent(self):
        client = GitHubClient("t", session=FakeHTTP())

        with pytest.raises(ProviderError) as excinfo:
            client.get_user("ghost")
        assert excinfo.value.status == 404
        assert not excinfo.value.transient
        assert "Not Found" in str(excinfo.value)

    def test_server_error_is_transient(self):
        http = FakeHTTP({f"{GITHUB_API}/users/octocat": (503, {"message": "Service down"})})

        with pytest.raises(ProviderError) as excinfo:
            GitHubClient("t", session=http).get_user("octocat")
        assert excinfo.value.status == 503
        assert excinfo.value.transient

    def test_network_errors_are_retried_then_raised(self):
        http = FakeHTTP({f"{GITHUB_API}/users/octocat": requests.exceptions.ConnectionError("reset")})

        with pytest.raises(ProviderError) as excinfo:
            GitHubClient("t", session=http).get_user("octocat")
        assert excinfo.value.transient
        assert len(http.calls) == 3  # Initial + 2 retries

    def test_invalid_json(self):
        http = FakeHTTP({f"{GITHUB_API}/users/octocat": FakeResponse(200, None, text="<html>")})

        with pytest.raises(ProviderError, match="invalid JSON"):
            GitHubClient("t", session=http).get_user("octocat")

    def test_error_detail_from_text(self):
        http = FakeHTTP({f"{GITHUB_API}/users/octocat": FakeResponse(500, None, text="upstream exploded")})

        with pytest.raises(ProviderError, match="upstream exploded"):
            GitHubClient("t", session=http).get_user("octocat")


class TestGitHubSnapshot:
    """Test repository-activity collection."""

    def test_snapshot(self, github_http):
        snapshot = fetch_github_snapshot(GitHubClient("t", session=github_http), "octocat")

        assert snapshot["user"]["login"] == "octocat"
        assert snapshot["user"]["followers"] == 120
        names = [r["name"] for r in snapshot["repositories"]]
        assert names == ["hello", "fork"]  # private repo skipped

        hello = snapshot["repositories"][0]
        assert hello["languages"] == {"Python": 7000, "Shell": 3000}
        assert hello["has_readme"] and hello["has_tests"] and hello["has_docs"]
        assert hello["commits_last_year"] == 15
        assert hello["stars"] == 12

        assert [e["type"] for e in snapshot["events"]] == [
            "PushEvent", "PullRequestEvent", "IssuesEvent", "PushEvent"
        ]
        assert snapshot["events"][0]["commit_count"] == 2
        assert snapshot["events"][1]["merged"] is True
        assert snapshot["limitations"] == []

    def test_forks_get_no_detail_calls(self, github_http):
        fetch_github_snapshot(GitHubClient("t", session=github_http), "octocat")
        assert not any("/repos/octocat/fork/" in url for url, _ in github_http.calls)

    def test_missing_readme_and_empty_repo(self, github_http):
        del github_http.routes[f"{GITHUB_API}/repos/octocat/hello/readme"]
        github_http.add(f"{GITHUB_API}/repos/octocat/hello/contents/", {"message": "empty"}, status=409)

        snapshot = fetch_github_snapshot(GitHubClient("t", session=github_http), "octocat")

        hello = snapshot["repositories"][0]
        assert hello["has_readme"] is False
        assert hello["has_tests"] is False
        assert snapshot["limitations"] == []

    def test_detail_failures_degrade(self, github_http):
        """Permanent refusals of optional calls are recorded as limitations."""
        github_http.add(f"{GITHUB_API}/repos/octocat/hello/languages", {"message": "forbidden"}, status=403)
        github_http.add(f"{GITHUB_API}/users/octocat/events/public", {"message": "gone"}, status=404)

        snapshot = fetch_github_snapshot(GitHubClient("t", session=github_http), "octocat")

        assert snapshot["events"] == []
        assert snapshot["limitations"] == [
            "details unavailable for 1 repositories",
            "public event feed unavailable",
        ]

    @pytest.mark.parametrize("path,status", [
        ("repos/octocat/hello/languages", 429),
        ("repos/octocat/hello/stats/commit_activity", 503),
        ("users/octocat/events/public", 502),
    ])
    def test_transient_detail_failures_propagate(self, github_http, path, status):
        """Rate limits and outages fail the snapshot so the job is retried."""
        github_http.add(f"{GITHUB_API}/{path}", {"message": "slow down"}, status=status)

        with pytest.raises(ProviderError) as excinfo:
            fetch_github_snapshot(GitHubClient("t", session=github_http), "octocat")
        assert excinfo.value.transient

    def test_commit_stats_pending(self, github_http):
        github_http.add(f"{GITHUB_API}/repos/octocat/hello/stats/commit_activity", {}, status=202)

        snapshot = fetch_github_snapshot(GitHubClient("t", session=github_http), "octocat")
        assert snapshot["repositories"][0]["commits_last_year"] is None

    def test_profile_failure_propagates(self):
        with pytest.raises(ProviderError):
            fetch_github_snapshot(GitHubClient("t", session=FakeHTTP()), "ghost")

    def test_fetch_snapshot_dispatch(self, github_http):
        snapshot = fetch_snapshot("github", "t", "octocat", session=github_http)
        assert snapshot["user"]["login"] == "octocat"

    def test_fetch_snapshot_unknown_source(self):
        with pytest.raises(KeyError):
            fetch_snapshot("linkedin", "t", "someone", session=FakeHTTP())


def twitter_http(timeline=None):
    routes = {
        f"{TWITTER_API}/users/by/username/jack": FakeResponse(200, {"data": {
            "id": "12",
            "username": "jack",
            "name": "Jack",
            "verified": False,
            "verified_type": "blue",
            "created_at": "2010-06-15T00:00:00Z",
            "public_metrics": {
                "followers_count": 1000, "following_count": 100, "tweet_count": 500, "listed_count": 10,
            },
        }}),
    }
    routes[f"{TWITTER_API}/users/12/tweets"] = timeline or FakeResponse(200, {"data": [
        {"id": "1", "created_at": "2024-06-14T10:00:00Z",
         "public_metrics": {"like_count": 20, "retweet_count": 5, "reply_count": 3, "quote_count": 2}},
        {"id": "2", "created_at": "2024-06-12T10:00:00Z",
         "public_metrics": {"like_count": 8, "retweet_count": 1, "reply_count": 1, "quote_count": 0}},
    ]})
    return FakeHTTP(routes)


class TestTwitterSnapshot:
    def test_snapshot(self):
        snapshot = fetch_twitter_snapshot(TwitterClient("t", session=twitter_http()), "jack")

        assert snapshot["profile"]["verified_type"] == "blue"
        assert snapshot["metrics"]["followers_count"] == 1000
        assert [t["like_count"] for t in snapshot["tweets"]] == [20, 8]
        assert snapshot["limitations"] == []

    def test_forbidden_timeline_degrades(self):
        http = twitter_http(timeline=FakeResponse(403, {"detail": "Forbidden"}))

        snapshot = fetch_twitter_snapshot(TwitterClient("t", session=http), "jack")

        assert snapshot["tweets"] == []
        assert snapshot["limitations"] == ["recent tweets unavailable"]

    def test_rate_limited_timeline_propagates(self):
        http = twitter_http(timeline=FakeResponse(429, {"detail": "Too Many Requests"}))

        with pytest.raises(ProviderError) as excinfo:
            fetch_twitter_snapshot(TwitterClient("t", session=http), "jack")
        assert excinfo.value.transient

    def test_unknown_user(self):
        http = FakeHTTP({f"{TWITTER_API}/users/by/username/ghost": FakeResponse(200, {"errors": []})})

        with pytest.raises(ProviderError) as excinfo:
            fetch_twitter_snapshot(TwitterClient("t", session=http), "ghost")
        assert excinfo.value.status == 404


def youtube_http():
    return FakeHTTP({
        f"{YOUTUBE_API}/channels": FakeResponse(200, {"items": [{
            "id": "UC1",
            "snippet": {"title": "Channel", "customUrl": "@channel", "publishedAt": "2018-01-01T00:00:00Z"},
            "statistics": {"subscriberCount": "1000", "viewCount": "50000", "videoCount": "20"},
        }]}),
        f"{YOUTUBE_API}/search": FakeResponse(200, {"items": [
            {"id": {"kind": "youtube#video", "videoId": "v1"}},
            {"id": {"kind": "youtube#video", "videoId": "v2"}},
        ]}),
        f"{YOUTUBE_API}/videos": FakeResponse(200, {"items": [
            {"id": "v1", "snippet": {"publishedAt": "2024-06-10T00:00:00Z"},
             "statistics": {"viewCount": "900", "likeCount": "60", "commentCount": "9"}},
            {"id": "v2", "snippet": {"publishedAt": "2024-06-03T00:00:00Z"},
             "statistics": {"viewCount": "1100", "likeCount": "40", "commentCount": "11"}},
        ]}),
    })


class TestYouTubeSnapshot:
    def test_snapshot(self):
        http = youtube_http()
        snapshot = fetch_youtube_snapshot(YouTubeClient("t", session=http), "UC1")

        assert snapshot["channel"]["custom_url"] == "@channel"
        assert snapshot["statistics"] == {"subscriber_count": 1000, "view_count": 50000, "video_count": 20}
        assert [v["views"] for v in snapshot["videos"]] == [900, 1100]
        assert http.calls[0][1]["params"]["id"] == "UC1"

    def test_own_channel(self):
        http = youtube_http()
        fetch_youtube_snapshot(YouTubeClient("t", session=http))
        assert http.calls[0][1]["params"]["mine"] == "true"

    def test_missing_channel(self):
        http = FakeHTTP({f"{YOUTUBE_API}/channels": FakeResponse(200, {"items": []})})

        with pytest.raises(ProviderError) as excinfo:
            fetch_youtube_snapshot(YouTubeClient("t", session=http), "UCX")
        assert excinfo.value.status == 404


def instagram_http(insights=None):
    return FakeHTTP({
        f"{INSTAGRAM_API}/me": FakeResponse(200, {
            "id": "17", "username": "studio", "account_type": "CREATOR", "media_count": 3,
        }),
        f"{INSTAGRAM_API}/17/insights": insights or FakeResponse(200, {"data": [
            {"name": "follower_count", "values": [{"value": 2000}]},
            {"name": "follows_count", "values": [{"value": 200}]},
            {"name": "reach", "values": [{"value": None}]},
        ]}),
        f"{INSTAGRAM_API}/17/media": FakeResponse(200, {"data": [
            {"id": "m1", "media_type": "IMAGE", "timestamp": "2024-06-14T10:00:00+0000",
             "like_count": 100, "comments_count": 10},
            {"id": "m2", "media_type": "VIDEO", "timestamp": "2024-06-10T10:00:00+0000",
             "like_count": 60, "comments_count": 6},
        ]}),
    })


class TestInstagramSnapshot:
    def test_token_sent_as_query_parameter(self):
        http = instagram_http()
        fetch_instagram_snapshot(InstagramClient("secret", session=http))

        url, request = http.calls[0]
        assert url == f"{INSTAGRAM_API}/me"
        assert request["params"]["access_token"] == "secret"
        assert "Authorization" not in request["headers"]

    def test_snapshot(self):
        snapshot = fetch_instagram_snapshot(InstagramClient("t", session=instagram_http()))

        assert snapshot["profile"]["account_type"] == "CREATOR"
        assert snapshot["insights"]["followers_count"] == 2000
        assert snapshot["insights"]["reach"] is None
        assert len(snapshot["media"]) == 2
        assert snapshot["limitations"] == []

    def test_personal_account_without_insights(self):
        http = instagram_http(insights=FakeResponse(400, {"error": {"message": "Unsupported request"}}))

        snapshot = fetch_instagram_snapshot(InstagramClient("t", session=http))

        assert snapshot["insights"]["followers_count"] is None
        assert snapshot["limitations"] == ["insights unavailable (personal account or missing scope)"]
