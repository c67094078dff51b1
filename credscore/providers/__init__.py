"""Provider clients for the external platforms credscore syncs from."""

from typing import Any, Callable, Dict, Optional, Tuple, Type

import requests

from .common import ProviderClient
from .github import GitHubClient, fetch_github_snapshot
from .instagram import InstagramClient, fetch_instagram_snapshot
from .twitter import TwitterClient, fetch_twitter_snapshot
from .youtube import YouTubeClient, fetch_youtube_snapshot

PROVIDERS: Dict[str, Tuple[Type[ProviderClient], Callable[..., Dict[str, Any]]]] = {
    "github": (GitHubClient, fetch_github_snapshot),
    "instagram": (InstagramClient, fetch_instagram_snapshot),
    "twitter": (TwitterClient, fetch_twitter_snapshot),
    "youtube": (YouTubeClient, fetch_youtube_snapshot),
}


def fetch_snapshot(
    source: str,
    access_token: Optional[str],
    identifier: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    """Fetch the raw snapshot of one platform account.

    Raises:
        KeyError: If no provider exists for source
        ProviderError: If the upstream call fails
    """
    client_cls, fetch = PROVIDERS[source]
    return fetch(client_cls(access_token, session=session), identifier or None)
