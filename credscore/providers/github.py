"""GitHub REST v3 client."""

from typing import Any, Dict, List, Optional

from ..errors import ProviderError
from ..logger import get_logger
from .common import ProviderClient

logger = get_logger()

MAX_REPO_PAGES = 10
COMMIT_STATS_REPOS = 10
TEST_DIRS = {"test", "tests", "__tests__", "spec"}
DOC_DIRS = {"docs", "documentation"}


class GitHubClient(ProviderClient):
    source = "github"
    base_url = "https://api.github.com"

    def _auth(self, headers, params):
        super()._auth(headers, params)
        headers["Accept"] = "application/vnd.github+json"

    def get_user(self, username: Optional[str] = None) -> Dict[str, Any]:
        return self.get_json(f"/users/{username}" if username else "/user")

    def list_repositories(self, username: Optional[str] = None) -> List[Dict[str, Any]]:
        path = f"/users/{username}/repos" if username else "/user/repos"
        repos: List[Dict[str, Any]] = []
        for page in range(1, MAX_REPO_PAGES + 1):
            batch = self.get_json(
                path, params={"per_page": 100, "page": page, "sort": "updated", "direction": "desc"}
            )
            if not isinstance(batch, list):
                break
            repos.extend(batch)
            if len(batch) < 100:
                break
        return repos

    def list_public_events(self, username: str) -> List[Dict[str, Any]]:
        data = self.get_json(f"/users/{username}/events/public", params={"per_page": 100})
        return data if isinstance(data, list) else []

    def commit_activity(self, full_name: str) -> Optional[int]:
        """Total commits of the last 52 weeks, None while GitHub is still computing stats."""
        data = self.get_json(f"/repos/{full_name}/stats/commit_activity")
        if not isinstance(data, list):
            return None
        return sum(int(week.get("total", 0) or 0) for week in data)

    def languages(self, full_name: str) -> Dict[str, int]:
        data = self.get_json(f"/repos/{full_name}/languages")
        return {k: int(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def has_readme(self, full_name: str) -> bool:
        try:
            self.get_json(f"/repos/{full_name}/readme")
        except ProviderError as e:
            if e.status == 404:
                return False
            raise
        return True

    def root_directories(self, full_name: str) -> List[str]:
        try:
            data = self.get_json(f"/repos/{full_name}/contents/")
        except ProviderError as e:
            if e.status in (404, 409):  # 409 = empty repository
                return []
            raise
        if not isinstance(data, list):
            return []
        return [item.get("name", "") for item in data if item.get("type") == "dir"]


def _normalize_event(event: Dict[str, Any]) -> Dict[str, Any]:
    payload = event.get("payload") or {}
    normalized = {"type": event.get("type"), "created_at": event.get("created_at")}
    if event.get("type") == "PushEvent":
        commits = payload.get("commits")
        normalized["commit_count"] = len(commits) if commits else int(payload.get("size") or 1)
    if "action" in payload:
        normalized["action"] = payload.get("action")
    if event.get("type") == "PullRequestEvent":
        normalized["merged"] = bool((payload.get("pull_request") or {}).get("merged"))
    if event.get("type") == "CreateEvent":
        normalized["ref_type"] = payload.get("ref_type")
    return normalized


def fetch_github_snapshot(client: GitHubClient, username: Optional[str] = None) -> Dict[str, Any]:
    """
    Collect everything the repository-activity analyzer needs.

    Profile and repository listing failures propagate. Per-repository detail
    calls and the event feed degrade: the snapshot records a limitation and
    the affected fields fall back to empty values.
    """
    user = client.get_user(username)
    login = user.get("login") or username
    raw_repos = client.list_repositories(username)
    limitations: List[str] = []

    repos = []
    for r in raw_repos:
        if r.get("private"):
            continue
        repos.append({
            "name": r.get("name"),
            "full_name": r.get("full_name"),
            "description": r.get("description"),
            "language": r.get("language"),
            "stars": int(r.get("stargazers_count") or 0),
            "forks": int(r.get("forks_count") or 0),
            "fork": bool(r.get("fork")),
            "pushed_at": r.get("pushed_at"),
            "languages": {},
            "has_readme": False,
            "has_tests": False,
            "has_docs": False,
            "commits_last_year": None,
        })

    own = [r for r in repos if not r["fork"]]
    failed_details = 0
    for repo in own:
        try:
            repo["languages"] = client.languages(repo["full_name"])
            repo["has_readme"] = client.has_readme(repo["full_name"])
            dirs = {d.lower() for d in client.root_directories(repo["full_name"])}
            repo["has_tests"] = bool(dirs & TEST_DIRS)
            repo["has_docs"] = bool(dirs & DOC_DIRS)
        except ProviderError as e:
            if e.transient:
                raise
            failed_details += 1
            logger.warning("GitHub repository details unavailable", repo=repo["full_name"], error=str(e))

    if failed_details:
        limitations.append(f"details unavailable for {failed_details} repositories")

    top = sorted(own, key=lambda r: (-r["stars"], r["full_name"] or ""))[:COMMIT_STATS_REPOS]
    for repo in top:
        try:
            repo["commits_last_year"] = client.commit_activity(repo["full_name"])
        except ProviderError as e:
            if e.transient:
                raise
            logger.debug("GitHub commit stats unavailable", repo=repo["full_name"], error=str(e))

    events: List[Dict[str, Any]] = []
    try:
        events = [_normalize_event(e) for e in client.list_public_events(login)]
    except ProviderError as e:
        if e.transient:
            raise
        logger.warning("GitHub event feed unavailable", username=login, error=str(e))
        limitations.append("public event feed unavailable")

    return {
        "user": {
            "login": login,
            "name": user.get("name"),
            "profile_url": user.get("html_url"),
            "followers": int(user.get("followers") or 0),
            "following": int(user.get("following") or 0),
            "public_repos": int(user.get("public_repos") or 0),
            "created_at": user.get("created_at"),
        },
        "repositories": repos,
        "events": events,
        "limitations": limitations,
    }
