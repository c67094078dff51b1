"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytest

from credscore import retry
from credscore.config import Settings, default_queue_policies
from credscore.database import init_database, make_session_factory, session_scope
from credscore.logger import StructuredLogger
from credscore.queue import JobQueue
from credscore.reference import load_reference_data
from credscore.storage import connect_account
from credscore.worker import SyncWorkerPool

NOW = datetime(2024, 6, 15, 12, 0, 0)


class FakeClock:
    """Controllable clock shared by a queue and its handlers."""

    def __init__(self, start: datetime = NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeHTTP:
    """
    Stand-in for requests.Session routing GETs by URL.

    Unknown URLs answer 404. A route may be a FakeResponse, an exception to
    raise, or a (status, body) tuple.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def add(self, url: str, body: Any = None, status: int = 200) -> None:
        self.routes[url] = FakeResponse(status, body)

    def get(self, url: str, headers=None, params=None, timeout=None):
        self.calls.append((url, {"headers": headers or {}, "params": params or {}}))
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, {"message": "Not Found"})
        if isinstance(route, Exception):
            raise route
        if isinstance(route, tuple):
            return FakeResponse(*route)
        return route


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """HTTP-level retries never wait in tests."""
    monkeypatch.setattr(retry.time, "sleep", lambda seconds: None)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        db_path=tmp_path / "credscore.db",
        lock_duration=30.0,
        max_stalled_count=2,
        stalled_interval=10.0,
        poll_interval=0.01,
        queues=default_queue_policies(),
    )


@pytest.fixture
def session_factory(settings):
    engine = init_database(settings.db_path)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def job_queue(session_factory, settings, clock) -> JobQueue:
    return JobQueue(session_factory, settings, clock=clock)


@pytest.fixture(scope="session")
def reference():
    return load_reference_data()


@pytest.fixture
def fake_http() -> FakeHTTP:
    return FakeHTTP()


@pytest.fixture
def valid_education() -> Dict[str, Any]:
    return {
        "institution_name": "Massachusetts Institute of Technology",
        "degree": "Bachelor of Science",
        "field": "Computer Science",
        "gpa": 3.8,
        "start_date": "2015-09-01",
        "end_date": "2019-06-01",
    }


@pytest.fixture
def aws_certificate() -> Dict[str, Any]:
    """Verified AWS certificate issued six months before NOW."""
    return {
        "name": "AWS Certified Solutions Architect - Associate",
        "issuer": "Amazon Web Services",
        "issue_date": "2023-12-15",
        "expiry_date": "2026-12-15",
        "credential_id": "AWS-123",
        "credential_url": "https://aws.amazon.com/verification/AWS-123",
    }


GITHUB_API = "https://api.github.com"


def github_routes(username: str = "octocat") -> Dict[str, Any]:
    """A small public GitHub account: one own repo, one fork, one private repo."""
    repo = f"{GITHUB_API}/repos/{username}/hello"
    return {
        f"{GITHUB_API}/users/{username}": FakeResponse(200, {
            "login": username,
            "name": "The Octocat",
            "html_url": f"https://github.com/{username}",
            "followers": 120,
            "following": 3,
            "public_repos": 2,
            "created_at": "2015-01-01T00:00:00Z",
        }),
        f"{GITHUB_API}/users/{username}/repos": FakeResponse(200, [
            {"name": "hello", "full_name": f"{username}/hello", "description": "Hello world",
             "language": "Python", "stargazers_count": 12, "forks_count": 3, "fork": False,
             "private": False, "pushed_at": "2024-06-14T09:00:00Z"},
            {"name": "fork", "full_name": f"{username}/fork", "language": "Go",
             "stargazers_count": 0, "forks_count": 0, "fork": True, "private": False},
            {"name": "secret", "full_name": f"{username}/secret", "stargazers_count": 99,
             "fork": False, "private": True},
        ]),
        f"{repo}/languages": FakeResponse(200, {"Python": 7000, "Shell": 3000}),
        f"{repo}/readme": FakeResponse(200, {"name": "README.md"}),
        f"{repo}/contents/": FakeResponse(200, [
            {"name": "tests", "type": "dir"},
            {"name": "docs", "type": "dir"},
            {"name": "setup.py", "type": "file"},
        ]),
        f"{repo}/stats/commit_activity": FakeResponse(200, [{"total": 10}, {"total": 5}]),
        f"{GITHUB_API}/users/{username}/events/public": FakeResponse(200, [
            {"type": "PushEvent", "created_at": "2024-06-14T09:00:00Z",
             "payload": {"size": 2, "commits": [{"sha": "a"}, {"sha": "b"}]}},
            {"type": "PullRequestEvent", "created_at": "2024-06-12T09:00:00Z",
             "payload": {"action": "closed", "pull_request": {"merged": True}}},
            {"type": "IssuesEvent", "created_at": "2024-06-11T09:00:00Z",
             "payload": {"action": "closed"}},
            {"type": "PushEvent", "created_at": "2024-06-10T09:00:00Z",
             "payload": {"size": 1, "commits": [{"sha": "c"}]}},
        ]),
    }


@pytest.fixture
def github_http() -> FakeHTTP:
    return FakeHTTP(github_routes())


@pytest.fixture
def logger(tmp_path):
    return StructuredLogger(name="credscore-test", log_dir=tmp_path, enable_file=False, enable_console=False)


@pytest.fixture
def make_pool(job_queue, session_factory, settings, reference, logger):
    """Build a worker pool over the test queue; keyword arguments override defaults."""
    def build(**kwargs):
        kwargs.setdefault("reference", reference)
        kwargs.setdefault("logger", logger)
        kwargs.setdefault("name", "test")
        return SyncWorkerPool(job_queue, session_factory, settings, **kwargs)
    return build


@pytest.fixture
def connect(session_factory):
    """Store a connected platform account."""
    def add(user_id: str, source: str, identifier: str, token: Optional[str] = "token"):
        with session_scope(session_factory) as session:
            connect_account(session, user_id, source, identifier, token)
    return add
