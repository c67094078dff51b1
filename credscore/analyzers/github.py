"""
Repository-activity analyzer.

Scores a GitHub snapshot (see providers.github.fetch_github_snapshot) on
three axes and blends them into the source sub-score:

- consistency (0-100): active-day frequency (40) + regular spacing of commit
  days (30) + recency of the last commit (30)
- quality (0-100): PR merge rate (20) + issue resolution (15) + reviews (20)
  + review/issue comments (15) + README, tests and docs coverage (10 each)
- contribution (0-100): star/fork impact (25) + annual commits (25) +
  consistency and quality (20 each) + PR/issue engagement (10)

overall = 0.4 * contribution + 0.3 * consistency + 0.3 * quality
"""

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Tuple

from .base import (
    AnalysisResult,
    clamp_score,
    coefficient_of_variation,
    log_points,
    parse_timestamp,
    round_half_up,
    round_metric,
)

CONTRIBUTION_WEIGHT = 0.4
CONSISTENCY_WEIGHT = 0.3
QUALITY_WEIGHT = 0.3

TOP_REPOS = 10


def _day_gaps(days: List[date]) -> List[int]:
    return [(b - a).days for a, b in zip(days, days[1:])]


def calculate_streaks(days: List[date], as_of: date) -> Tuple[int, int]:
    """(longest, current) runs of consecutive commit days.

    The current streak counts only if the last commit day is as_of or the
    day before.
    """
    if not days:
        return 0, 0

    longest = run = 1
    for gap in _day_gaps(days):
        if gap == 1:
            run += 1
        else:
            longest = max(longest, run)
            run = 1
    longest = max(longest, run)

    if days[-1] not in (as_of, as_of - timedelta(days=1)):
        return longest, 0

    current = 1
    for prev, curr in zip(reversed(days[:-1]), reversed(days[1:])):
        if (curr - prev).days == 1:
            current += 1
        else:
            break
    return longest, current


def consistency_score(commits_by_day: Dict[date, int], as_of: date) -> int:
    """Commit consistency 0-100 for the activity map ending at as_of."""
    days = sorted(commits_by_day)
    year_ago = as_of - timedelta(days=365)
    commits_last_year = sum(c for d, c in commits_by_day.items() if d >= year_ago)
    if not days or commits_last_year == 0:
        return 0

    frequency = min(40.0, len(days) / 365 * 100)
    distribution = max(0.0, 30 - coefficient_of_variation(_day_gaps(days)) * 10)
    recency = max(0, 30 - (as_of - days[-1]).days)
    return min(100, round_half_up(frequency + distribution + recency))


def quality_score(
    total_prs: int,
    merged_prs: int,
    total_issues: int,
    closed_issues: int,
    reviews: int,
    comments: int,
    readme_repos: int,
    tested_repos: int,
    documented_repos: int,
    total_repos: int,
) -> int:
    pr = (merged_prs / total_prs) * 20 if total_prs else 0.0
    issues = (closed_issues / total_issues) * 15 if total_issues else 0.0
    review = min(20, reviews * 2)
    collaboration = min(15, comments * 0.5)
    docs = 0.0
    if total_repos:
        docs = (readme_repos + tested_repos + documented_repos) / total_repos * 10
    return min(100, round_half_up(pr + issues + review + collaboration + docs))


def contribution_score(
    stars: int,
    forks: int,
    commits_last_year: int,
    consistency: int,
    quality: int,
    prs: int,
    issues: int,
) -> int:
    impact = log_points(stars + forks, 5, 25)
    activity = log_points(commits_last_year, 6, 25)
    engagement = log_points(prs + issues, 3, 10)
    total = impact + activity + consistency / 100 * 20 + quality / 100 * 20 + engagement
    return min(100, round_half_up(total))


def _commits_by_day(events: Iterable[Dict[str, Any]]) -> Dict[date, int]:
    by_day: Counter = Counter()
    for event in events:
        if event.get("type") != "PushEvent":
            continue
        ts = parse_timestamp(event.get("created_at"))
        if ts is None:
            continue
        by_day[ts.date()] += int(event.get("commit_count") or 1)
    return dict(by_day)


def _event_counts(events: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    counts = Counter()
    for event in events:
        kind = event.get("type")
        if kind == "PushEvent":
            counts["commits"] += int(event.get("commit_count") or 1)
        elif kind == "PullRequestEvent":
            counts["pull_requests"] += 1
            if event.get("action") == "closed" and event.get("merged"):
                counts["merged_pull_requests"] += 1
        elif kind == "IssuesEvent":
            counts["issues"] += 1
            if event.get("action") == "closed":
                counts["closed_issues"] += 1
        elif kind == "PullRequestReviewEvent":
            counts["reviews"] += 1
        elif kind == "PullRequestReviewCommentEvent":
            counts["pr_comments"] += 1
        elif kind == "IssueCommentEvent":
            counts["issue_comments"] += 1
        elif kind == "CreateEvent" and event.get("ref_type") == "repository":
            counts["repositories_created"] += 1
    return counts


def language_stats(repos: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    totals: Counter = Counter()
    for repo in repos:
        for lang, size in (repo.get("languages") or {}).items():
            totals[lang] += int(size)
    total_bytes = sum(totals.values())
    languages = [
        {
            "name": name,
            "bytes": size,
            "percentage": round_metric(size / total_bytes * 100, 1) if total_bytes else 0.0,
        }
        for name, size in sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    return {
        "primary_language": languages[0]["name"] if languages else None,
        "languages": languages,
        "total_bytes": total_bytes,
    }


def analyze_github(snapshot: Dict[str, Any], as_of: datetime) -> AnalysisResult:
    """Score a repository-activity snapshot as of a reference time."""
    today = as_of.date()
    repos = snapshot.get("repositories") or []
    own = [r for r in repos if not r.get("fork")]
    events = snapshot.get("events") or []
    limitations = list(snapshot.get("limitations") or [])
    if not events:
        limitations.append("no public activity events")

    by_day = _commits_by_day(events)
    days = sorted(by_day)

    def commits_since(delta: int) -> int:
        cutoff = today - timedelta(days=delta)
        return sum(c for d, c in by_day.items() if d >= cutoff)

    commits_30, commits_90, commits_365 = commits_since(30), commits_since(90), commits_since(365)
    counts = _event_counts(events)
    stats_commits = sum(int(r.get("commits_last_year") or 0) for r in own)
    total_commits = max(counts["commits"] + stats_commits, commits_365)
    longest, current = calculate_streaks(days, today)

    consistency = consistency_score(by_day, today)
    quality = quality_score(
        total_prs=counts["pull_requests"],
        merged_prs=counts["merged_pull_requests"],
        total_issues=counts["issues"],
        closed_issues=counts["closed_issues"],
        reviews=counts["reviews"],
        comments=counts["pr_comments"] + counts["issue_comments"],
        readme_repos=sum(1 for r in own if r.get("has_readme")),
        tested_repos=sum(1 for r in own if r.get("has_tests")),
        documented_repos=sum(1 for r in own if r.get("has_docs")),
        total_repos=len(own),
    )
    stars = sum(int(r.get("stars") or 0) for r in own)
    forks = sum(int(r.get("forks") or 0) for r in own)
    contribution = contribution_score(
        stars, forks, commits_365, consistency, quality, counts["pull_requests"], counts["issues"]
    )
    overall = round_half_up(
        contribution * CONTRIBUTION_WEIGHT + consistency * CONSISTENCY_WEIGHT + quality * QUALITY_WEIGHT
    )

    langs = language_stats(own)
    top = sorted(own, key=lambda r: (-int(r.get("stars") or 0), r.get("full_name") or ""))[:TOP_REPOS]
    user = snapshot.get("user") or {}

    def pct(n: int) -> int:
        return round_half_up(n / len(own) * 100) if own else 0

    metrics = {
        "username": user.get("login"),
        "profile_url": user.get("profile_url"),
        "followers": int(user.get("followers") or 0),
        "total_repos": len(own),
        "total_stars": stars,
        "total_forks": forks,
        "total_commits": total_commits,
        "commits_last_30_days": commits_30,
        "commits_last_90_days": commits_90,
        "commits_last_365_days": commits_365,
        "active_days": len(days),
        "longest_streak": longest,
        "current_streak": current,
        "total_prs": counts["pull_requests"],
        "merged_prs": counts["merged_pull_requests"],
        "total_issues": counts["issues"],
        "closed_issues": counts["closed_issues"],
        "code_reviews": counts["reviews"],
        "comments_on_prs": counts["pr_comments"],
        "comments_on_issues": counts["issue_comments"],
        "repositories_created": counts["repositories_created"],
        "readme_pct": pct(sum(1 for r in own if r.get("has_readme"))),
        "tests_pct": pct(sum(1 for r in own if r.get("has_tests"))),
        "docs_pct": pct(sum(1 for r in own if r.get("has_docs"))),
        "primary_language": langs["primary_language"],
        "languages": {lang["name"]: lang["percentage"] for lang in langs["languages"]},
        "total_language_bytes": langs["total_bytes"],
        "top_repos": [
            {
                "name": r.get("name"),
                "description": r.get("description"),
                "language": r.get("language"),
                "stars": int(r.get("stars") or 0),
                "forks": int(r.get("forks") or 0),
                "url": f"https://github.com/{r.get('full_name')}",
            }
            for r in top
        ],
        "contribution_graph": [
            {"date": d.isoformat(), "count": by_day[d]} for d in days
        ],
        "consistency_score": consistency,
        "quality_score": quality,
        "contribution_score": contribution,
        "overall_score": clamp_score(overall),
        "limitations": limitations,
    }
    return AnalysisResult(
        metrics=metrics,
        subscore=overall,
        verified=bool(user.get("login")),
        limitations=limitations,
    )


def commit_days(timestamps: Iterable[Any]) -> Dict[date, int]:
    """Activity map from raw commit timestamps, one commit each."""
    return _commits_by_day({"type": "PushEvent", "created_at": ts, "commit_count": 1} for ts in timestamps)
