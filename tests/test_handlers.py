"""
End-to-end tests for job handlers, run through the worker pool.
"""

import json

import pytest

from credscore.config import QUEUE_CREDIBILITY, QUEUE_SYNC
from credscore.credibility import get_credibility_score
from credscore.database import session_scope
from credscore.handlers import JobContext, _wait_for_child, full_sync_sources, handle_record_sync
from credscore.jobs import CertificationSyncPayload, CredibilityPayload, FullSyncPayload, JobState, JobType
from credscore.queue import enqueue_sync
from credscore.storage import (
    get_source_profile,
    get_sync_status,
    ingest_certification,
    ingest_education,
)

from conftest import NOW, FakeHTTP, github_routes


@pytest.fixture
def github_pool(make_pool, github_http, connect):
    connect("u1", "github", "octocat")
    return make_pool(http=github_http)


def _profile(session_factory, user_id, source):
    with session_scope(session_factory) as session:
        profile = get_source_profile(session, user_id, source)
        return None if profile is None else {
            "metrics": profile.metrics,
            "subscore": profile.subscore,
            "content_hash": profile.content_hash,
        }


class TestPlatformSync:
    """Fetch, analyze and store a connected platform account."""

    def test_github_sync(self, job_queue, github_pool, session_factory):
        job_id = enqueue_sync(job_queue, "u1", "github")

        assert github_pool.run_until_idle() == 1

        job = job_queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.progress == 100
        assert job.result["success"] is True
        assert job.result["items_synced"] == 2
        assert job.result["next_sync_at"] == "2024-06-16T12:00:00"
        assert job.result["details"]["profile"] == "new"
        assert job.result["details"]["subscore"] == 52
        assert job.result["details"]["verified"] is True

        profile = _profile(session_factory, "u1", "github")
        metrics = json.loads(profile["metrics"])
        assert profile["subscore"] == 52
        assert metrics["consistency_score"] == 60
        assert metrics["quality_score"] == 65
        assert metrics["total_repos"] == 1
        assert metrics["languages"] == {"Python": 70.0, "Shell": 30.0}

        with session_scope(session_factory) as session:
            status = get_sync_status(session, "u1", "github")
            assert status.status == "completed"
            assert status.last_sync_at == NOW
            score = get_credibility_score(session, "u1")
            assert score.technical_score == 100
            assert score.overall_score == 20

    def test_forced_resync_is_idempotent(self, job_queue, github_pool, session_factory):
        """Same upstream data, same clock: stored metrics stay byte-identical."""
        enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()
        first = _profile(session_factory, "u1", "github")

        job_id = enqueue_sync(job_queue, "u1", "github", force_refresh=True)
        github_pool.run_until_idle()

        assert job_queue.get_job(job_id).result["details"]["profile"] == "no-change"
        assert _profile(session_factory, "u1", "github") == first

    def test_fresh_profile_is_skipped(self, job_queue, github_pool, github_http):
        enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()
        calls = len(github_http.calls)

        job_id = enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()

        job = job_queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.result["details"] == {"skipped": "profile is fresh"}
        assert job.result["items_synced"] == 0
        assert len(github_http.calls) == calls

    def test_stale_profile_is_refetched(self, job_queue, github_pool, github_http, clock):
        enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()
        calls = len(github_http.calls)

        clock.advance(days=2)
        job_id = enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()

        assert job_queue.get_job(job_id).result["details"]["profile"] == "updated"
        assert len(github_http.calls) > calls

    def test_failed_sync_keeps_stored_profile(self, job_queue, github_pool, github_http, session_factory):
        enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()
        before = _profile(session_factory, "u1", "github")

        github_http.add("https://api.github.com/users/octocat", {"message": "Bad credentials"}, status=401)
        job_id = enqueue_sync(job_queue, "u1", "github", force_refresh=True)
        github_pool.run_until_idle()

        assert job_queue.get_job(job_id).state == JobState.FAILED
        assert _profile(session_factory, "u1", "github") == before

    def test_rate_limited_details_delay_the_job(self, job_queue, github_pool, github_http, session_factory):
        """A throttled re-sync is retried later instead of storing a degraded profile."""
        enqueue_sync(job_queue, "u1", "github")
        github_pool.run_until_idle()
        before = _profile(session_factory, "u1", "github")

        repo = "https://api.github.com/repos/octocat/hello"
        for path in ("languages", "readme", "contents/", "stats/commit_activity"):
            github_http.add(f"{repo}/{path}", {"message": "API rate limit exceeded"}, status=429)
        github_http.add("https://api.github.com/users/octocat/events/public", {"message": "down"}, status=503)
        job_id = enqueue_sync(job_queue, "u1", "github", force_refresh=True)
        github_pool.run_until_idle()

        job = job_queue.get_job(job_id)
        assert job.state == JobState.DELAYED
        assert "429" in job.last_error
        assert _profile(session_factory, "u1", "github") == before
        assert before["subscore"] == 52

        with session_scope(session_factory) as session:
            status = get_sync_status(session, "u1", "github")
            assert status.status == "pending"
            assert "429" in status.last_error

    def test_identifier_override(self, job_queue, make_pool, connect, session_factory):
        connect("u1", "github", "octocat")
        http = FakeHTTP(github_routes("hubot"))
        enqueue_sync(job_queue, "u1", "github", identifier="hubot")

        make_pool(http=http).run_until_idle()

        metrics = json.loads(_profile(session_factory, "u1", "github")["metrics"])
        assert metrics["username"] == "hubot"


class TestRecordSync:
    """Education and certification records are rescored, never fetched."""

    def test_education_sync(self, job_queue, make_pool, session_factory, reference, valid_education):
        with session_scope(session_factory) as session:
            ingest_education(session, "u1", valid_education, reference, now=NOW)
        job_id = enqueue_sync(job_queue, "u1", "education")

        make_pool().run_until_idle()

        result = job_queue.get_job(job_id).result
        assert result["items_synced"] == 1
        assert result["details"]["subscore"] == 73
        assert result["next_sync_at"] == "2024-07-15T12:00:00"
        with session_scope(session_factory) as session:
            score = get_credibility_score(session, "u1")
            assert score.education_score == 73
            assert score.overall_score == 18

    def test_certification_raises_score(self, job_queue, make_pool, session_factory, reference,
                                        aws_certificate):
        """A verified AWS certificate moves the certification category from 0 to 48."""
        with session_scope(session_factory) as session:
            assert get_credibility_score(session, "u1", now=NOW).certification_score == 0
            ingest_certification(session, "u1", aws_certificate, reference, now=NOW)
        enqueue_sync(job_queue, "u1", "certification")

        make_pool().run_until_idle()

        with session_scope(session_factory) as session:
            score = get_credibility_score(session, "u1")
            assert score.certification_score == 48
            assert score.overall_score == 5
            assert score.verification_level == "basic"

    def test_record_submitted_during_sync_is_scored(self, job_queue, make_pool, session_factory, reference,
                                                     aws_certificate):
        """A certificate stored after the running sync loaded its records gets its own run."""
        with session_scope(session_factory) as session:
            ingest_certification(session, "u1", aws_certificate, reference, now=NOW)
        first = enqueue_sync(job_queue, "u1", "certification")
        pool = make_pool()
        coalesced = []

        def submit_while_running(ctx, payload):
            result = handle_record_sync(ctx, payload)
            if not coalesced:
                second = dict(aws_certificate, credential_id="AWS-456",
                              credential_url="https://aws.amazon.com/verification/AWS-456")
                with session_scope(session_factory) as session:
                    outcome = ingest_certification(session, "u1", second, reference, now=NOW)
                coalesced.append(job_queue.enqueue(
                    QUEUE_SYNC, CertificationSyncPayload(user_id="u1", record_id=outcome["record_id"])
                ))
            return result

        pool.register(JobType.CERTIFICATION_SYNC, submit_while_running)

        assert pool.run_until_idle() == 2
        assert coalesced == [first]
        metrics = json.loads(_profile(session_factory, "u1", "certification")["metrics"])
        assert metrics["certification_count"] == 2
        with session_scope(session_factory) as session:
            assert get_sync_status(session, "u1", "certification").status == "completed"

    def test_empty_records(self, job_queue, make_pool, session_factory):
        job_id = enqueue_sync(job_queue, "u1", "education")

        make_pool().run_until_idle()

        result = job_queue.get_job(job_id).result
        assert result["success"] is True
        assert result["items_synced"] == 0
        assert result["details"]["limitations"] == ["no education records"]


class TestFullSync:
    """A full sync runs one child job per source."""

    def test_all_sources_succeed(self, job_queue, github_pool, session_factory, reference, valid_education):
        with session_scope(session_factory) as session:
            ingest_education(session, "u1", valid_education, reference, now=NOW)
        job_id = job_queue.enqueue(QUEUE_SYNC, FullSyncPayload(user_id="u1"))

        assert github_pool.run_until_idle() == 1

        job = job_queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.result["success"] is True
        assert job.result["items_synced"] == 3
        children = job.result["details"]["sources"]
        assert list(children) == ["github", "education"]
        assert {c["state"] for c in children.values()} == {JobState.COMPLETED}
        assert job_queue.get_job(children["github"]["job_id"]).state == JobState.COMPLETED

    def test_failing_source_is_collected(self, job_queue, github_pool, connect, session_factory, logger):
        """One failing source marks the run unsuccessful; the others keep their results."""
        connect("u1", "twitter", "jack")
        job_id = job_queue.enqueue(QUEUE_SYNC, FullSyncPayload(user_id="u1"))

        github_pool.run_until_idle()

        job = job_queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.result["success"] is False
        assert job.result["errors"] == ["twitter: ProviderError: twitter API error (404): Not Found"]
        assert job.result["details"]["sources"]["twitter"]["state"] == JobState.FAILED
        assert _profile(session_factory, "u1", "github") is not None
        assert _profile(session_factory, "u1", "twitter") is None
        assert logger.get_metrics()["errors_by_type"]["PartialFailure"] == 1

    def test_unknown_requested_source(self, job_queue, github_pool):
        job_id = job_queue.enqueue(QUEUE_SYNC, FullSyncPayload(user_id="u1", sources=("github", "linkedin")))

        github_pool.run_until_idle()

        result = job_queue.get_job(job_id).result
        assert result["success"] is False
        assert result["errors"] == ["linkedin: unknown source"]
        assert list(result["details"]["sources"]) == ["github"]

    def test_child_coalesces_with_pending_job(self, job_queue, github_pool):
        """A sync already queued for the source becomes the child."""
        pending = enqueue_sync(job_queue, "u1", "github", priority="low")
        job_id = job_queue.enqueue(QUEUE_SYNC, FullSyncPayload(user_id="u1"), priority="critical")

        assert github_pool.run_until_idle() == 1

        children = job_queue.get_job(job_id).result["details"]["sources"]
        assert children["github"]["job_id"] == pending
        assert job_queue.get_job(pending).state == JobState.COMPLETED

    def test_nothing_to_sync(self, job_queue, make_pool):
        job_id = job_queue.enqueue(QUEUE_SYNC, FullSyncPayload(user_id="nobody"))

        make_pool().run_until_idle()

        result = job_queue.get_job(job_id).result
        assert result["success"] is True
        assert result["items_synced"] == 0


class TestFullSyncSources:
    def test_connected_and_recorded_sources(self, connect, session_factory, reference, aws_certificate):
        connect("u1", "youtube", "UC1")
        connect("u1", "github", "octocat")
        with session_scope(session_factory) as session:
            ingest_certification(session, "u1", aws_certificate, reference, now=NOW)
            sources, errors = full_sync_sources(session, FullSyncPayload(user_id="u1"))

        assert sources == ["github", "youtube", "certification"]
        assert errors == []

    def test_explicit_sources_are_deduplicated(self, session_factory):
        payload = FullSyncPayload(user_id="u1", sources=("twitter", "twitter", "myspace"))
        with session_scope(session_factory) as session:
            sources, errors = full_sync_sources(session, payload)

        assert sources == ["twitter"]
        assert errors == ["myspace: unknown source"]


class TestWaitForChild:
    """Waiting on a child job another worker holds."""

    @pytest.fixture
    def ctx(self, job_queue, session_factory, reference):
        job_queue.enqueue(QUEUE_SYNC, FullSyncPayload(user_id="u1"))
        parent = job_queue.claim(QUEUE_SYNC, "w1")
        return JobContext(
            job=parent,
            worker_id="w1",
            queue=job_queue,
            session_factory=session_factory,
            reference=reference,
            child_timeout=0,
            poll_interval=0,
        )

    def test_times_out(self, ctx, job_queue):
        child_id = enqueue_sync(job_queue, "u1", "github")

        state, result, error = _wait_for_child(ctx, child_id)

        assert state == JobState.WAITING
        assert result is None
        assert error == f"timed out waiting for job {child_id} (waiting)"

    def test_finished_child(self, ctx, job_queue):
        child_id = enqueue_sync(job_queue, "u1", "github")
        job_queue.claim_job(child_id, "w2")
        job_queue.complete(child_id, "w2", {"success": True, "items_synced": 4})

        state, result, error = _wait_for_child(ctx, child_id)

        assert state == JobState.COMPLETED
        assert result == {"success": True, "items_synced": 4}
        assert error is None

    def test_removed_child(self, ctx, job_queue):
        child_id = enqueue_sync(job_queue, "u1", "github")
        job_queue.remove(child_id)

        assert _wait_for_child(ctx, child_id) == (JobState.FAILED, None, "job was removed")


class TestCredibilityJob:
    def test_recalculates(self, job_queue, make_pool):
        job_id = job_queue.enqueue(QUEUE_CREDIBILITY, CredibilityPayload(user_id="u1"))

        make_pool().run_until_idle()

        result = job_queue.get_job(job_id).result
        assert result["details"] == {"overall_score": 0, "verification_level": "basic"}
