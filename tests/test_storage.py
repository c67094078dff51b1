"""
Tests for profile, status and record persistence.
"""

import pytest
from sqlalchemy import func, select

from credscore.analyzers.base import AnalysisResult
from credscore.database import EducationRecord, SourceProfile, session_scope
from credscore.storage import (
    canonical_json,
    certification_records,
    connect_account,
    education_records,
    get_source_profile,
    get_sync_status,
    ingest_certification,
    ingest_education,
    list_connected_sources,
    profile_metrics,
    set_professional_profile,
    set_sync_status,
    upsert_source_profile,
)

from conftest import NOW


@pytest.fixture
def db(session_factory):
    with session_scope(session_factory) as session:
        yield session


class TestCanonicalJson:
    def test_key_order_does_not_matter(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == canonical_json({"a": [1, 2], "b": 1})

    def test_compact_utf8(self):
        assert canonical_json({"name": "Zürich"}) == '{"name":"Zürich"}'


class TestUpsertSourceProfile:
    """Idempotent profile writes."""

    def test_new_then_no_change(self, db):
        result = AnalysisResult(metrics={"a": 1}, subscore=40, verified=True)

        first = upsert_source_profile(db, "u1", "github", result, fetched_at=NOW)
        second = upsert_source_profile(db, "u1", "github", result, fetched_at=NOW)

        assert first["status"] == "new"
        assert second == {"status": "no-change", "content_hash": first["content_hash"]}

    def test_changed_metrics_update_row(self, db):
        upsert_source_profile(db, "u1", "github", AnalysisResult({"a": 1}, 40), fetched_at=NOW)

        status = upsert_source_profile(db, "u1", "github", AnalysisResult({"a": 2}, 40), fetched_at=NOW)

        assert status["status"] == "updated"
        assert profile_metrics(get_source_profile(db, "u1", "github")) == {"a": 2}

    def test_subscore_change_counts(self, db):
        upsert_source_profile(db, "u1", "github", AnalysisResult({"a": 1}, 40), fetched_at=NOW)
        status = upsert_source_profile(db, "u1", "github", AnalysisResult({"a": 1}, 41), fetched_at=NOW)
        assert status["status"] == "updated"

    def test_one_row_per_user_and_source(self, db):
        for score in (10, 20, 30):
            upsert_source_profile(db, "u1", "github", AnalysisResult({"s": score}, score), fetched_at=NOW)

        assert db.execute(select(func.count()).select_from(SourceProfile)).scalar() == 1
        assert get_source_profile(db, "u1", "github").subscore == 30

    def test_no_profile(self, db):
        assert get_source_profile(db, "u1", "github") is None
        assert profile_metrics(None) == {}


class TestSyncStatus:
    def test_error_cleared_on_success(self, db):
        set_sync_status(db, "u1", "github", "failed", error="boom")
        row = set_sync_status(db, "u1", "github", "completed", last_sync_at=NOW)

        assert row.last_error is None
        assert row.last_sync_at == NOW
        assert get_sync_status(db, "u1", "github").status == "completed"

    def test_failed_keeps_error(self, db):
        assert set_sync_status(db, "u1", "github", "failed", error="boom").last_error == "boom"

    def test_unknown_status(self, db):
        with pytest.raises(ValueError, match="Unknown sync status"):
            set_sync_status(db, "u1", "github", "exploded")


class TestConnectAccount:
    def test_statuses(self, db):
        assert connect_account(db, "u1", "github", "octocat", "t1") == {"status": "new"}
        assert connect_account(db, "u1", "github", "octocat", "t1") == {"status": "no-change"}
        assert connect_account(db, "u1", "github", "octocat", "t2") == {"status": "updated"}

    def test_list_sources(self, db):
        connect_account(db, "u1", "twitter", "jack")
        connect_account(db, "u1", "github", "octocat")
        connect_account(db, "u2", "youtube", "chan")

        assert list_connected_sources(db, "u1") == ["github", "twitter"]


class TestIngestEducation:
    def test_valid_record_stored(self, db, reference, valid_education):
        result = ingest_education(db, "u1", valid_education, reference, now=NOW)

        assert result["status"] == "new"
        assert result["warnings"] == []
        records = education_records(db, "u1")
        assert len(records) == 1
        assert records[0]["id"] == result["record_id"]
        assert records[0]["verified"] is True
        assert records[0]["start_date"] == "2015-09-01T00:00:00"

    def test_invalid_record_not_persisted(self, db, reference, valid_education):
        del valid_education["institution_name"]

        result = ingest_education(db, "u1", valid_education, reference, now=NOW)

        assert result["status"] == "validation_error"
        assert result["record_id"] is None
        assert "Missing required field: institution_name" in result["errors"]
        assert db.execute(select(func.count()).select_from(EducationRecord)).scalar() == 0


class TestIngestCertification:
    def test_valid_certificate(self, db, reference, aws_certificate):
        result = ingest_certification(db, "u1", aws_certificate, reference, now=NOW)

        assert result["status"] == "new"
        stored = certification_records(db, "u1")
        assert stored[0]["verified"] is True
        assert stored[0]["skills"] == ["AWS"]
        assert stored[0]["expiry_date"] == "2026-12-15T00:00:00"

    def test_invalid_certificate(self, db, reference, aws_certificate):
        aws_certificate["expiry_date"] = "2020-01-01"

        result = ingest_certification(db, "u1", aws_certificate, reference, now=NOW)

        assert result["status"] == "validation_error"
        assert certification_records(db, "u1") == []


class TestProfessionalProfile:
    def test_new_then_updated(self, db):
        assert set_professional_profile(db, "u1", 3, "mid") == {"status": "new"}
        assert set_professional_profile(db, "u1", 4, "senior") == {"status": "updated"}

    def test_validation(self, db):
        result = set_professional_profile(db, "u1", -1, "wizard")

        assert result["status"] == "validation_error"
        assert result["errors"] == [
            "years_experience must be a non-negative number",
            "career_stage must be one of student, entry, mid, senior, lead, executive",
        ]
