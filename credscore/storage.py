"""
Persistence helpers for profiles, sync status and submitted records.

Profile writes are idempotent: metrics are stored as canonical JSON and a
write whose content hash, sub-score and verified flag match the stored row
reports "no-change" and leaves the row untouched.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .analyzers import AnalysisResult, classify_certificate, classify_education
from .database import (
    CertificationRecord,
    ConnectedAccount,
    EducationRecord,
    ProfessionalProfile,
    SourceProfile,
    SyncStatus,
    utcnow,
)
from .reference import ReferenceData
from .schema import parse_date, validate_certificate, validate_education_record

CAREER_STAGES = ("student", "entry", "mid", "senior", "lead", "executive")

SYNC_STATUSES = ("pending", "processing", "completed", "failed")


def canonical_json(data: Any) -> str:
    """Deterministic JSON: sorted keys, fixed separators, UTF-8 kept as is."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def get_source_profile(session: Session, user_id: str, source: str) -> Optional[SourceProfile]:
    return session.execute(
        select(SourceProfile).where(SourceProfile.user_id == user_id, SourceProfile.source == source)
    ).scalar_one_or_none()


def profile_metrics(profile: Optional[SourceProfile]) -> Dict[str, Any]:
    return json.loads(profile.metrics) if profile is not None else {}


def upsert_source_profile(
    session: Session,
    user_id: str,
    source: str,
    result: AnalysisResult,
    fetched_at: datetime,
    next_sync_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Replace the stored profile of (user, source) with an analysis result.

    Returns:
        {"status": "new" | "updated" | "no-change", "content_hash": ...}
    """
    metrics = canonical_json(result.metrics)
    digest = content_hash(metrics)
    profile = get_source_profile(session, user_id, source)

    if profile is None:
        session.add(SourceProfile(
            user_id=user_id,
            source=source,
            metrics=metrics,
            content_hash=digest,
            subscore=result.subscore,
            verified=result.verified,
            last_fetched_at=fetched_at,
            next_sync_at=next_sync_at,
        ))
        session.flush()
        return {"status": "new", "content_hash": digest}

    if (
        profile.content_hash == digest
        and profile.subscore == result.subscore
        and profile.verified == result.verified
    ):
        return {"status": "no-change", "content_hash": digest}

    profile.metrics = metrics
    profile.content_hash = digest
    profile.subscore = result.subscore
    profile.verified = result.verified
    profile.last_fetched_at = fetched_at
    profile.next_sync_at = next_sync_at
    session.flush()
    return {"status": "updated", "content_hash": digest}


def get_sync_status(session: Session, user_id: str, source: str) -> Optional[SyncStatus]:
    return session.execute(
        select(SyncStatus).where(SyncStatus.user_id == user_id, SyncStatus.source == source)
    ).scalar_one_or_none()


def set_sync_status(
    session: Session,
    user_id: str,
    source: str,
    status: str,
    job_id: Optional[str] = None,
    error: Optional[str] = None,
    last_sync_at: Optional[datetime] = None,
    next_sync_at: Optional[datetime] = None,
) -> SyncStatus:
    """Create or update the per-source status row read by the UI layer.

    `error` is kept for "failed" and for "pending" (a retry is scheduled
    after a failed attempt); other statuses clear it.
    """
    if status not in SYNC_STATUSES:
        raise ValueError(f"Unknown sync status: {status}")
    row = get_sync_status(session, user_id, source)
    if row is None:
        row = SyncStatus(user_id=user_id, source=source)
        session.add(row)
    row.status = status
    row.last_error = error if status in ("failed", "pending") else None
    if job_id is not None:
        row.last_job_id = job_id
    if last_sync_at is not None:
        row.last_sync_at = last_sync_at
    if next_sync_at is not None:
        row.next_sync_at = next_sync_at
    session.flush()
    return row


def list_sync_statuses(session: Session, user_id: str) -> List[SyncStatus]:
    return list(session.execute(
        select(SyncStatus).where(SyncStatus.user_id == user_id).order_by(SyncStatus.source)
    ).scalars())


def connect_account(
    session: Session,
    user_id: str,
    source: str,
    identifier: str,
    access_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Store the identifier and credential of a user's platform account."""
    row = get_connected_account(session, user_id, source)
    if row is None:
        session.add(ConnectedAccount(
            user_id=user_id, source=source, identifier=identifier, access_token=access_token
        ))
        session.flush()
        return {"status": "new"}
    if row.identifier == identifier and row.access_token == access_token:
        return {"status": "no-change"}
    row.identifier = identifier
    row.access_token = access_token
    session.flush()
    return {"status": "updated"}


def get_connected_account(session: Session, user_id: str, source: str) -> Optional[ConnectedAccount]:
    return session.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.user_id == user_id, ConnectedAccount.source == source
        )
    ).scalar_one_or_none()


def list_connected_sources(session: Session, user_id: str) -> List[str]:
    return list(session.execute(
        select(ConnectedAccount.source)
        .where(ConnectedAccount.user_id == user_id)
        .order_by(ConnectedAccount.source)
    ).scalars())


def ingest_education(
    session: Session,
    user_id: str,
    data: Dict[str, Any],
    reference: ReferenceData,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Validate and store one education record.

    Invalid records are never persisted; the caller gets the errors back
    synchronously instead.
    """
    now = now or utcnow()
    errors = validate_education_record(data, now=now)
    if errors:
        return {"record_id": None, "status": "validation_error", "errors": errors}

    info = classify_education(data, reference)
    row = EducationRecord(
        user_id=user_id,
        institution_name=data["institution_name"].strip(),
        degree=data["degree"].strip(),
        field=(data.get("field") or "").strip() or None,
        gpa=float(data["gpa"]) if data.get("gpa") is not None else None,
        start_date=parse_date(data["start_date"]),
        end_date=parse_date(data.get("end_date")),
        credential_id=data.get("credential_id"),
        verified=info["verified"],
        verification_source=info["verification_source"],
        trust_score=info["trust_score"],
        degree_level=info["degree_level"],
        warnings=info["warnings"],
        created_at=now,
    )
    session.add(row)
    session.flush()
    return {"record_id": row.id, "status": "new", "warnings": info["warnings"]}


def ingest_certification(
    session: Session,
    user_id: str,
    data: Dict[str, Any],
    reference: ReferenceData,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Validate and store one certificate, same contract as ingest_education."""
    now = now or utcnow()
    errors = validate_certificate(data, now=now)
    if errors:
        return {"record_id": None, "status": "validation_error", "errors": errors}

    info = classify_certificate(data, reference, now)
    row = CertificationRecord(
        user_id=user_id,
        name=data["name"].strip(),
        issuer=data["issuer"].strip(),
        issue_date=parse_date(data["issue_date"]),
        expiry_date=parse_date(data.get("expiry_date")),
        credential_id=data.get("credential_id"),
        credential_url=data.get("credential_url"),
        verified=info["verified"],
        verification_method=info["verification_method"],
        trust_score=info["trust_score"],
        skills=info["skills"],
        warnings=info["warnings"],
        created_at=now,
    )
    session.add(row)
    session.flush()
    return {"record_id": row.id, "status": "new", "warnings": info["warnings"]}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def education_records(session: Session, user_id: str) -> List[Dict[str, Any]]:
    """Education rows as plain dicts, oldest id first."""
    rows = session.execute(
        select(EducationRecord).where(EducationRecord.user_id == user_id).order_by(EducationRecord.id)
    ).scalars()
    return [
        {
            "id": r.id,
            "institution_name": r.institution_name,
            "degree": r.degree,
            "field": r.field,
            "gpa": r.gpa,
            "start_date": _iso(r.start_date),
            "end_date": _iso(r.end_date),
            "verified": bool(r.verified),
            "trust_score": r.trust_score,
        }
        for r in rows
    ]


def certification_records(session: Session, user_id: str) -> List[Dict[str, Any]]:
    """Certification rows as plain dicts, oldest id first."""
    rows = session.execute(
        select(CertificationRecord)
        .where(CertificationRecord.user_id == user_id)
        .order_by(CertificationRecord.id)
    ).scalars()
    return [
        {
            "id": r.id,
            "name": r.name,
            "issuer": r.issuer,
            "issue_date": _iso(r.issue_date),
            "expiry_date": _iso(r.expiry_date),
            "credential_id": r.credential_id,
            "credential_url": r.credential_url,
            "verified": bool(r.verified),
            "trust_score": r.trust_score,
            "skills": list(r.skills or []),
        }
        for r in rows
    ]


def set_professional_profile(
    session: Session,
    user_id: str,
    years_experience: float,
    career_stage: Optional[str] = None,
    title: Optional[str] = None,
    company: Optional[str] = None,
    location: Optional[str] = None,
) -> Dict[str, Any]:
    errors = []
    if years_experience is None or years_experience < 0:
        errors.append("years_experience must be a non-negative number")
    if career_stage is not None and career_stage not in CAREER_STAGES:
        errors.append(f"career_stage must be one of {', '.join(CAREER_STAGES)}")
    if errors:
        return {"status": "validation_error", "errors": errors}

    row = session.get(ProfessionalProfile, user_id)
    status = "updated"
    if row is None:
        row = ProfessionalProfile(user_id=user_id)
        session.add(row)
        status = "new"
    row.years_experience = float(years_experience)
    row.career_stage = career_stage
    row.title = title
    row.company = company
    row.location = location
    session.flush()
    return {"status": status}
