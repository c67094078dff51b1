"""
Certification analyzer.

A certificate is verified only when its issuer is in the trusted-issuer
reference set AND its credential URL points at that issuer's domain.

Category score (0-100): count (6 each, up to 30) + verified share (30) +
certificates issued in the last two years (10 each, up to 20) + skill
diversity (2 per distinct skill, up to 20).
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List

from ..reference import ReferenceData
from ..schema import parse_date
from .base import AnalysisResult, round_half_up, round_metric

UNKNOWN_ISSUER_TRUST = 50
EXPIRED_PENALTY = 20
CREDENTIAL_BONUS = 10
RECENT_YEARS = 2


def years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:  # Feb 29
        return moment.replace(year=moment.year - years, day=28)


def classify_certificate(
    record: Dict[str, Any],
    reference: ReferenceData,
    as_of: datetime,
) -> Dict[str, Any]:
    """
    Issuer trust, verification and extracted skills for one certificate.

    Assumes the record already passed schema.validate_certificate.
    """
    issuer = reference.match_issuer(record.get("issuer") or "")
    warnings: List[str] = []

    if issuer is not None:
        trust = issuer.trust_score
    else:
        trust = UNKNOWN_ISSUER_TRUST
        warnings.append("Issuer not in trusted list - manual verification required")

    expiry = parse_date(record.get("expiry_date"))
    if expiry is not None and expiry < as_of:
        warnings.append("Certificate has expired")
        trust = max(0, trust - EXPIRED_PENALTY)

    url = record.get("credential_url")
    credential_verified = issuer is not None and issuer.owns_url(url)
    if credential_verified:
        trust = min(100, trust + CREDENTIAL_BONUS)
    elif record.get("credential_id") and not url:
        warnings.append("Credential ID provided but no verification URL")
    elif url and issuer is not None:
        warnings.append(f"Credential URL does not match issuer domain {issuer.domain}")

    return {
        "issuer": issuer.name if issuer else None,
        "issuer_type": issuer.type if issuer else "other",
        "trust_score": trust,
        "verified": credential_verified,
        "verification_method": "trusted_issuer" if credential_verified else "manual_review",
        "skills": sorted(reference.extract_skills(record.get("name"), record.get("issuer"))),
        "warnings": warnings,
    }


def expiring_certifications(
    records: List[Dict[str, Any]],
    as_of: datetime,
    days_ahead: int = 90,
) -> List[Dict[str, Any]]:
    """Certificates still valid at as_of that expire within days_ahead, soonest first."""
    horizon = as_of + timedelta(days=days_ahead)
    expiring = []
    for r in records:
        expiry = parse_date(r.get("expiry_date"))
        if expiry is not None and as_of <= expiry <= horizon:
            expiring.append((expiry, r))
    return [r for _, r in sorted(expiring, key=lambda pair: pair[0])]


def analyze_certifications(
    records: List[Dict[str, Any]],
    reference: ReferenceData,
    as_of: datetime,
) -> AnalysisResult:
    """Certification category score for all of a user's certificates."""
    if not records:
        return AnalysisResult(
            metrics={
                "certification_count": 0,
                "verified_count": 0,
                "trusted_issuers": 0,
                "recent_certifications": 0,
                "diversity_score": 0,
                "overall_score": 0,
            },
            subscore=0,
            limitations=["no certifications"],
        )

    count = len(records)
    verified_count = sum(1 for r in records if r.get("verified"))

    trusted = {
        r.get("issuer")
        for r in records
        if reference.match_issuer(r.get("issuer") or "") is not None
    }

    cutoff = years_before(as_of, RECENT_YEARS)
    recent = 0
    by_year: Counter = Counter()
    for r in records:
        issued = parse_date(r.get("issue_date"))
        if issued is None:
            continue
        by_year[str(issued.year)] += 1
        if issued >= cutoff:
            recent += 1

    skills = set()
    for r in records:
        stored = r.get("skills")
        if stored is None:
            stored = reference.extract_skills(r.get("name"), r.get("issuer"))
        skills.update(stored)
    diversity = min(100, len(skills) * 10)

    count_points = min(30, count * 6)
    verification_points = min(30, verified_count / count * 30)
    recency_points = min(20, recent * 10)
    diversity_points = min(20, diversity / 5)
    score = min(100, round_half_up(count_points + verification_points + recency_points + diversity_points))

    by_type: Counter = Counter()
    for r in records:
        issuer = reference.match_issuer(r.get("issuer") or "")
        by_type[issuer.type if issuer else "other"] += 1

    expiring = expiring_certifications(records, as_of)
    metrics = {
        "certification_count": count,
        "verified_count": verified_count,
        "trusted_issuers": len(trusted),
        "recent_certifications": recent,
        "diversity_score": diversity,
        "skills": sorted(skills),
        "overall_score": score,
        "expired": sum(
            1 for r in records
            if parse_date(r.get("expiry_date")) is not None and parse_date(r.get("expiry_date")) < as_of
        ),
        "expiring_soon": [r.get("name") for r in expiring],
        "by_type": dict(sorted(by_type.items())),
        "by_issuer": dict(sorted(Counter(r.get("issuer") for r in records).items())),
        "by_year": dict(sorted(by_year.items())),
        "score_components": {
            "count": round_metric(count_points),
            "verification": round_metric(verification_points),
            "recency": round_metric(recency_points),
            "diversity": round_metric(diversity_points),
        },
    }
    return AnalysisResult(
        metrics=metrics,
        subscore=score,
        verified=verified_count > 0,
    )
