"""
Credibility aggregation.

Combines already-persisted per-source sub-scores into five category scores
and one weighted overall score. Nothing here calls a provider; recomputing
is cheap and idempotent.

Weights:
- education 25%: degree level, GPA, recognized institutions, verification
- experience 30%: years of experience, career stage, profile completeness
- technical 20%: repository activity, code quality, consistency, languages
- social 15%: audience, engagement, platform diversity, influence
- certification 10%: verified credentials, trusted issuers, recency
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from .analyzers import SOCIAL_SOURCES
from .analyzers.base import clamp_score, round_half_up, round_metric
from .database import CredibilityScoreRecord, ProfessionalProfile, SourceProfile, utcnow
from .logger import get_logger
from .storage import get_source_profile, profile_metrics

logger = get_logger()

CATEGORY_WEIGHTS = {
    "education": 0.25,
    "experience": 0.30,
    "technical": 0.20,
    "social": 0.15,
    "certification": 0.10,
}

VERIFICATION_LEVELS = (
    (85, "elite"),
    (70, "premium"),
    (50, "verified"),
)

STAGE_POINTS = {
    "executive": 35,
    "lead": 30,
    "senior": 25,
    "mid": 20,
    "entry": 10,
    "student": 5,
}


@dataclass
class CategoryScore:
    score: float
    factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": round_metric(self.score),
            "factors": {k: round_metric(v) for k, v in self.factors.items()},
        }


@dataclass
class CredibilityResult:
    user_id: str
    overall_score: int
    education_score: int
    experience_score: int
    technical_score: int
    social_score: int
    certification_score: int
    verification_level: str
    badges: List[str]
    breakdown: Dict[str, Any]
    calculated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "overall_score": self.overall_score,
            "education_score": self.education_score,
            "experience_score": self.experience_score,
            "technical_score": self.technical_score,
            "social_score": self.social_score,
            "certification_score": self.certification_score,
            "verification_level": self.verification_level,
            "badges": list(self.badges),
            "breakdown": self.breakdown,
            "calculated_at": self.calculated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: CredibilityScoreRecord) -> "CredibilityResult":
        return cls(
            user_id=record.user_id,
            overall_score=record.overall_score,
            education_score=record.education_score,
            experience_score=record.experience_score,
            technical_score=record.technical_score,
            social_score=record.social_score,
            certification_score=record.certification_score,
            verification_level=record.verification_level,
            badges=list(record.badges or []),
            breakdown=dict(record.breakdown or {}),
            calculated_at=record.calculated_at,
        )


def weighted_overall(categories: Mapping[str, float]) -> int:
    """Round(sum of category score x weight). Missing categories count as 0."""
    total = sum(float(categories.get(name, 0)) * weight for name, weight in CATEGORY_WEIGHTS.items())
    return clamp_score(total)


def verification_level(score: float) -> str:
    for threshold, level in VERIFICATION_LEVELS:
        if score >= threshold:
            return level
    return "basic"


def education_category(profile: Optional[SourceProfile]) -> CategoryScore:
    if profile is None:
        return CategoryScore(0, {"verified_degrees": 0, "average_gpa": 0, "institution_quality": 0})
    m = profile_metrics(profile)
    return CategoryScore(profile.subscore, {
        "verified_degrees": m.get("verified_count", 0) * 20,
        "average_gpa": m.get("average_gpa", 0.0) * 7.5,
        "institution_quality": m.get("top_institutions", 0) * 10,
    })


def experience_category(profile: Optional[ProfessionalProfile]) -> CategoryScore:
    if profile is None:
        return CategoryScore(0, {"years_of_experience": 0, "role_level": 0, "industry_relevance": 0})
    years = min(40.0, (profile.years_experience or 0) * 4)
    role = STAGE_POINTS.get(profile.career_stage or "entry", 10)
    relevance = 0
    if profile.title:
        relevance += 8
    if profile.company:
        relevance += 8
    if profile.location:
        relevance += 9
    return CategoryScore(min(100.0, years + role + relevance), {
        "years_of_experience": years,
        "role_level": role,
        "industry_relevance": relevance,
    })


def technical_category(metrics: Optional[Mapping[str, Any]]) -> CategoryScore:
    """Repository activity, quality and consistency scores plus language diversity, capped at 100."""
    if not metrics:
        return CategoryScore(0, {"activity": 0, "code_quality": 0, "consistency": 0, "language_diversity": 0})
    activity = (
        min(20.0, metrics.get("total_repos", 0) * 0.5)
        + min(15.0, metrics.get("commits_last_365_days", 0) * 0.001)
        + min(10.0, metrics.get("total_prs", 0) * 0.5)
        + min(10.0, metrics.get("total_stars", 0) * 0.1)
    )
    quality = float(metrics.get("quality_score", 0))
    consistency = float(metrics.get("consistency_score", 0))
    diversity = min(20.0, len(metrics.get("languages") or {}) * 4)
    return CategoryScore(min(100.0, activity + quality + consistency + diversity), {
        "activity": activity,
        "code_quality": quality,
        "consistency": consistency,
        "language_diversity": diversity,
    })


def social_category(profiles: List[Mapping[str, Any]]) -> CategoryScore:
    """
    Combined presence across social platforms.

    Each entry is the stored metrics of one platform; only followers,
    engagement_rate and influence_score are read.
    """
    if not profiles:
        return CategoryScore(0, {"total_followers": 0, "engagement": 0, "platform_diversity": 0, "influence": 0})
    total_followers = sum(int(p.get("followers") or 0) for p in profiles)
    followers = min(35.0, math.log10(total_followers + 1) * 10)
    rates = [float(p["engagement_rate"]) for p in profiles if (p.get("engagement_rate") or 0) > 0]
    engagement = min(25.0, (sum(rates) / len(rates)) * 2.5) if rates else 0.0
    diversity = min(20.0, len(profiles) * 5)
    avg_influence = sum(float(p.get("influence_score") or 0) for p in profiles) / len(profiles)
    influence = min(20.0, avg_influence * 0.2)
    return CategoryScore(min(100.0, followers + engagement + diversity + influence), {
        "total_followers": followers,
        "engagement": engagement,
        "platform_diversity": diversity,
        "influence": influence,
    })


def certification_category(profile: Optional[SourceProfile]) -> CategoryScore:
    if profile is None:
        return CategoryScore(0, {"verified_certs": 0, "prestige": 0, "recency": 0})
    m = profile_metrics(profile)
    return CategoryScore(profile.subscore, {
        "verified_certs": m.get("verified_count", 0) * 10,
        "prestige": m.get("trusted_issuers", 0) * 12,
        "recency": m.get("recent_certifications", 0) * 8,
    })


def calculate_badges(categories: Mapping[str, CategoryScore]) -> List[str]:
    """Badges earned from category factors, in a fixed order."""
    edu = categories["education"].factors
    exp = categories["experience"].factors
    tech = categories["technical"].factors
    social = categories["social"].factors
    cert = categories["certification"].factors

    rules = [
        ("Academic Excellence", edu.get("verified_degrees", 0) >= 40),
        ("Top Institution Graduate", edu.get("institution_quality", 0) >= 30),
        ("Industry Veteran", exp.get("years_of_experience", 0) >= 30),
        ("Leadership Role", exp.get("role_level", 0) >= 30),
        ("Active Developer", tech.get("activity", 0) >= 40),
        ("Polyglot Developer", tech.get("language_diversity", 0) >= 16),
        ("Code Quality Champion", tech.get("code_quality", 0) >= 80),
        ("Social Influencer", social.get("total_followers", 0) >= 25),
        ("Multi-Platform Presence", social.get("platform_diversity", 0) >= 15),
        ("Certified Professional", cert.get("verified_certs", 0) >= 30),
        ("Elite Certification Holder", cert.get("prestige", 0) >= 24),
        ("Complete Profile", all(c.score > 0 for c in categories.values())),
    ]
    return [name for name, earned in rules if earned]


def compute_overall_score(session: Session, user_id: str, now: Optional[datetime] = None) -> CredibilityResult:
    """
    Recompute and store a user's credibility score from persisted profiles.

    Args:
        session: Open session; the caller commits
        user_id: User to score
        now: Calculation timestamp (defaults to current UTC time)
    """
    now = now or utcnow()
    github = get_source_profile(session, user_id, "github")
    socials = [
        profile_metrics(p)
        for p in (get_source_profile(session, user_id, s) for s in SOCIAL_SOURCES)
        if p is not None
    ]
    categories = {
        "education": education_category(get_source_profile(session, user_id, "education")),
        "experience": experience_category(session.get(ProfessionalProfile, user_id)),
        "technical": technical_category(profile_metrics(github) if github is not None else None),
        "social": social_category(socials),
        "certification": certification_category(get_source_profile(session, user_id, "certification")),
    }

    overall = weighted_overall({name: c.score for name, c in categories.items()})
    level = verification_level(overall)
    badges = calculate_badges(categories)
    breakdown = {name: c.to_dict() for name, c in categories.items()}

    result = CredibilityResult(
        user_id=user_id,
        overall_score=overall,
        education_score=round_half_up(categories["education"].score),
        experience_score=round_half_up(categories["experience"].score),
        technical_score=round_half_up(categories["technical"].score),
        social_score=round_half_up(categories["social"].score),
        certification_score=round_half_up(categories["certification"].score),
        verification_level=level,
        badges=badges,
        breakdown=breakdown,
        calculated_at=now,
    )

    record = session.get(CredibilityScoreRecord, user_id)
    if record is None:
        record = CredibilityScoreRecord(user_id=user_id)
        session.add(record)
    record.overall_score = result.overall_score
    record.education_score = result.education_score
    record.experience_score = result.experience_score
    record.technical_score = result.technical_score
    record.social_score = result.social_score
    record.certification_score = result.certification_score
    record.verification_level = level
    record.badges = badges
    record.breakdown = breakdown
    record.calculated_at = now
    session.flush()

    logger.info("Credibility score calculated", user_id=user_id, overall=overall, level=level)
    return result


def get_credibility_score(session: Session, user_id: str, force: bool = False,
                          now: Optional[datetime] = None) -> CredibilityResult:
    """Stored score of a user, recomputed when missing or when force is set."""
    if not force:
        record = session.get(CredibilityScoreRecord, user_id)
        if record is not None:
            return CredibilityResult.from_record(record)
    return compute_overall_score(session, user_id, now=now)
