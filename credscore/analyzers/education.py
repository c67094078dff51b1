"""
Education analyzer.

Category score (0-100) over all of a user's education records:
highest degree (40) + normalized GPA (25) + recognized institutions
(10 each, up to 20) + share of verified records (15).
"""

import re
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..reference import ReferenceData
from ..schema import education_warnings, parse_date
from .base import AnalysisResult, round_half_up, round_metric, years_between

DEGREE_SCORES = {
    "High School": 20,
    "Diploma": 30,
    "Associate": 40,
    "Bachelor's": 60,
    "Master's": 80,
    "Professional Degree": 85,
    "PhD": 100,
}

# Checked in order; first match wins
DEGREE_PATTERNS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("PhD", ("phd", "ph.d", "ph.d.", "doctorate", "doctor of philosophy", "dphil")),
    ("Master's", ("master", "masters", "master's", "msc", "m.sc", "ma", "m.a.", "mba", "m.tech",
                  "mtech", "ms", "m.s.", "meng", "m.eng", "mca")),
    ("Bachelor's", ("bachelor", "bachelors", "bachelor's", "bsc", "b.sc", "ba", "b.a.", "b.tech",
                    "btech", "be", "b.e.", "bs", "b.s.", "beng", "b.eng", "bca", "bba")),
    ("Associate", ("associate",)),
    ("Diploma", ("diploma",)),
    ("High School", ("high school", "secondary", "higher secondary")),
    ("Professional Degree", ("md", "m.d.", "jd", "j.d.", "professional degree")),
)

GPA_SCALES = (4.0, 10.0, 100.0)

INSTITUTION_POINTS = 10
MAX_INSTITUTION_POINTS = 20


def _has_term(text: str, term: str) -> bool:
    return re.search(r"(?<![\w])" + re.escape(term) + r"(?![\w])", text) is not None


def detect_degree_level(degree: str) -> Optional[str]:
    """Degree level named in free text, None if unrecognized."""
    text = (degree or "").lower()
    for level, terms in DEGREE_PATTERNS:
        if any(_has_term(text, term) for term in terms):
            return level
    return None


def detect_gpa_scale(gpa: float) -> float:
    """Smallest supported scale the value fits in: 4, 10 or 100."""
    for scale in GPA_SCALES:
        if gpa <= scale:
            return scale
    return GPA_SCALES[-1]


def normalize_gpa(gpa: float, scale: Optional[float] = None) -> float:
    """GPA on the 4.0 scale, auto-detecting the input scale when not given."""
    scale = scale or detect_gpa_scale(gpa)
    return min(4.0, max(0.0, gpa / scale * 4.0))


def classify_education(record: Dict[str, Any], reference: ReferenceData) -> Dict[str, Any]:
    """
    Institution trust and warnings for one education record.

    Recognized institutions carry their reference trust score and mark the
    record verified; unknown ones get trust 50 and a manual-review warning.
    """
    institution = reference.match_institution(record.get("institution_name") or "")
    warnings = education_warnings(record)
    if institution is None:
        warnings.insert(0, "Institution not in recognized list - manual verification recommended")
    return {
        "institution": institution.name if institution else None,
        "trust_score": institution.trust_score if institution else 50,
        "verified": institution is not None,
        "verification_source": "recognized_institution" if institution else None,
        "degree_level": detect_degree_level(record.get("degree") or ""),
        "warnings": warnings,
    }


def analyze_education(
    records: List[Dict[str, Any]],
    reference: ReferenceData,
    as_of: datetime,
) -> AnalysisResult:
    """Education category score for all of a user's records."""
    if not records:
        return AnalysisResult(
            metrics={
                "education_count": 0,
                "verified_count": 0,
                "highest_degree": "None",
                "average_gpa": 0.0,
                "top_institutions": 0,
                "overall_score": 0,
            },
            subscore=0,
            limitations=["no education records"],
        )

    verified_count = sum(1 for r in records if r.get("verified"))

    highest, highest_score = "None", 0
    by_degree: Counter = Counter()
    for r in records:
        level = detect_degree_level(r.get("degree") or "")
        by_degree[level or "Other"] += 1
        if level and DEGREE_SCORES[level] > highest_score:
            highest, highest_score = level, DEGREE_SCORES[level]

    gpas = [normalize_gpa(float(r["gpa"])) for r in records if r.get("gpa") is not None]
    average_gpa = sum(gpas) / len(gpas) if gpas else 0.0

    recognized = [r for r in records if reference.match_institution(r.get("institution_name") or "")]

    degree_points = highest_score / 100 * 40
    gpa_points = average_gpa / 4.0 * 25
    institution_points = min(MAX_INSTITUTION_POINTS, len(recognized) * INSTITUTION_POINTS)
    verification_points = verified_count / len(records) * 15
    score = min(100, round_half_up(degree_points + gpa_points + institution_points + verification_points))

    total_years = 0.0
    for r in records:
        start = parse_date(r.get("start_date"))
        end = parse_date(r.get("end_date")) or as_of
        if start is not None:
            total_years += years_between(start, end)

    limitations = []
    if not gpas:
        limitations.append("no GPA reported")

    metrics = {
        "education_count": len(records),
        "verified_count": verified_count,
        "highest_degree": highest,
        "average_gpa": round_metric(average_gpa),
        "top_institutions": len(recognized),
        "overall_score": score,
        "ongoing": sum(1 for r in records if not r.get("end_date")),
        "years_of_education": round_metric(total_years, 1),
        "by_degree": dict(sorted(by_degree.items())),
        "by_field": dict(sorted(Counter(r["field"] for r in records if r.get("field")).items())),
        "by_institution": dict(sorted(Counter(r.get("institution_name") for r in records).items())),
        "score_components": {
            "degree": round_metric(degree_points),
            "gpa": round_metric(gpa_points),
            "institution": round_metric(institution_points),
            "verification": round_metric(verification_points),
        },
    }
    return AnalysisResult(
        metrics=metrics,
        subscore=score,
        verified=verified_count > 0,
        limitations=limitations,
    )
