"""Source analyzers: raw evidence in, normalized metrics and a 0-100 sub-score out."""

from .base import AnalysisResult
from .certification import analyze_certifications, classify_certificate
from .education import analyze_education, classify_education
from .github import analyze_github
from .social import analyze_instagram, analyze_twitter, analyze_youtube

# Platform analyzers take (snapshot, as_of)
PLATFORM_ANALYZERS = {
    "github": analyze_github,
    "instagram": analyze_instagram,
    "twitter": analyze_twitter,
    "youtube": analyze_youtube,
}

SOCIAL_SOURCES = ("instagram", "twitter", "youtube")
