"""
Versioned trust reference datasets.

Recognized institutions, trusted certificate issuers and the skill keyword
dictionary live in JSON files under credscore/data/ so they can be updated
without touching scoring code. Set CREDSCORE_REFERENCE_DIR to load a
different copy of the files.
"""

import json
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple
from urllib.parse import urlparse


@dataclass(frozen=True)
class Institution:
    name: str
    country: str
    ranking: int
    trust_score: int
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Issuer:
    name: str
    domain: str
    trust_score: int
    type: str
    verification_url: Optional[str] = None
    aliases: Tuple[str, ...] = ()

    def owns_url(self, url: Optional[str]) -> bool:
        """True if url's host is the issuer's domain or one of its subdomains."""
        if not url:
            return False
        try:
            host = (urlparse(url).hostname or "").lower()
        except ValueError:
            return False
        domain = self.domain.lower()
        return host == domain or host.endswith("." + domain)


@dataclass(frozen=True)
class ReferenceData:
    institutions_version: str
    issuers_version: str
    skills_version: str
    institutions: Tuple[Institution, ...]
    issuers: Tuple[Issuer, ...]
    skill_keywords: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def version(self) -> str:
        return f"institutions={self.institutions_version};issuers={self.issuers_version};skills={self.skills_version}"

    def match_institution(self, name: str) -> Optional[Institution]:
        """Recognized institution named in `name`, longest match wins."""
        return _best_match(name, ((i, (i.name,) + i.aliases) for i in self.institutions))

    def match_issuer(self, name: str) -> Optional[Issuer]:
        """Trusted issuer named in `name`, longest match wins."""
        return _best_match(name, ((i, (i.name,) + i.aliases) for i in self.issuers))

    def extract_skills(self, *texts: Optional[str]) -> FrozenSet[str]:
        """Canonical skill names whose keywords occur as whole words in texts."""
        haystack = " ".join(t for t in texts if t).lower()
        if not haystack:
            return frozenset()
        return frozenset(
            skill
            for skill, keywords in self.skill_keywords.items()
            if any(_contains_phrase(haystack, kw) for kw in keywords)
        )


def _contains_phrase(haystack: str, phrase: str) -> bool:
    # \b fails next to symbols such as "c++" or ".net", so use lookarounds
    pattern = r"(?<![\w])" + re.escape(phrase.lower()) + r"(?![\w])"
    return re.search(pattern, haystack) is not None


def _best_match(name: str, candidates):
    if not name:
        return None
    haystack = name.lower()
    best = None
    best_len = 0
    for entry, names in candidates:
        for candidate in names:
            if len(candidate) > best_len and _contains_phrase(haystack, candidate):
                best, best_len = entry, len(candidate)
    return best


def _read_json(filename: str, base_dir: Optional[Path]) -> dict:
    if base_dir is not None:
        text = (base_dir / filename).read_text(encoding="utf-8")
    else:
        text = resources.files("credscore").joinpath("data", filename).read_text(encoding="utf-8")
    return json.loads(text)


def load_reference_data(base_dir: Optional[Path] = None) -> ReferenceData:
    """
    Load the reference datasets.

    Args:
        base_dir: Directory holding institutions.json, issuers.json and
            skill_keywords.json (default: packaged copies)

    Raises:
        FileNotFoundError: If a dataset file is missing
        KeyError: If a dataset lacks its version or entries
    """
    institutions = _read_json("institutions.json", base_dir)
    issuers = _read_json("issuers.json", base_dir)
    skills = _read_json("skill_keywords.json", base_dir)

    return ReferenceData(
        institutions_version=institutions["version"],
        issuers_version=issuers["version"],
        skills_version=skills["version"],
        institutions=tuple(
            Institution(
                name=i["name"],
                country=i.get("country", ""),
                ranking=int(i.get("ranking", 0)),
                trust_score=int(i["trust_score"]),
                aliases=tuple(a.lower() for a in i.get("aliases", [])),
            )
            for i in institutions["institutions"]
        ),
        issuers=tuple(
            Issuer(
                name=i["name"],
                domain=i["domain"],
                trust_score=int(i["trust_score"]),
                type=i.get("type", "other"),
                verification_url=i.get("verification_url"),
                aliases=tuple(a.lower() for a in i.get("aliases", [])),
            )
            for i in issuers["issuers"]
        ),
        skill_keywords={
            skill: tuple(k.lower() for k in keywords)
            for skill, keywords in sorted(skills["skills"].items())
        },
    )


@lru_cache(maxsize=1)
def _cached_default(env_dir: Optional[str]) -> ReferenceData:
    return load_reference_data(Path(env_dir) if env_dir else None)


def get_reference_data() -> ReferenceData:
    """Process-wide reference data, honoring CREDSCORE_REFERENCE_DIR."""
    return _cached_default(os.getenv("CREDSCORE_REFERENCE_DIR") or None)