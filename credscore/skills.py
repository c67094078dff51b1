"""
Skill gap and career-readiness analysis.

Pure computation over a user's skill inventory and target career goals; it
reads nothing from the database and can run at request time.

Gap priority = importance tier (1-4) + market demand / 25, bucketed
critical >= 6, high >= 5, medium >= 3, otherwise low. Learning time is
linear in gap size (1.6 hours per point, 40 hours per level).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .analyzers.base import round_half_up, round_metric

LEVEL_SCORES = {
    "beginner": 25,
    "intermediate": 50,
    "advanced": 75,
    "expert": 100,
}

IMPORTANCE_TIERS = {
    "nice-to-have": 1,
    "important": 2,
    "critical": 3,
    "must-have": 4,
}

READINESS_WEIGHTS = {
    "nice-to-have": 0.5,
    "important": 1.0,
    "critical": 2.0,
    "must-have": 3.0,
}

MATCH_MULTIPLIERS = {
    "exceeds": 1.2,
    "exact": 1.0,
    "partial": 0.7,
    "transferable": 0.3,
}

TREND_MULTIPLIERS = {
    "declining": 0.5,
    "stable": 1.0,
    "growing": 1.5,
    "exploding": 2.0,
}

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

HOURS_PER_GAP_POINT = 1.6
PARTIAL_MATCH_RATIO = 0.7

LEARNING_PATH_SPLIT = (("course", 0.4), ("project", 0.3), ("practice", 0.3))


def level_score(level: Optional[str]) -> int:
    """Ordinal score of a level name; 0 for no level.

    Raises:
        ValueError: If the level name is unknown
    """
    if level is None:
        return 0
    try:
        return LEVEL_SCORES[level]
    except KeyError:
        raise ValueError(f"Unknown skill level: {level}. Expected one of {', '.join(LEVEL_SCORES)}") from None


@dataclass(frozen=True)
class MarketDemand:
    score: float = 50.0  # 0-100
    trend: str = "stable"
    job_count: int = 0

    def __post_init__(self):
        if self.trend not in TREND_MULTIPLIERS:
            raise ValueError(f"Unknown market trend: {self.trend}")


@dataclass(frozen=True)
class Skill:
    name: str
    category: str = "general"
    market_demand: MarketDemand = field(default_factory=MarketDemand)


@dataclass(frozen=True)
class UserSkill:
    name: str
    level: str
    proficiency_score: float  # 0-100
    verified: bool = False
    source: str = "manual"
    category: str = "general"
    market_demand: MarketDemand = field(default_factory=MarketDemand)

    def __post_init__(self):
        level_score(self.level)


@dataclass(frozen=True)
class RequiredSkill:
    skill: Skill
    target_level: str
    importance: str = "important"

    def __post_init__(self):
        level_score(self.target_level)
        if self.importance not in IMPORTANCE_TIERS:
            raise ValueError(f"Unknown importance: {self.importance}")


@dataclass(frozen=True)
class CareerGoal:
    title: str
    required_skills: Tuple[RequiredSkill, ...] = ()


@dataclass(frozen=True)
class SkillGap:
    skill: str
    current_level: int
    required_level: int
    gap_size: int
    priority: str
    estimated_learning_time: int  # hours
    market_urgency: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill": self.skill,
            "current_level": self.current_level,
            "required_level": self.required_level,
            "gap_size": self.gap_size,
            "priority": self.priority,
            "estimated_learning_time": self.estimated_learning_time,
            "market_urgency": self.market_urgency,
        }


@dataclass
class CareerReadiness:
    goal: str
    readiness_score: int
    matched_skills: Dict[str, str]  # skill name -> match level
    missing_skills: List[str]
    time_to_ready: int
    next_steps: List[str]
    confidence: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "goal": self.goal,
            "readiness_score": self.readiness_score,
            "matched_skills": dict(self.matched_skills),
            "missing_skills": list(self.missing_skills),
            "time_to_ready": self.time_to_ready,
            "next_steps": list(self.next_steps),
            "confidence": self.confidence,
        }


@dataclass
class SkillProfile:
    total_skills: int
    verified_skills: int
    verification_rate: float
    average_proficiency: int
    top_skills: List[str]
    skills_by_category: Dict[str, List[str]]
    strengths: List[str]
    weaknesses: List[str]
    overall_level: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_skills": self.total_skills,
            "verified_skills": self.verified_skills,
            "verification_rate": self.verification_rate,
            "average_proficiency": self.average_proficiency,
            "top_skills": list(self.top_skills),
            "skills_by_category": {k: list(v) for k, v in self.skills_by_category.items()},
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "overall_level": self.overall_level,
        }


@dataclass
class Recommendation:
    skill: str
    priority: str
    learning_path: List[Dict[str, Any]]
    difficulty: str
    quick_wins: List[Dict[str, Any]]
    time_investment: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skill": self.skill,
            "priority": self.priority,
            "learning_path": [dict(step) for step in self.learning_path],
            "difficulty": self.difficulty,
            "quick_wins": [dict(win) for win in self.quick_wins],
            "time_investment": self.time_investment,
        }


@dataclass
class SkillAnalysis:
    profile: SkillProfile
    market_alignment: int
    readiness: List[CareerReadiness]
    gaps: List[SkillGap]
    recommendations: List[Recommendation]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "market_alignment": self.market_alignment,
            "readiness": [r.to_dict() for r in self.readiness],
            "gaps": [g.to_dict() for g in self.gaps],
            "recommendations": [r.to_dict() for r in self.recommendations],
        }


def gap_priority(importance: str, demand_score: float) -> str:
    total = IMPORTANCE_TIERS[importance] + demand_score / 25
    if total >= 6:
        return "critical"
    if total >= 5:
        return "high"
    if total >= 3:
        return "medium"
    return "low"


def learning_hours(gap_size: int) -> int:
    return round_half_up(max(0, gap_size) * HOURS_PER_GAP_POINT)


def match_level(current: int, required: int) -> str:
    if current >= required:
        return "exceeds" if current > required else "exact"
    if current >= required * PARTIAL_MATCH_RATIO:
        return "partial"
    return "transferable"


def confidence_level(readiness: int) -> str:
    if readiness >= 80:
        return "high"
    if readiness >= 60:
        return "medium"
    return "low"


def difficulty_for_gap(gap_size: int) -> str:
    if gap_size <= 25:
        return "beginner"
    if gap_size <= 50:
        return "intermediate"
    if gap_size <= 75:
        return "advanced"
    return "expert"


def overall_level(average_proficiency: float) -> str:
    if average_proficiency >= 75:
        return "expert"
    if average_proficiency >= 50:
        return "advanced"
    if average_proficiency >= 25:
        return "intermediate"
    return "beginner"


def sort_gaps(gaps: Iterable[SkillGap]) -> List[SkillGap]:
    """Priority tier first, then market urgency descending, then skill name."""
    return sorted(gaps, key=lambda g: (PRIORITY_ORDER[g.priority], -g.market_urgency, g.skill))


class SkillGapAnalyzer:
    """Compares a skill inventory against career goals."""

    def analyze(self, user_skills: Sequence[UserSkill], career_goals: Sequence[CareerGoal]) -> SkillAnalysis:
        gaps = self.identify_gaps(user_skills, career_goals)
        return SkillAnalysis(
            profile=self.skill_profile(user_skills),
            market_alignment=self.market_alignment(user_skills),
            readiness=[self.assess_readiness(user_skills, goal) for goal in career_goals],
            gaps=gaps,
            recommendations=[self.recommend(gap) for gap in gaps],
        )

    @staticmethod
    def _index(user_skills: Sequence[UserSkill]) -> Dict[str, UserSkill]:
        return {s.name: s for s in user_skills}

    def identify_gaps(self, user_skills: Sequence[UserSkill], career_goals: Sequence[CareerGoal]) -> List[SkillGap]:
        """
        One gap per required skill that is missing or below target.

        A skill required by several goals yields a single gap: the one with
        the largest size (ties: higher priority).
        """
        owned = self._index(user_skills)
        by_skill: Dict[str, SkillGap] = {}
        for goal in career_goals:
            for required in goal.required_skills:
                user = owned.get(required.skill.name)
                current = level_score(user.level) if user else 0
                target = level_score(required.target_level)
                if current >= target:
                    continue
                size = target - current
                demand = required.skill.market_demand.score
                gap = SkillGap(
                    skill=required.skill.name,
                    current_level=current,
                    required_level=target,
                    gap_size=size,
                    priority=gap_priority(required.importance, demand),
                    estimated_learning_time=learning_hours(size),
                    market_urgency=demand,
                )
                known = by_skill.get(gap.skill)
                if known is None or (gap.gap_size, -PRIORITY_ORDER[gap.priority]) > (
                    known.gap_size, -PRIORITY_ORDER[known.priority]
                ):
                    by_skill[gap.skill] = gap
        return sort_gaps(by_skill.values())

    def assess_readiness(self, user_skills: Sequence[UserSkill], goal: CareerGoal) -> CareerReadiness:
        owned = self._index(user_skills)
        matched: Dict[str, str] = {}
        score = 0.0
        weight = 0.0
        for required in goal.required_skills:
            importance = READINESS_WEIGHTS[required.importance]
            user = owned.get(required.skill.name)
            if user is not None:
                level = match_level(level_score(user.level), level_score(required.target_level))
                matched[required.skill.name] = level
                score += MATCH_MULTIPLIERS[level] * importance
            weight += importance

        readiness = 100 if weight == 0 else min(100, round_half_up(score / weight * 100))
        missing = [r.skill.name for r in goal.required_skills if r.skill.name not in owned]
        goal_gaps = self.identify_gaps(user_skills, [goal])
        return CareerReadiness(
            goal=goal.title,
            readiness_score=readiness,
            matched_skills=matched,
            missing_skills=missing,
            time_to_ready=sum(g.estimated_learning_time for g in goal_gaps),
            next_steps=self.next_steps(owned, goal),
            confidence=confidence_level(readiness),
        )

    @staticmethod
    def next_steps(owned: Dict[str, UserSkill], goal: CareerGoal) -> List[str]:
        steps = []
        urgent = [
            r for r in goal.required_skills
            if r.skill.name not in owned and r.importance in ("must-have", "critical")
        ]
        if urgent:
            steps.append(f"Focus on {urgent[0].skill.name}, it is critical for this role")
        below = [
            r for r in goal.required_skills
            if r.skill.name in owned and level_score(owned[r.skill.name].level) < level_score(r.target_level)
        ]
        if below:
            first = below[0]
            steps.append(
                f"Improve {first.skill.name} from {owned[first.skill.name].level} to {first.target_level}"
            )
        return steps[:3]

    @staticmethod
    def skill_profile(user_skills: Sequence[UserSkill]) -> SkillProfile:
        total = len(user_skills)
        verified = sum(1 for s in user_skills if s.verified)
        average = round_half_up(sum(s.proficiency_score for s in user_skills) / total) if total else 0
        ranked = sorted(user_skills, key=lambda s: (-s.proficiency_score, s.name))
        categories: Dict[str, List[str]] = {}
        for s in sorted(user_skills, key=lambda s: s.name):
            categories.setdefault(s.category, []).append(s.name)
        return SkillProfile(
            total_skills=total,
            verified_skills=verified,
            verification_rate=round_metric(verified / total * 100) if total else 0.0,
            average_proficiency=average,
            top_skills=[s.name for s in ranked[:5]],
            skills_by_category=dict(sorted(categories.items())),
            strengths=[s.name for s in ranked if s.proficiency_score >= 80 and s.verified][:5],
            weaknesses=[
                s.name for s in sorted(user_skills, key=lambda s: (s.proficiency_score, s.name))
                if s.proficiency_score < 50
            ][:5],
            overall_level=overall_level(average),
        )

    @staticmethod
    def market_alignment(user_skills: Sequence[UserSkill]) -> int:
        """Demand-weighted proficiency with trend multipliers; 0 with no demand data."""
        score = 0.0
        weight = 0.0
        for s in user_skills:
            w = s.market_demand.score / 100
            score += s.proficiency_score * w * TREND_MULTIPLIERS[s.market_demand.trend]
            weight += w
        return round_half_up(score / weight) if weight > 0 else 0

    @staticmethod
    def recommend(gap: SkillGap) -> Recommendation:
        hours = gap.estimated_learning_time
        path = [
            {"order": i, "type": kind, "duration": round_metric(hours * share, 1)}
            for i, (kind, share) in enumerate(LEARNING_PATH_SPLIT, start=1)
        ]
        wins = []
        if gap.gap_size <= 25:
            wins.append({"action": "Complete a crash course", "time_required": 8, "impact": "medium"})
        if gap.current_level > 0:
            wins.append({"action": "Build a showcase project", "time_required": 20, "impact": "high"})
        return Recommendation(
            skill=gap.skill,
            priority=gap.priority,
            learning_path=path,
            difficulty=difficulty_for_gap(gap.gap_size),
            quick_wins=wins,
            time_investment=hours,
        )


def _demand_from_dict(data: Optional[Dict[str, Any]]) -> MarketDemand:
    data = data or {}
    return MarketDemand(
        score=float(data.get("score", 50)),
        trend=data.get("trend", "stable"),
        job_count=int(data.get("job_count", 0)),
    )


def user_skill_from_dict(data: Dict[str, Any]) -> UserSkill:
    level = data["level"]
    return UserSkill(
        name=data["name"],
        level=level,
        proficiency_score=float(data.get("proficiency_score", level_score(level))),
        verified=bool(data.get("verified", False)),
        source=data.get("source", "manual"),
        category=data.get("category", "general"),
        market_demand=_demand_from_dict(data.get("market_demand")),
    )


def career_goal_from_dict(data: Dict[str, Any]) -> CareerGoal:
    required = []
    for item in data.get("required_skills", []):
        required.append(RequiredSkill(
            skill=Skill(
                name=item["name"],
                category=item.get("category", "general"),
                market_demand=_demand_from_dict(item.get("market_demand")),
            ),
            target_level=item["target_level"],
            importance=item.get("importance", "important"),
        ))
    return CareerGoal(title=data.get("title", "Untitled goal"), required_skills=tuple(required))


def load_inventory(data: Dict[str, Any]) -> Tuple[List[UserSkill], List[CareerGoal]]:
    """Parse {"skills": [...], "goals": [...]} as accepted by the gaps command.

    Raises:
        ValueError: On unknown levels, importances or trends
        KeyError: On a missing name or level
    """
    skills = [user_skill_from_dict(s) for s in data.get("skills", [])]
    goals = [career_goal_from_dict(g) for g in data.get("goals", [])]
    return skills, goals
