"""
Behavioral profile models produced by signal analysis and profile distillation.

Profiles are persisted as memory content, so every model converts to and from
the camelCase dictionary stored under `content['profile']`.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

CONFIDENCE_LEVELS = ('low', 'medium', 'high')


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item)]


@dataclass
class BehavioralPatterns:
    """Batch-level behavior metrics, each in [0, 1]."""
    completion_rate: float = 0.0
    consistency_score: float = 0.0
    diversity_score: float = 0.0
    collaboration_score: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            'completionRate': self.completion_rate,
            'consistencyScore': self.consistency_score,
            'diversityScore': self.diversity_score,
            'collaborationScore': self.collaboration_score,
        }


@dataclass
class TraitTrend:
    trait: str
    current: float
    previous: float
    delta: float
    direction: str  # improving | stable | declining

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trait': self.trait,
            'current': self.current,
            'previous': self.previous,
            'delta': self.delta,
            'direction': self.direction,
        }


@dataclass
class SignalAnalysis:
    """Deterministic output of analyzing a batch of memories."""
    trait_scores: Dict[str, float]
    trait_evidence: Dict[str, List[str]]
    signal_counts: Dict[str, int]
    patterns: BehavioralPatterns


@dataclass
class GoalHorizons:
    short_term: List[str] = field(default_factory=list)
    mid_term: List[str] = field(default_factory=list)
    long_term: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {'shortTerm': list(self.short_term), 'midTerm': list(self.mid_term), 'longTerm': list(self.long_term)}

    @classmethod
    def from_dict(cls, data: Any) -> 'GoalHorizons':
        data = data if isinstance(data, dict) else {}
        return cls(short_term=_string_list(data.get('shortTerm')),
                   mid_term=_string_list(data.get('midTerm')),
                   long_term=_string_list(data.get('longTerm')))


@dataclass
class SectionConfidence:
    summary: str = 'low'
    traits: str = 'low'
    preferences: str = 'low'
    goals: str = 'low'

    def to_dict(self) -> Dict[str, str]:
        return {'summary': self.summary, 'traits': self.traits, 'preferences': self.preferences, 'goals': self.goals}

    @classmethod
    def from_dict(cls, data: Any) -> 'SectionConfidence':
        data = data if isinstance(data, dict) else {}

        def level(key: str) -> str:
            value = str(data.get(key) or 'low').strip().lower()
            return value if value in CONFIDENCE_LEVELS else 'low'

        return cls(summary=level('summary'), traits=level('traits'), preferences=level('preferences'), goals=level('goals'))


@dataclass
class SectionEvidence:
    summary: List[str] = field(default_factory=list)
    traits: List[str] = field(default_factory=list)
    preferences: List[str] = field(default_factory=list)
    goals: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            'summary': list(self.summary),
            'traits': list(self.traits),
            'preferences': list(self.preferences),
            'goals': list(self.goals),
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'SectionEvidence':
        data = data if isinstance(data, dict) else {}
        return cls(summary=_string_list(data.get('summary')),
                   traits=_string_list(data.get('traits')),
                   preferences=_string_list(data.get('preferences')),
                   goals=_string_list(data.get('goals')))


@dataclass
class ProfileModel:
    """Replaceable snapshot of a user's behavioral profile within a space."""
    summary: str = ''
    traits: Dict[str, int] = field(default_factory=dict)
    strengths: List[str] = field(default_factory=list)
    challenges: List[str] = field(default_factory=list)
    preferences: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    goals: GoalHorizons = field(default_factory=GoalHorizons)
    risks: List[str] = field(default_factory=list)
    focus_areas: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    confidence: SectionConfidence = field(default_factory=SectionConfidence)
    evidence: SectionEvidence = field(default_factory=SectionEvidence)
    trait_trends: List[TraitTrend] = field(default_factory=list)
    patterns: Optional[BehavioralPatterns] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary,
            'traits': dict(self.traits),
            'strengths': list(self.strengths),
            'challenges': list(self.challenges),
            'preferences': list(self.preferences),
            'constraints': list(self.constraints),
            'goals': self.goals.to_dict(),
            'risks': list(self.risks),
            'focusAreas': list(self.focus_areas),
            'recommendations': list(self.recommendations),
            'confidence': self.confidence.to_dict(),
            'evidence': self.evidence.to_dict(),
            'traitTrends': [trend.to_dict() for trend in self.trait_trends],
            'patterns': self.patterns.to_dict() if self.patterns else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'ProfileModel':
        """Build a profile from an untrusted dictionary (LLM output or persisted content).

        Narrative fields are coerced to string lists. Traits are left out here;
        callers validate them against the trait vocabulary.
        """
        data = data if isinstance(data, dict) else {}
        return cls(summary=str(data.get('summary') or ''),
                   strengths=_string_list(data.get('strengths')),
                   challenges=_string_list(data.get('challenges')),
                   preferences=_string_list(data.get('preferences')),
                   constraints=_string_list(data.get('constraints')),
                   goals=GoalHorizons.from_dict(data.get('goals')),
                   risks=_string_list(data.get('risks')),
                   focus_areas=_string_list(data.get('focusAreas')),
                   recommendations=_string_list(data.get('recommendations')),
                   confidence=SectionConfidence.from_dict(data.get('confidence')),
                   evidence=SectionEvidence.from_dict(data.get('evidence')))


@dataclass
class SignalStats:
    total_signals: int
    journal_count: int
    span_days: int
    distinct_days: int
    signal_counts: Dict[str, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalSignals': self.total_signals,
            'journalCount': self.journal_count,
            'spanDays': self.span_days,
            'distinctDays': self.distinct_days,
            'signalCounts': dict(self.signal_counts),
        }


@dataclass
class ProfileSnapshot:
    """Result of one distillation run."""
    profile: ProfileModel
    stats: SignalStats
    allow_traits: bool
    allow_preferences: bool
    refined: bool  # True when the qualitative refinement step succeeded
    memory_id: str
