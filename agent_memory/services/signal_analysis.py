"""
Deterministic signal-to-trait scoring.

A batch of memories is matched against a static table of signal mappings; the
matched weights, plus bonuses derived from batch-level behavior patterns, are
normalized onto a 0-10 scale per trait with a logarithmic curve so that very
active users do not saturate every trait. Everything here is pure.
"""

import math
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..models.core import MemoryRecord
from ..models.profile import BehavioralPatterns, SignalAnalysis, TraitTrend
from ..utils.timestamp_utils import DAY_MS, day_key, to_millis

TRAIT_KEYS = ('focus', 'execution', 'creativity', 'communication', 'leadership', 'learning', 'resilience')

# Raw totals at which a trait reaches 10
MAX_EXPECTED = {
    'focus': 50,
    'execution': 40,
    'creativity': 35,
    'communication': 30,
    'leadership': 25,
    'learning': 40,
    'resilience': 35,
}

EVIDENCE_PER_TRAIT = 5
EVIDENCE_SNIPPET_LENGTH = 80
TREND_THRESHOLD = 0.5

CREATION_SOURCES = ('project.created', 'page.created')
COMPLETION_SOURCES = ('project.updated',)
COMMENT_SOURCES = ('comment.created', 'comment.updated')


@dataclass(frozen=True)
class TraitDefinition:
    key: str
    name: str
    description: str
    rubric: Tuple[Tuple[int, int, str], ...]


TRAIT_DEFINITIONS = (
    TraitDefinition('focus', 'Focus', 'Ability to maintain concentrated attention on tasks and resist distractions', (
        (9, 10, 'Exceptional focus - deep work mastery, minimal distractions'),
        (7, 8, 'Strong focus - sustained attention, rare interruptions'),
        (5, 6, 'Moderate focus - reasonable concentration with some drift'),
        (3, 4, 'Developing focus - frequent context switching'),
        (0, 2, 'Limited focus - highly fragmented attention'),
    )),
    TraitDefinition('execution', 'Execution', 'Ability to complete tasks, deliver results, and follow through on commitments', (
        (9, 10, 'Exceptional execution - ships consistently, high completion rate'),
        (7, 8, 'Strong execution - reliable delivery, good follow-through'),
        (5, 6, 'Moderate execution - completes most important items'),
        (3, 4, 'Developing execution - inconsistent completion'),
        (0, 2, 'Limited execution - difficulty completing tasks'),
    )),
    TraitDefinition('creativity', 'Creativity', 'Ability to generate novel ideas, make unexpected connections, and innovate', (
        (9, 10, 'Highly creative - consistent innovation, original thinking'),
        (7, 8, 'Creative - regular novel ideas, good synthesis'),
        (5, 6, 'Moderately creative - occasional innovation'),
        (3, 4, 'Developing creativity - follows patterns with variations'),
        (0, 2, 'Limited creativity - primarily conventional approaches'),
    )),
    TraitDefinition('communication', 'Communication', 'Ability to express ideas clearly, collaborate, and engage with others', (
        (9, 10, 'Excellent communicator - clear, engaged, collaborative'),
        (7, 8, 'Strong communicator - good clarity and engagement'),
        (5, 6, 'Adequate communication - functional but limited'),
        (3, 4, 'Developing communication - inconsistent engagement'),
        (0, 2, 'Limited communication - minimal interaction'),
    )),
    TraitDefinition('leadership', 'Leadership', 'Ability to guide initiatives, make decisions, and influence outcomes', (
        (9, 10, 'Strong leader - drives vision, coordinates effectively'),
        (7, 8, 'Capable leader - takes initiative, guides work'),
        (5, 6, 'Emerging leader - leads when needed'),
        (3, 4, 'Developing leadership - occasional initiative'),
        (0, 2, 'Limited leadership - primarily follows direction'),
    )),
    TraitDefinition('learning', 'Learning', 'Ability to acquire new knowledge, adapt, and grow skills over time', (
        (9, 10, 'Voracious learner - constant growth, curious explorer'),
        (7, 8, 'Active learner - regularly acquiring new knowledge'),
        (5, 6, 'Moderate learner - learns when necessary'),
        (3, 4, 'Passive learner - occasional growth'),
        (0, 2, 'Limited learning - rarely explores new areas'),
    )),
    TraitDefinition('resilience', 'Resilience',
                    'Ability to persist through challenges, recover from setbacks, and maintain momentum', (
                        (9, 10, 'Highly resilient - persists through adversity, adapts'),
                        (7, 8, 'Resilient - good recovery, sustained effort'),
                        (5, 6, 'Moderate resilience - handles typical setbacks'),
                        (3, 4, 'Developing resilience - struggles with obstacles'),
                        (0, 2, 'Limited resilience - easily derailed'),
                    )),
)


@dataclass(frozen=True)
class SignalMapping:
    """Trait weights contributed by memories of one source.

    A memory matches when its source is equal, it carries at least one of the
    required tags (if any), and its text matches at least one pattern (if any).
    """
    source: str
    weights: Mapping[str, float]
    description: str
    tags: Tuple[str, ...] = ()
    patterns: Tuple[re.Pattern, ...] = field(default=())

    def __post_init__(self):
        object.__setattr__(self, 'weights', MappingProxyType(dict(self.weights)))

    def matches(self, source: str, tags: Iterable[str], text: str) -> bool:
        if source != self.source:
            return False
        if self.tags and not set(self.tags).intersection(tags):
            return False
        if self.patterns and not any(pattern.search(text) for pattern in self.patterns):
            return False
        return True


SIGNAL_MAPPINGS = (
    SignalMapping('project.updated', {'execution': 2, 'focus': 1, 'resilience': 1},
                  'Completed project work',
                  patterns=(re.compile(r'completed|done|finished|shipped', re.IGNORECASE), )),
    SignalMapping('project.created', {'leadership': 1.5, 'creativity': 1, 'execution': 0.5}, 'Created new project'),
    SignalMapping('page.created', {'creativity': 1, 'execution': 0.5, 'communication': 0.5}, 'Created new page'),
    SignalMapping('page.updated', {'execution': 0.5, 'focus': 0.5}, 'Updated page content'),
    SignalMapping('comment.created', {'communication': 1.5, 'leadership': 0.5}, 'Added comment'),
    SignalMapping('comment.updated', {'communication': 0.5}, 'Updated comment'),
    SignalMapping('agent-chat', {'learning': 1, 'creativity': 0.5}, 'Engaged with AI agent'),
    SignalMapping('agent-insight', {'learning': 1.5, 'focus': 0.5}, 'Received agent insight'),
    SignalMapping('research-job', {'learning': 2, 'creativity': 1, 'focus': 1}, 'Conducted research'),
    SignalMapping('approval-event', {'leadership': 1.5, 'execution': 1}, 'Approved or made decision'),
    SignalMapping('activity-digest', {'focus': 1, 'resilience': 0.5}, 'Sustained activity session'),
    SignalMapping('agent-summary', {'focus': 0.5, 'execution': 0.5}, 'Activity summary generated'),
    SignalMapping('page.created', {'focus': 1, 'resilience': 1, 'learning': 0.5},
                  'Created journal entry',
                  tags=('journal', 'daily-summary')),
)


def extract_text(memory: MemoryRecord) -> str:
    """Text used for pattern matching and evidence: string content, then content['text'], then the summary."""
    content = memory.content
    if isinstance(content, str):
        return content
    if isinstance(content, dict) and content.get('text'):
        return str(content['text'])
    return memory.summary or ''


def normalize_score(raw: float, max_expected: float) -> float:
    """
    Map a raw trait total onto 0-10 with diminishing returns.

    Args:
        raw: Accumulated trait weight
        max_expected: Raw total that maps to 10

    Returns:
        Score rounded to one decimal, clamped to [0, 10]
    """
    if raw <= 0:
        return 0.0
    normalized = math.log(1 + raw) / math.log(1 + max_expected) * 10
    # Half-up to one decimal
    return min(10.0, max(0.0, math.floor(normalized * 10 + 0.5) / 10))


def compute_patterns(memories: List[MemoryRecord], signal_counts: Dict[str, int],
                     expected_sources: int = 8, collaboration_ratio: float = 0.2) -> BehavioralPatterns:
    """Batch-level behavior metrics, each clamped to [0, 1]."""
    if not memories:
        return BehavioralPatterns()

    created = sum(signal_counts.get(source, 0) for source in CREATION_SOURCES)
    completed = sum(signal_counts.get(source, 0) for source in COMPLETION_SOURCES)
    # Without creation signals there is nothing to measure completion against
    completion_rate = min(1.0, completed / created) if created > 0 else 0.5

    millis = [to_millis(memory.timestamp) for memory in memories]
    span_days = (max(millis) - min(millis)) / DAY_MS
    distinct_days = len({day_key(memory.timestamp) for memory in memories})
    consistency_score = min(1.0, distinct_days / max(span_days, 1))

    diversity_score = min(1.0, len(signal_counts) / expected_sources)

    comments = sum(signal_counts.get(source, 0) for source in COMMENT_SOURCES)
    collaboration_score = min(1.0, comments / (len(memories) * collaboration_ratio))

    return BehavioralPatterns(completion_rate=completion_rate,
                              consistency_score=consistency_score,
                              diversity_score=diversity_score,
                              collaboration_score=collaboration_score)


def analyze_signals(memories: List[MemoryRecord], expected_sources: int = 8, collaboration_ratio: float = 0.2) -> SignalAnalysis:
    """
    Score a batch of memories against the signal mappings.

    Args:
        memories: Memories to analyze, in any order
        expected_sources: Distinct source count that maps to full diversity
        collaboration_ratio: Share of comment signals that maps to full collaboration

    Returns:
        SignalAnalysis with per-trait scores (0-10), evidence, per-source counts and patterns
    """
    raw = {trait: 0.0 for trait in TRAIT_KEYS}
    evidence: Dict[str, List[str]] = {trait: [] for trait in TRAIT_KEYS}
    signal_counts: Dict[str, int] = {}

    for memory in memories:
        source = memory.source or 'unknown'
        tags = [str(tag) for tag in memory.tags or []]
        text = extract_text(memory)
        signal_counts[source] = signal_counts.get(source, 0) + 1

        for mapping in SIGNAL_MAPPINGS:
            if not mapping.matches(source, tags, text):
                continue
            for trait, weight in mapping.weights.items():
                raw[trait] += weight
                if len(evidence[trait]) < EVIDENCE_PER_TRAIT:
                    snippet = text[:EVIDENCE_SNIPPET_LENGTH] or mapping.description
                    evidence[trait].append(f'[{day_key(memory.timestamp)}] {snippet}')

    patterns = compute_patterns(memories, signal_counts, expected_sources, collaboration_ratio)

    raw['execution'] += patterns.completion_rate * 3
    raw['focus'] += patterns.consistency_score * 2
    raw['resilience'] += patterns.consistency_score * 2
    raw['creativity'] += patterns.diversity_score * 2
    raw['communication'] += patterns.collaboration_score * 3

    scores = {trait: normalize_score(raw[trait], MAX_EXPECTED[trait]) for trait in TRAIT_KEYS}
    return SignalAnalysis(trait_scores=scores, trait_evidence=evidence, signal_counts=signal_counts, patterns=patterns)


def calculate_trends(current: Dict[str, float], previous: Optional[Dict[str, float]] = None) -> List[TraitTrend]:
    """
    Compare trait scores against a prior snapshot.

    A trait missing from the prior snapshot is compared against itself, so it
    shows as stable rather than as a jump from zero.
    """
    previous = previous or {}
    trends = []
    for trait in TRAIT_KEYS:
        current_score = float(current.get(trait) or 0)
        prior = previous.get(trait)
        previous_score = float(prior) if isinstance(prior, (int, float)) and not isinstance(prior, bool) else current_score
        delta = round(current_score - previous_score, 2)
        if delta >= TREND_THRESHOLD:
            direction = 'improving'
        elif delta <= -TREND_THRESHOLD:
            direction = 'declining'
        else:
            direction = 'stable'
        trends.append(TraitTrend(trait=trait, current=current_score, previous=previous_score, delta=delta, direction=direction))
    return trends
