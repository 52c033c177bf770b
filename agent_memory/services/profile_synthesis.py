"""
Behavioral profile distillation.

A run collects a user's recent signals, scores them deterministically, lets the
text-generation model nudge the result, enforces the eligibility gates, and
persists the outcome as a new profile snapshot:

    collecting -> (no signals: aborted) -> scoring
        -> (model configured: refining | otherwise: deterministic)
        -> gating -> persisted

A failed refinement falls back to the deterministic profile. Only fetch and
persist failures propagate.
"""

import json
import math
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..models.core import MemoryFilters, MemoryRecord
from ..models.profile import (GoalHorizons, ProfileModel, ProfileSnapshot, SectionConfidence, SectionEvidence,
                              SignalAnalysis, SignalStats, TraitTrend)
from ..models.workspace import Space, User, Workspace, resolve_agent_settings
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import ProfileConfig, config
from ..utils.json_utils import extract_json_object
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import DAY_MS, day_key, to_millis, utc_now
from .collaborators import ProfileRenderer, WorkspaceDirectory
from .memory_query import MemoryQueryEngine, MemoryQueryError
from .memory_store import MemoryStore, MemoryStoreError
from .profile_store import ProfileStore
from .signal_analysis import TRAIT_DEFINITIONS, TRAIT_KEYS, analyze_signals, calculate_trends, extract_text

logger = get_logger(__name__)

ALLOWED_SOURCES = [
    'agent-chat',
    'agent-insight',
    'activity-digest',
    'agent-summary',
    'approval-event',
    'project.created',
    'project.updated',
    'comment.created',
    'comment.updated',
    'page.created',
    'page.updated',
    'research-job',
]
JOURNAL_TAGS = frozenset(('journal', 'daily-summary'))

# Eligibility gates
MIN_TRAIT_SIGNALS = 12
MIN_TRAIT_SPAN_DAYS = 30
MIN_TRAIT_DISTINCT_DAYS = 10
MIN_PREFERENCE_JOURNAL_ENTRIES = 5
MIN_SUMMARY_SIGNALS = 3

MAX_TRAIT_ADJUSTMENT = 2
GENERAL_LOG_LINES = 120
JOURNAL_LOG_LINES = 60
REFINEMENT_ATTEMPTS = 1

SUMMARY_FALLBACK = 'Profile generated from behavioral signals.'
SUMMARY_NO_MODEL = 'Profile generated from behavioral signals (AI unavailable).'
SUMMARY_NOT_ENOUGH_DATA = 'Not enough data yet. Add journal entries and project activity to build your profile.'

SYSTEM_PROMPT = 'You are a behavioral analyst for a collaborative workspace. Respond with a single JSON object only.'


class ProfileSynthesisError(Exception):
    """Custom exception for profile distillation errors."""
    pass


class ProfileNotFoundError(ProfileSynthesisError):
    """The requested space or user does not exist."""
    pass


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_journal(memory: MemoryRecord) -> bool:
    return bool(JOURNAL_TAGS.intersection(memory.tags or []))


def compute_signal_stats(memories: List[MemoryRecord], journal: List[MemoryRecord], signal_counts: Dict[str, int]) -> SignalStats:
    """Volume and spread of a signal window."""
    if not memories:
        return SignalStats(total_signals=0, journal_count=0, span_days=0, distinct_days=0, signal_counts={})

    millis = [to_millis(memory.timestamp) for memory in memories]
    span_days = max(1, round_half_up((max(millis) - min(millis)) / DAY_MS))
    distinct_days = len({day_key(memory.timestamp) for memory in memories})
    return SignalStats(total_signals=len(memories),
                       journal_count=len(journal),
                       span_days=span_days,
                       distinct_days=distinct_days,
                       signal_counts=dict(signal_counts))


def clamp_traits(suggested: Any, baseline: Dict[str, float]) -> Dict[str, int]:
    """
    Bound model-suggested traits by the deterministic baseline.

    Each suggestion is clamped to baseline +/- 2 (and 0-10) and rounded; a
    trait the model omits or garbles keeps its rounded baseline.

    Args:
        suggested: Trait mapping returned by the model (untrusted)
        baseline: Deterministic trait scores

    Returns:
        Integer trait scores for every trait key
    """
    suggested = suggested if isinstance(suggested, dict) else {}
    traits = {}
    for key in TRAIT_KEYS:
        score = baseline.get(key, 0.0)
        value = suggested.get(key)
        try:
            value = float(value)
        except (TypeError, ValueError):
            value = None
        if value is None or not math.isfinite(value):
            traits[key] = round_half_up(score)
            continue
        low = max(0.0, score - MAX_TRAIT_ADJUSTMENT)
        high = min(10.0, score + MAX_TRAIT_ADJUSTMENT)
        traits[key] = round_half_up(min(high, max(low, value)))
    return traits


def apply_gates(profile: ProfileModel, allow_traits: bool, allow_preferences: bool, total_signals: int) -> ProfileModel:
    """Strip sections the evidence does not support."""
    if not allow_traits:
        profile.traits = {}
        profile.confidence.traits = 'low'
        profile.evidence.traits = []
    if not allow_preferences:
        profile.preferences = []
        profile.goals = GoalHorizons()
        profile.confidence.preferences = 'low'
        profile.confidence.goals = 'low'
        profile.evidence.preferences = []
        profile.evidence.goals = []
    if total_signals < MIN_SUMMARY_SIGNALS:
        profile.summary = SUMMARY_NOT_ENOUGH_DATA
        profile.confidence.summary = 'low'
        profile.evidence.summary = []
    return profile


def build_evidence_log(memories: Iterable[MemoryRecord], max_items: int) -> str:
    """One line per memory: `- [date] (source=..., tags=a|b|c) text`."""
    lines = []
    for memory in list(memories)[:max_items]:
        tags = [str(tag) for tag in memory.tags or []][:3]
        meta = f'source={memory.source or "unknown"}'
        if tags:
            meta += f', tags={"|".join(tags)}'
        lines.append(f'- [{day_key(memory.timestamp)}] ({meta}) {extract_text(memory)}')
    return '\n'.join(lines)


def build_profile_prompt(space_name: str, general_log: str, journal_log: str, stats: SignalStats, allow_traits: bool,
                         allow_preferences: bool, analysis: SignalAnalysis, trends: List[TraitTrend],
                         prior: Optional[Dict[str, Any]]) -> str:
    """Prompt asking the model to refine the deterministic profile."""
    definitions = []
    for definition in TRAIT_DEFINITIONS:
        rubric = '\n'.join(f'  {low}-{high}: {text}' for low, high, text in definition.rubric)
        definitions.append(f'{definition.name} ({definition.key}): {definition.description}\nRubric:\n{rubric}')

    trends_by_trait = {trend.trait: trend for trend in trends}
    scores = []
    for key in TRAIT_KEYS:
        trend = trends_by_trait.get(key)
        trend_text = f' ({trend.direction}, delta {trend.delta:+.1f})' if trend else ''
        evidence = '; '.join(analysis.trait_evidence.get(key, [])[:3]) or 'none'
        scores.append(f'{key}: {analysis.trait_scores[key]:.1f}/10{trend_text}\n  Evidence: {evidence}')

    patterns = analysis.patterns
    patterns_text = (f'Completion rate: {patterns.completion_rate * 100:.0f}%, '
                     f'Consistency: {patterns.consistency_score * 100:.0f}%, '
                     f'Diversity: {patterns.diversity_score * 100:.0f}%, '
                     f'Collaboration: {patterns.collaboration_score * 100:.0f}%')

    return '\n'.join([
        'Create a refined user profile based on activity signals.',
        '',
        '## Your Task',
        "Analyze the user's behavioral signals and generate a profile JSON. You must:",
        f'1. ADJUST the signal-based trait scores based on qualitative evidence (max +/-{MAX_TRAIT_ADJUSTMENT} points)',
        '2. Identify strengths, challenges, and recommendations based on patterns',
        '3. Extract preferences and goals from journal entries (if available)',
        '4. Provide confidence levels based on evidence quality',
        '',
        '## Trait Definitions & Rubrics',
        '\n\n'.join(definitions),
        '',
        '## Signal-Based Scores (Pre-calculated)',
        f'These scores are computed from behavioral signals. You may adjust by +/-{MAX_TRAIT_ADJUSTMENT} based on qualitative analysis:',
        '\n'.join(scores),
        '',
        '## Behavioral Patterns',
        patterns_text,
        '',
        '## Context',
        f'Space: {space_name}',
        f'Signal stats: total={stats.total_signals}, journal={stats.journal_count}, '
        f'spanDays={stats.span_days}, distinctDays={stats.distinct_days}',
        f'Traits allowed: {allow_traits} (need >={MIN_TRAIT_SIGNALS} signals over >={MIN_TRAIT_SPAN_DAYS} days '
        f'with >={MIN_TRAIT_DISTINCT_DAYS} active days)',
        f'Preferences allowed: {allow_preferences} (need >={MIN_PREFERENCE_JOURNAL_ENTRIES} journal entries)',
        '',
        '## Previous Profile',
        json.dumps(prior) if prior else 'none',
        '',
        '## Activity Log (for qualitative analysis)',
        general_log or 'none',
        '',
        '## Journal Entries (for preferences/goals)',
        journal_log or 'none',
        '',
        '## Output Format',
        'Return ONLY valid JSON with this structure:',
        '{',
        '  "summary": "2-3 sentence profile summary",',
        '  "traits": { "focus": 0-10, "execution": 0-10, ... },',
        '  "strengths": ["strength 1", ...],',
        '  "challenges": ["challenge 1", ...],',
        '  "preferences": ["preference 1", ...],',
        '  "constraints": ["constraint 1", ...],',
        '  "goals": { "shortTerm": [...], "midTerm": [...], "longTerm": [...] },',
        '  "risks": ["risk 1", ...],',
        '  "focusAreas": ["area 1", ...],',
        '  "recommendations": ["recommendation 1", ...],',
        '  "confidence": { "summary": "low|medium|high", "traits": "...", "preferences": "...", "goals": "..." },',
        '  "evidence": { "summary": [...], "traits": [...], "preferences": [...], "goals": [...] }',
        '}',
        '',
        'If traits not allowed, use empty {} for traits. If preferences not allowed, use empty arrays.',
    ])


class ProfileSynthesizer:
    """Distills behavioral profiles from a user's memories."""

    def __init__(self,
                 query_engine: Optional[MemoryQueryEngine] = None,
                 memory_store: Optional[MemoryStore] = None,
                 profile_store: Optional[ProfileStore] = None,
                 llm: Optional[BedrockLLM] = None,
                 directory: Optional[WorkspaceDirectory] = None,
                 renderer: Optional[ProfileRenderer] = None,
                 profile_config: Optional[ProfileConfig] = None):
        """
        Initialize the synthesizer.

        Args:
            query_engine: Memory read paths (built from config if None)
            memory_store: Memory ingestion (built from config if None)
            profile_store: Snapshot persistence (built on the two above if None)
            llm: Text generation for refinement; built from config when enabled and None
            directory: Space and user lookups for the distillation entry points
            renderer: Optional publisher of the rendered profile
            profile_config: ProfileConfig, uses the global config if None
        """
        self.profile_config = profile_config or config.profile
        self.query_engine = query_engine or MemoryQueryEngine()
        self.memory_store = memory_store or MemoryStore()
        self.profile_store = profile_store or ProfileStore(self.query_engine, self.memory_store)
        if llm is None and self.profile_config.llm_enabled:
            llm = BedrockLLM(config.bedrock_llm)
        self.llm = llm
        self.directory = directory
        self.renderer = renderer

        logger.info(f'Initialized ProfileSynthesizer (refinement {"enabled" if self.llm else "disabled"})')

    def collect_signals(self, space: Space, user: User) -> List[MemoryRecord]:
        """
        Fetch the user's signal window, newest first.

        The primary window is widened to the extended window when it holds fewer
        signals than the trait gate needs; on duplicate ids the primary copy wins.
        """
        now = utc_now()
        filters = MemoryFilters(workspace_id=space.workspace_id,
                                space_id=space.id,
                                creator_id=user.id,
                                sources=list(ALLOWED_SOURCES),
                                limit=self.profile_config.fetch_limit)

        memories = self.query_engine.list_memories(
            replace(filters, from_time=now - timedelta(days=self.profile_config.primary_window_days)))
        if len(memories) >= MIN_TRAIT_SIGNALS:
            return memories

        extended = self.query_engine.list_memories(
            replace(filters, from_time=now - timedelta(days=self.profile_config.extended_window_days)))
        merged = {memory.id: memory for memory in memories}
        for memory in extended:
            merged.setdefault(memory.id, memory)
        logger.debug(f'Widened signal window for user {user.id}: {len(memories)} -> {len(merged)} signals')
        return sorted(merged.values(), key=lambda m: (to_millis(m.timestamp), m.id), reverse=True)

    def generate_profile(self, space: Space, user: User) -> Optional[ProfileSnapshot]:
        """
        Run one distillation for a user in a space.

        Args:
            space: Space, carrying the workspace settings in effect
            user: User to profile

        Returns:
            The persisted snapshot, or None when insights are disabled or there are no signals

        Raises:
            ProfileSynthesisError: If fetching signals or persisting the profile fails
        """
        settings = resolve_agent_settings(space.settings)
        if not settings.enabled or not settings.enable_memory_insights:
            logger.debug(f'Memory insights disabled for space {space.id}')
            return None

        try:
            memories = self.collect_signals(space, user)
        except MemoryQueryError as e:
            raise ProfileSynthesisError(f'Signal fetch failed for user {user.id}: {e}')

        if not memories:
            logger.debug(f'No signals for user {user.id} in space {space.id}; aborting')
            return None

        journal = [memory for memory in memories if is_journal(memory)]
        analysis = analyze_signals(memories,
                                   expected_sources=self.profile_config.expected_sources,
                                   collaboration_ratio=self.profile_config.collaboration_ratio)
        stats = compute_signal_stats(memories, journal, analysis.signal_counts)
        allow_traits = (stats.total_signals >= MIN_TRAIT_SIGNALS and stats.span_days >= MIN_TRAIT_SPAN_DAYS
                        and stats.distinct_days >= MIN_TRAIT_DISTINCT_DAYS)
        allow_preferences = stats.journal_count >= MIN_PREFERENCE_JOURNAL_ENTRIES

        try:
            prior = self.profile_store.latest(space.workspace_id, space.id, user.id)
        except MemoryQueryError as e:
            raise ProfileSynthesisError(f'Previous profile lookup failed for user {user.id}: {e}')

        prior_traits = prior.get('traits') if prior and isinstance(prior.get('traits'), dict) else None
        trends = calculate_trends(analysis.trait_scores, prior_traits)
        logger.debug(f'Scored {stats.total_signals} signals for user {user.id} '
                     f'(allow_traits={allow_traits}, allow_preferences={allow_preferences})')

        refined = False
        if self.llm is None:
            evidence = [line for key in TRAIT_KEYS for line in analysis.trait_evidence[key]][:5]
            profile = self._deterministic_profile(analysis, allow_traits, SUMMARY_NO_MODEL, evidence)
        else:
            try:
                profile = self._refine(space, memories, journal, stats, allow_traits, allow_preferences, analysis, trends,
                                       prior)
                refined = True
            except (BedrockLLMError, ProfileSynthesisError) as e:
                logger.warning(f'Profile refinement failed for user {user.id} in space {space.id}: {e}')
                profile = self._deterministic_profile(analysis, allow_traits, SUMMARY_FALLBACK,
                                                      analysis.trait_evidence['focus'][:3])

        profile = apply_gates(profile, allow_traits, allow_preferences, stats.total_signals)
        profile.trait_trends = trends
        profile.patterns = analysis.patterns

        try:
            record = self.profile_store.save(space, user, profile, stats)
        except MemoryStoreError as e:
            raise ProfileSynthesisError(f'Profile persist failed for user {user.id}: {e}')

        if self.renderer is not None:
            try:
                self.renderer.publish(space, user, profile)
            except Exception as e:
                logger.warning(f'Profile rendering failed for user {user.id} in space {space.id}: {e}')

        return ProfileSnapshot(profile=profile,
                               stats=stats,
                               allow_traits=allow_traits,
                               allow_preferences=allow_preferences,
                               refined=refined,
                               memory_id=record.id)

    def _deterministic_profile(self, analysis: SignalAnalysis, allow_traits: bool, summary: str,
                               trait_evidence: List[str]) -> ProfileModel:
        return ProfileModel(summary=summary,
                            traits={key: round_half_up(analysis.trait_scores[key]) for key in TRAIT_KEYS},
                            confidence=SectionConfidence(summary='low', traits='medium' if allow_traits else 'low'),
                            evidence=SectionEvidence(traits=list(trait_evidence)))

    def _refine(self, space: Space, memories: List[MemoryRecord], journal: List[MemoryRecord], stats: SignalStats,
                allow_traits: bool, allow_preferences: bool, analysis: SignalAnalysis, trends: List[TraitTrend],
                prior: Optional[Dict[str, Any]]) -> ProfileModel:
        prompt = build_profile_prompt(space.name, build_evidence_log(memories, GENERAL_LOG_LINES),
                                      build_evidence_log(journal, JOURNAL_LOG_LINES), stats, allow_traits,
                                      allow_preferences, analysis, trends, prior)
        # Refinement is best effort: one attempt, then the deterministic fallback
        response = self.llm.generate_text(prompt, SYSTEM_PROMPT, attempts=REFINEMENT_ATTEMPTS)

        data = extract_json_object(response)
        if data is None:
            raise ProfileSynthesisError('Refinement response did not contain a JSON object')

        profile = ProfileModel.from_dict(data)
        profile.traits = clamp_traits(data.get('traits'), analysis.trait_scores)
        return profile

    def _require_space(self, workspace: Workspace, space_id: str) -> Space:
        if self.directory is None:
            raise ProfileSynthesisError('No workspace directory configured')

        space = self.directory.get_space(space_id)
        if space is None or space.workspace_id != workspace.id:
            raise ProfileNotFoundError(f'Space {space_id} not found in workspace {workspace.id}')
        return replace(space, settings=workspace.settings)

    def distill_for_user(self, workspace: Workspace, space_id: str, user_id: str) -> Optional[ProfileSnapshot]:
        """
        Distill the profile of one user.

        Raises:
            ProfileNotFoundError: If the space or the user does not exist
        """
        space = self._require_space(workspace, space_id)
        user = self.directory.get_user(user_id)
        if user is None:
            raise ProfileNotFoundError(f'User {user_id} not found')
        return self.generate_profile(space, user)

    def distill_for_space(self, workspace: Workspace, space_id: str) -> List[ProfileSnapshot]:
        """Distill the profile of every active member of a space."""
        space = self._require_space(workspace, space_id)
        snapshots = []
        for user in self.directory.list_space_members(space.id):
            snapshot = self.generate_profile(space, user)
            if snapshot is not None:
                snapshots.append(snapshot)
        return snapshots

    def run_profile_distillation(self, spaces: Iterable[Space]) -> int:
        """
        Distill profiles for every member of every space.

        A failing space is logged and skipped.

        Args:
            spaces: Spaces, each carrying its workspace settings

        Returns:
            Number of profiles persisted
        """
        if self.directory is None:
            raise ProfileSynthesisError('No workspace directory configured')

        persisted = 0
        for space in spaces:
            try:
                for user in self.directory.list_space_members(space.id):
                    if self.generate_profile(space, user) is not None:
                        persisted += 1
            except ProfileSynthesisError as e:
                logger.warning(f'Profile distillation failed for space {space.id}: {e}')

        logger.info(f'Profile distillation persisted {persisted} profiles')
        return persisted
