from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fakes import make_record

from agent_memory.services.signal_analysis import (MAX_EXPECTED, SIGNAL_MAPPINGS, TRAIT_KEYS, analyze_signals,
                                                   calculate_trends, extract_text, normalize_score)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def days_ago(days):
    return NOW - timedelta(days=days)


def test_empty_batch_scores_zero():
    analysis = analyze_signals([])

    assert analysis.trait_scores == {trait: 0.0 for trait in TRAIT_KEYS}
    assert analysis.signal_counts == {}
    assert analysis.patterns.completion_rate == 0.0
    assert analysis.patterns.consistency_score == 0.0
    assert analysis.patterns.diversity_score == 0.0
    assert analysis.patterns.collaboration_score == 0.0
    assert all(evidence == [] for evidence in analysis.trait_evidence.values())


def test_normalize_score_bounds_and_monotonicity():
    assert normalize_score(0, 50) == 0.0
    assert normalize_score(-3, 50) == 0.0
    assert normalize_score(50, 50) == 10.0
    assert normalize_score(10000, 25) == 10.0

    previous = 0.0
    for raw in (0.5, 1, 2, 5, 10, 20, 40):
        score = normalize_score(raw, 40)
        assert score >= previous
        previous = score


def test_single_comment_scores():
    analysis = analyze_signals([make_record('comment.created', NOW, text='Looks good to me')])

    # 1.5 mapped + 3 collaboration bonus
    assert analysis.trait_scores['communication'] == 5.0
    assert analysis.trait_scores['leadership'] == 1.2
    # no creation signals, so completion is neutral (0.5 * 3)
    assert analysis.trait_scores['execution'] == 2.5
    assert analysis.trait_scores['learning'] == 0.0
    assert analysis.signal_counts == {'comment.created': 1}


def test_content_pattern_required_for_completed_work():
    shipped = analyze_signals([make_record('project.updated', NOW, text='Shipped the beta')])
    renamed = analyze_signals([make_record('project.updated', NOW, text='Renamed the project')])

    assert shipped.trait_evidence['execution'] == ['[2026-03-10] Shipped the beta']
    assert renamed.trait_evidence['execution'] == []
    assert shipped.trait_scores['execution'] > renamed.trait_scores['execution']
    assert renamed.signal_counts == {'project.updated': 1}


def test_journal_page_matches_both_page_mappings():
    analysis = analyze_signals([make_record('page.created', NOW, text='Morning notes', tags=['journal'])])

    assert analysis.trait_evidence['learning'] == ['[2026-03-10] Morning notes']
    assert analysis.trait_evidence['creativity'] == ['[2026-03-10] Morning notes']

    plain = analyze_signals([make_record('page.created', NOW, text='Morning notes')])
    assert plain.trait_evidence['learning'] == []


def test_evidence_is_capped_and_truncated():
    long_text = 'x' * 200
    memories = [make_record('comment.created', days_ago(i), text=long_text) for i in range(8)]

    evidence = analyze_signals(memories).trait_evidence['communication']

    assert len(evidence) == 5
    assert evidence[0] == '[2026-03-10] ' + 'x' * 80


def test_evidence_falls_back_to_mapping_description():
    analysis = analyze_signals([make_record('comment.created', NOW, summary='')])

    assert analysis.trait_evidence['communication'] == ['[2026-03-10] Added comment']


def test_extract_text_precedence():
    record = make_record('agent-chat', NOW, text='from content', summary='from summary')
    assert extract_text(record) == 'from content'

    record.content = 'raw string'
    assert extract_text(record) == 'raw string'

    record.content = {'other': 1}
    assert extract_text(record) == 'from summary'


def test_completion_rate():
    memories = [make_record('project.created', days_ago(i)) for i in range(3)]
    memories += [make_record('project.updated', days_ago(i), text='done') for i in range(3)]
    assert analyze_signals(memories).patterns.completion_rate == 1.0

    memories = [make_record('project.created', days_ago(i)) for i in range(4)]
    memories.append(make_record('project.updated', NOW, text='done'))
    assert analyze_signals(memories).patterns.completion_rate == pytest.approx(0.25)

    assert analyze_signals([make_record('agent-chat', NOW)]).patterns.completion_rate == 0.5


def test_consistency_diversity_and_collaboration():
    memories = [
        make_record('agent-chat', days_ago(0)),
        make_record('agent-insight', days_ago(5)),
        make_record('research-job', days_ago(10)),
        make_record('comment.created', days_ago(10)),
        make_record('agent-chat', days_ago(10)),
    ]
    patterns = analyze_signals(memories).patterns

    assert patterns.consistency_score == pytest.approx(0.3)
    assert patterns.diversity_score == pytest.approx(0.5)
    assert patterns.collaboration_score == pytest.approx(1.0)

    memories += [make_record('agent-chat', days_ago(1)) for _ in range(5)]
    assert analyze_signals(memories).patterns.collaboration_score == pytest.approx(0.5)


def test_more_signals_never_lower_scores():
    base = [make_record('research-job', days_ago(i)) for i in range(3)]
    more = base + [make_record('research-job', days_ago(i)) for i in range(3)]

    fewer_scores = analyze_signals(base).trait_scores
    more_scores = analyze_signals(more).trait_scores

    assert more_scores['learning'] > fewer_scores['learning']
    assert all(0.0 <= score <= 10.0 for score in more_scores.values())


def test_max_expected_covers_every_trait():
    assert set(MAX_EXPECTED) == set(TRAIT_KEYS)


def test_trends_against_previous_profile():
    current = {trait: 5.0 for trait in TRAIT_KEYS}
    previous = {'focus': 4, 'execution': 6, 'creativity': 4.8}

    trends = {trend.trait: trend for trend in calculate_trends(current, previous)}

    assert trends['focus'].direction == 'improving'
    assert trends['focus'].delta == pytest.approx(1.0)
    assert trends['execution'].direction == 'declining'
    assert trends['creativity'].direction == 'stable'
    # absent from the previous profile: compared against itself
    assert trends['learning'].previous == 5.0
    assert trends['learning'].delta == 0.0


def test_trends_without_previous_are_stable():
    trends = calculate_trends({'focus': 7.2})

    assert len(trends) == len(TRAIT_KEYS)
    assert all(trend.direction == 'stable' for trend in trends)
    assert all(trend.delta == 0.0 for trend in trends)


def test_normalize_score_rounds_half_up():
    # 0.125 / 1.0 * 10 == 1.25 exactly, which round() would send to 1.2
    with patch('agent_memory.services.signal_analysis.math.log', side_effect=[0.125, 1.0]):
        assert normalize_score(1, 3) == 1.3


def test_signal_mapping_weights_are_read_only():
    with pytest.raises(TypeError):
        SIGNAL_MAPPINGS[0].weights['execution'] = 100
