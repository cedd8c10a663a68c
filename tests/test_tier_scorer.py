import pytest

from gorillamode.core.config import TierConfig
from gorillamode.core.domain import AngleSample, FeedbackEvent, FeedbackType, Tier
from gorillamode.core.services import TierScorer

GOLD_SCORE = 95.0
SILVER_SCORE = 70.0
BRONZE_SCORE = 50.0
NONE_SCORE = 10.0


def test_tier_starts_at_none():
    state = TierScorer().state
    assert state.tier == Tier.NONE
    assert state.last_changed_at is None


def test_alternating_candidate_never_commits():
    scorer = TierScorer()
    for ts in range(20):
        state = scorer.update_from_score(GOLD_SCORE if ts % 2 else SILVER_SCORE, ts)
        assert state.tier == Tier.NONE
        assert state.consecutive_frames_at_candidate <= 1


def test_single_noisy_cycle_does_not_change_tier():
    scorer = TierScorer()
    for ts in range(3):
        scorer.update_from_score(BRONZE_SCORE, ts)
    assert scorer.state.tier == Tier.BRONZE

    for ts in range(3, 12):
        score = NONE_SCORE if ts == 7 else BRONZE_SCORE
        assert scorer.update_from_score(score, ts).tier == Tier.BRONZE


def test_sustained_gold_climbs_one_step_per_commit():
    scorer = TierScorer(TierConfig(hysteresis_cycles=3))
    tiers = [scorer.update_from_score(GOLD_SCORE, ts).tier for ts in range(9)]

    assert tiers == [
        Tier.NONE, Tier.NONE, Tier.BRONZE,
        Tier.BRONZE, Tier.BRONZE, Tier.SILVER,
        Tier.SILVER, Tier.SILVER, Tier.GOLD,
    ]
    assert scorer.state.last_changed_at == 8


def test_descent_is_also_one_step_at_a_time():
    scorer = TierScorer()
    for ts in range(9):
        scorer.update_from_score(GOLD_SCORE, ts)
    assert scorer.state.tier == Tier.GOLD

    tiers = [scorer.update_from_score(NONE_SCORE, ts).tier for ts in range(9, 15)]
    assert tiers == [Tier.GOLD, Tier.GOLD, Tier.SILVER, Tier.SILVER, Tier.SILVER, Tier.BRONZE]


def test_no_commit_skips_a_level():
    scorer = TierScorer()
    previous = scorer.state.tier
    for ts, score in enumerate([GOLD_SCORE] * 12 + [NONE_SCORE] * 12):
        tier = scorer.update_from_score(score, ts).tier
        assert abs(tier - previous) <= 1
        previous = tier


def test_score_combines_clean_cycles_and_confidence():
    scorer = TierScorer(TierConfig(window_cycles=4))
    confident = [AngleSample("Left Knee", 120.0, 0.9, 0)]
    shaky = [AngleSample("Left Knee", 120.0, 0.1, 0)]
    warn = [FeedbackEvent(FeedbackType.WARN, "knees", "knees_over_toes", 0)]

    assert scorer.update([], confident, 0).score == pytest.approx(100.0)
    # 1/2 clean cycles, 1/2 confident samples
    assert scorer.update(warn, shaky, 1).score == pytest.approx(50.0)

    info = [FeedbackEvent(FeedbackType.INFO, "depth", "squat_depth", 2)]
    # info does not count against the clean fraction: 2/3 clean, 2/3 confident
    assert scorer.update(info, confident, 2).score == pytest.approx(100.0 * 2 / 3, abs=0.01)


def test_empty_cycles_score_zero_confidence():
    scorer = TierScorer()
    state = scorer.update([], [], 0)
    assert state.score == pytest.approx(60.0)
    assert state.candidate == Tier.BRONZE


def test_reset():
    scorer = TierScorer()
    for ts in range(3):
        scorer.update_from_score(GOLD_SCORE, ts)
    scorer.reset()
    assert scorer.state.tier == Tier.NONE
    assert scorer.current_score() == 0.0


def test_thresholds_must_be_ordered():
    with pytest.raises(ValueError):
        TierConfig(bronze_threshold=70.0, silver_threshold=60.0)


def test_default_scorers_do_not_share_config():
    first, second = TierScorer(), TierScorer(None)
    assert first.config == TierConfig()
    assert first.config is not second.config

    narrow = TierScorer(TierConfig(window_cycles=2))
    for _ in range(5):
        narrow.update([], [], 0)
    assert len(narrow._cycles) == 2
