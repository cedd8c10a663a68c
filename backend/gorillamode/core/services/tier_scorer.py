"""
Tier Scorer

Turns recent feedback and angle quality into a Bronze/Silver/Gold tier.

Score (0-100) = weighted mix of
  - fraction of recent cycles without warn/error feedback
  - fraction of recent angle samples with confidence above threshold

The tier only changes after the score has pointed at a different tier
for several consecutive cycles, and then only by one step, so a single
noisy frame never makes the badge flicker.
"""

import logging
from collections import deque
from dataclasses import replace
from typing import Optional, Sequence

from ..config import TierConfig
from ..domain.analysis import AngleSample, FeedbackEvent, Tier, TierState

logger = logging.getLogger(__name__)


class TierScorer:
    """
    Rolling score plus hysteresis state machine.

    Usage:
        scorer = TierScorer()
        state = scorer.update(events, samples, timestamp)
    """

    def __init__(self, config: Optional[TierConfig] = None):
        self.config = config or TierConfig()
        self._cycles: deque[tuple[bool, int, int]] = deque(maxlen=self.config.window_cycles)
        self.state = TierState()

    def reset(self) -> None:
        self._cycles.clear()
        self.state = TierState()

    def tier_for_score(self, score: float) -> Tier:
        """Map a score to the tier its thresholds place it in."""
        if score >= self.config.gold_threshold:
            return Tier.GOLD
        if score >= self.config.silver_threshold:
            return Tier.SILVER
        if score >= self.config.bronze_threshold:
            return Tier.BRONZE
        return Tier.NONE

    def current_score(self) -> float:
        if not self._cycles:
            return 0.0

        clean = sum(1 for had_problem, _, _ in self._cycles if not had_problem)
        clean_fraction = clean / len(self._cycles)

        confident = sum(c for _, c, _ in self._cycles)
        total = sum(t for _, _, t in self._cycles)
        confidence_fraction = confident / total if total else 0.0

        score = 100.0 * (
            self.config.clean_weight * clean_fraction
            + self.config.confidence_weight * confidence_fraction
        )
        return round(score, 2)

    def update(
        self,
        events: Sequence[FeedbackEvent],
        samples: Sequence[AngleSample],
        timestamp: int,
    ) -> TierState:
        """Record one cycle and advance the tier state machine."""
        had_problem = any(e.is_problem for e in events)
        confident = sum(1 for s in samples if s.confidence >= self.config.confidence_threshold)
        self._cycles.append((had_problem, confident, len(samples)))
        return self.update_from_score(self.current_score(), timestamp)

    def update_from_score(self, score: float, timestamp: int) -> TierState:
        """
        Advance the hysteresis state machine with an already computed score.

        A candidate tier different from the committed one must hold for
        hysteresis_cycles consecutive cycles. The commit moves one step
        towards it and the count starts over.
        """
        state = self.state
        candidate = self.tier_for_score(score)

        if candidate == state.tier:
            self.state = replace(state, score=score, candidate=candidate, consecutive_frames_at_candidate=0)
            return self.state

        streak = state.consecutive_frames_at_candidate + 1 if candidate == state.candidate else 1

        if streak >= self.config.hysteresis_cycles:
            step = 1 if candidate > state.tier else -1
            new_tier = Tier(state.tier + step)
            logger.info(f"Tier {state.tier.name} -> {new_tier.name} (score {score:.1f})")
            self.state = TierState(
                tier=new_tier,
                score=score,
                last_changed_at=timestamp,
                consecutive_frames_at_candidate=0,
                candidate=candidate,
            )
        else:
            self.state = replace(
                state,
                score=score,
                candidate=candidate,
                consecutive_frames_at_candidate=streak,
            )
        return self.state
