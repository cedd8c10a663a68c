"""
Feedback Rule Engine

Evaluates exercise-form rules against the current joint angles and a
short rolling history of each angle.

A rule is a pure function of a HistoryWindow: given the same sequence of
angle samples it fires at the same cycles. Rules that lack the angles or
history they need raise RuleNotEvaluable from the window accessors and
are skipped for that cycle.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ..domain.analysis import AngleSample, FeedbackEvent, FeedbackType
from ..domain.errors import RuleNotEvaluable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryWindow:
    """
    Immutable view of recent angle samples for one cycle.

    history[label] is oldest-first and ends with the current sample when
    that angle was measured this cycle.
    """
    current: Mapping[str, AngleSample]
    history: Mapping[str, tuple[AngleSample, ...]]
    timestamp: int

    def latest(self, label: str) -> AngleSample:
        """Current-cycle sample for an angle."""
        sample = self.current.get(label)
        if sample is None:
            raise RuleNotEvaluable(f"'{label}' not measured this cycle")
        return sample

    def previous(self, label: str) -> AngleSample:
        """Sample before the current one."""
        self.latest(label)
        return self.recent(label, 2)[0]

    def recent(self, label: str, count: int) -> tuple[AngleSample, ...]:
        """Last `count` samples of an angle, oldest first."""
        samples = self.history.get(label, ())
        if len(samples) < count:
            raise RuleNotEvaluable(f"'{label}' has {len(samples)} samples, need {count}")
        return samples[-count:]

    def event(self, type: FeedbackType, text: str, rule_id: str) -> FeedbackEvent:
        return FeedbackEvent(type=type, text=text, rule_id=rule_id, timestamp=self.timestamp)


RulePredicate = Callable[[HistoryWindow], Optional[FeedbackEvent]]


@dataclass(frozen=True)
class FeedbackRule:
    id: str
    predicate: RulePredicate


class FeedbackRuleEngine:
    """
    Ordered rule set plus the per-angle history it runs against.

    Usage:
        engine = FeedbackRuleEngine(default_squat_rules())
        events = engine.evaluate(samples, timestamp)
    """

    def __init__(self, rules: Iterable[FeedbackRule], history_size: int = 10):
        self.rules = tuple(rules)
        ids = [rule.id for rule in self.rules]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate rule ids: {ids}")
        self.history_size = history_size
        self._history: dict[str, deque[AngleSample]] = {}

    def reset(self) -> None:
        self._history.clear()

    def evaluate(self, samples: Sequence[AngleSample], timestamp: int) -> list[FeedbackEvent]:
        """Record this cycle's samples and run every rule in definition order."""
        for sample in samples:
            ring = self._history.get(sample.label)
            if ring is None:
                ring = deque(maxlen=self.history_size)
                self._history[sample.label] = ring
            ring.append(sample)

        window = HistoryWindow(
            current={s.label: s for s in samples},
            history={label: tuple(ring) for label, ring in self._history.items()},
            timestamp=timestamp,
        )

        events = []
        for rule in self.rules:
            try:
                event = rule.predicate(window)
            except RuleNotEvaluable as e:
                logger.debug(f"Rule '{rule.id}' skipped: {e}")
                continue
            if event is not None:
                events.append(event)
        return events


# =============================================================================
# Rule factories
# =============================================================================

def threshold_crossing_rule(
    rule_id: str,
    labels: Sequence[str],
    threshold: float,
    type: FeedbackType,
    text: str,
    below: bool = True,
) -> FeedbackRule:
    """
    Fire once when an angle crosses a threshold.

    Edge-triggered: fires on the cycle the angle goes from the safe side to
    the far side of the threshold, not on every cycle it stays there. With
    several labels (e.g. both knees) it fires if any of them crosses.
    """
    def crossed(prev: float, cur: float) -> bool:
        if below:
            return prev >= threshold > cur
        return prev <= threshold < cur

    def predicate(window: HistoryWindow) -> Optional[FeedbackEvent]:
        evaluable = False
        for label in labels:
            try:
                prev = window.previous(label).value_degrees
                cur = window.latest(label).value_degrees
            except RuleNotEvaluable:
                continue
            evaluable = True
            if crossed(prev, cur):
                return window.event(type, text, rule_id)
        if not evaluable:
            raise RuleNotEvaluable(f"none of {list(labels)} has two samples")
        return None

    return FeedbackRule(rule_id, predicate)


def range_entry_rule(
    rule_id: str,
    label: str,
    low: float,
    high: float,
    type: FeedbackType,
    text: str,
) -> FeedbackRule:
    """Fire when an angle moves into [low, high] from outside it."""
    def predicate(window: HistoryWindow) -> Optional[FeedbackEvent]:
        prev = window.previous(label).value_degrees
        cur = window.latest(label).value_degrees
        if low <= cur <= high and not (low <= prev <= high):
            return window.event(type, text, rule_id)
        return None

    return FeedbackRule(rule_id, predicate)


def trend_rule(
    rule_id: str,
    label: str,
    samples: int,
    type: FeedbackType,
    text: str,
    decreasing: bool = True,
    min_change: float = 0.0,
) -> FeedbackRule:
    """
    Fire when an angle has moved monotonically over the last `samples` samples.

    Fires on the first cycle the trend is complete, then again only after
    the trend has been broken.
    """
    def monotonic(values: Sequence[float]) -> bool:
        pairs = list(zip(values, values[1:]))
        if decreasing:
            return all(a - b > min_change for a, b in pairs)
        return all(b - a > min_change for a, b in pairs)

    def predicate(window: HistoryWindow) -> Optional[FeedbackEvent]:
        window.latest(label)
        recent = [s.value_degrees for s in window.recent(label, samples)]
        if not monotonic(recent):
            return None
        try:
            before = [s.value_degrees for s in window.recent(label, samples + 1)][:-1]
        except RuleNotEvaluable:
            return window.event(type, text, rule_id)
        if monotonic(before):
            return None
        return window.event(type, text, rule_id)

    return FeedbackRule(rule_id, predicate)


def default_squat_rules() -> list[FeedbackRule]:
    """Form rules for a bodyweight squat."""
    knees = ("Left Knee", "Right Knee")
    return [
        threshold_crossing_rule(
            "knees_over_toes",
            knees,
            threshold=155.0,
            type=FeedbackType.WARN,
            text="Keep knees tracking over toes.",
        ),
        threshold_crossing_rule(
            "squat_depth",
            knees,
            threshold=100.0,
            type=FeedbackType.INFO,
            text="Nice depth. Maintain tempo.",
        ),
        range_entry_rule(
            "neutral_back",
            "Left Hip",
            low=160.0,
            high=180.0,
            type=FeedbackType.OK,
            text="Back looks neutral.",
        ),
        trend_rule(
            "controlled_descent",
            "Left Knee",
            samples=4,
            type=FeedbackType.INFO,
            text="Controlled descent.",
            min_change=0.5,
        ),
    ]
