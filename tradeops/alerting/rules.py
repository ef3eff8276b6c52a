"""Alert rule definitions and the evaluator registry.

A rule is static configuration (id, severity, threshold, message template)
plus a key into :data:`RULE_LOGIC`, which maps to a pair of pure functions:
one deciding whether the rule fires, one producing the value reported on the
alert.  New rules are added by registering logic and appending an
:class:`AlertRule`; the engine's control flow does not change.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from tradeops.alerting.exceptions import ConfigurationError
from tradeops.core.config import AlertsConfig
from tradeops.core.types import ConditionType, FeedHealth, KPISnapshot, Severity

Evaluator = Callable[[KPISnapshot, Sequence[FeedHealth], float, float | None], bool]
ValueFn = Callable[[KPISnapshot, Sequence[FeedHealth], float], float]

STALE_FEED = "stale_feed"
HIGH_LATENCY = "high_latency"
HIGH_REJECTS = "high_rejects"
RISK_BREACH = "risk_breach"


@dataclass(frozen=True)
class RuleLogic:
    """The pure functions behind a rule."""

    evaluate: Evaluator
    current_value: ValueFn


RULE_LOGIC: dict[str, RuleLogic] = {}


def register_rule_logic(key: str, evaluate: Evaluator, current_value: ValueFn) -> None:
    """Register (or replace) the logic referenced by ``AlertRule.logic``."""
    RULE_LOGIC[key] = RuleLogic(evaluate=evaluate, current_value=current_value)


# ── Built-in logic ──────────────────────────────────────────────


def max_staleness_ms(
    snapshot: KPISnapshot, feeds: Sequence[FeedHealth], now: float,
) -> float:
    """Longest heartbeat silence across all feeds, in ms (0 with no feeds)."""
    return max((f.staleness_ms(now) for f in feeds), default=0.0)


def any_feed_stale(
    snapshot: KPISnapshot,
    feeds: Sequence[FeedHealth],
    now: float,
    threshold: float | None,
) -> bool:
    if threshold is None:
        return False
    return any(f.staleness_ms(now) > threshold for f in feeds)


def latency_p95(snapshot: KPISnapshot, feeds: Sequence[FeedHealth], now: float) -> float:
    return snapshot.latency_p95


def reject_rate(snapshot: KPISnapshot, feeds: Sequence[FeedHealth], now: float) -> float:
    return snapshot.reject_rate


def position_exposure(
    snapshot: KPISnapshot, feeds: Sequence[FeedHealth], now: float,
) -> float:
    return snapshot.position_exposure


def exceeds(value_fn: ValueFn) -> Evaluator:
    """Build an evaluator that fires when ``value_fn`` is strictly above threshold."""

    def _evaluate(
        snapshot: KPISnapshot,
        feeds: Sequence[FeedHealth],
        now: float,
        threshold: float | None,
    ) -> bool:
        if threshold is None:
            return False
        return value_fn(snapshot, feeds, now) > threshold

    return _evaluate


register_rule_logic(STALE_FEED, any_feed_stale, max_staleness_ms)
register_rule_logic(HIGH_LATENCY, exceeds(latency_p95), latency_p95)
register_rule_logic(HIGH_REJECTS, exceeds(reject_rate), reject_rate)
register_rule_logic(RISK_BREACH, exceeds(position_exposure), position_exposure)


# ── Rules ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class AlertRule:
    """Static definition of one alert rule."""

    alert_id: str
    name: str
    severity: Severity
    condition_type: ConditionType
    threshold: float | None
    message: str
    logic: str = ""

    @property
    def logic_key(self) -> str:
        return self.logic or self.alert_id

    def evaluate(
        self, snapshot: KPISnapshot, feeds: Sequence[FeedHealth], now: float,
    ) -> bool:
        return RULE_LOGIC[self.logic_key].evaluate(snapshot, feeds, now, self.threshold)

    def current_value(
        self, snapshot: KPISnapshot, feeds: Sequence[FeedHealth], now: float,
    ) -> float:
        return RULE_LOGIC[self.logic_key].current_value(snapshot, feeds, now)

    def render_message(self, value: float) -> str:
        return self.message.format(threshold=self.threshold, value=value)


def build_default_rules(config: AlertsConfig | None = None) -> list[AlertRule]:
    """The fixed rule set, in evaluation order."""
    cfg = config or AlertsConfig()
    return [
        AlertRule(
            alert_id=STALE_FEED,
            name="Stale Market Data Feed",
            severity=Severity.CRITICAL,
            condition_type=ConditionType.STALE,
            threshold=cfg.stale_feed_ms,
            message="Market data feed has not sent a heartbeat in over {threshold:.0f} ms",
        ),
        AlertRule(
            alert_id=HIGH_LATENCY,
            name="High Order Latency",
            severity=Severity.WARNING,
            condition_type=ConditionType.THRESHOLD,
            threshold=cfg.high_latency_p95_ms,
            message="Order latency P95 {value:.1f} ms exceeds {threshold:.0f} ms threshold",
        ),
        AlertRule(
            alert_id=HIGH_REJECTS,
            name="High Reject Rate",
            severity=Severity.WARNING,
            condition_type=ConditionType.RATE,
            threshold=cfg.high_reject_rate_pct,
            message="Order reject rate {value:.1f}% exceeds {threshold:g}% baseline",
        ),
        AlertRule(
            alert_id=RISK_BREACH,
            name="Risk Limit Breach",
            severity=Severity.CRITICAL,
            condition_type=ConditionType.THRESHOLD,
            threshold=cfg.max_position_exposure_usd,
            message="Position exposure ${value:,.0f} exceeds ${threshold:,.0f} risk limit",
        ),
    ]


def validate_rules(rules: Sequence[AlertRule]) -> None:
    """Reject malformed rule sets.

    Raises:
        ConfigurationError: On a duplicate alert id, unknown logic key,
            missing threshold, or a message template that does not render.
    """
    seen: set[str] = set()
    for rule in rules:
        if rule.alert_id in seen:
            raise ConfigurationError(f"duplicate alert rule {rule.alert_id!r}")
        seen.add(rule.alert_id)

        if rule.logic_key not in RULE_LOGIC:
            raise ConfigurationError(
                f"rule {rule.alert_id!r} references unknown logic {rule.logic_key!r}",
            )
        if rule.threshold is None:
            raise ConfigurationError(
                f"{rule.condition_type.value} rule {rule.alert_id!r} has no threshold",
            )
        try:
            rule.render_message(0.0)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"rule {rule.alert_id!r} has a bad message template: {exc}",
            ) from exc
