"""Alerting subsystem — rule registry and the alert rule engine."""

from tradeops.alerting.engine import AlertRuleEngine
from tradeops.alerting.exceptions import AlertingError, ConfigurationError, InvariantViolation
from tradeops.alerting.rules import AlertRule, build_default_rules, register_rule_logic, validate_rules

__all__ = [
    "AlertRule",
    "AlertRuleEngine",
    "AlertingError",
    "ConfigurationError",
    "InvariantViolation",
    "build_default_rules",
    "register_rule_logic",
    "validate_rules",
]
