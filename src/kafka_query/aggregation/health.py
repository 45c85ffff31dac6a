"""
Weighted multi-factor health scoring.

A HealthPolicy is a list of weighted HealthFactors (availability,
reliability, performance, capacity for clusters; analogous sets for the
other entity kinds). Each factor starts at 100 and is scored by its checks:

- A HealthCheck inspects one input and walks its ThresholdRules top to
  bottom; the first rule that matches applies its penalty and records an
  Issue. Later rules of the same check are ignored.
- Penalties of different checks accumulate; the factor is floored at 0.
- A hard-fail check that matches zeroes the whole factor, regardless of
  the other checks. A fatal hard-fail also zeroes the overall score.
- Inputs that are missing (or not numeric) skip their checks.

The overall score is the weight-normalised sum of factor scores, rounded to
one decimal place; the status band follows from it (see HealthStatus).

score_health() never mutates its inputs and always returns a complete
HealthScore.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from kafka_query.types import EntityKind, HealthScore, HealthStatus, Issue


class Comparison(str, Enum):
    """Comparison applied between an input value and a rule threshold."""

    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "=="
    NE = "!="

    @property
    def function(self) -> Callable[[float, float], bool]:
        return _COMPARATORS[self]


_COMPARATORS: dict[Comparison, Callable[[float, float], bool]] = {
    Comparison.GT: operator.gt,
    Comparison.GE: operator.ge,
    Comparison.LT: operator.lt,
    Comparison.LE: operator.le,
    Comparison.EQ: operator.eq,
    Comparison.NE: operator.ne,
}


@dataclass(frozen=True)
class ThresholdRule:
    """
    One threshold of a check.

    Attributes:
        comparison: How the input is compared with threshold
        threshold: Threshold value
        penalty: Points deducted from the factor when the rule matches
        severity: Issue severity ("critical", "warning", "info")
        message: Issue message; "{value}" and "{threshold}" are substituted
    """

    comparison: Comparison
    threshold: float
    penalty: float
    severity: str = "warning"
    message: str = ""

    def matches(self, value: float) -> bool:
        return self.comparison.function(value, self.threshold)


@dataclass(frozen=True)
class HealthCheck:
    """
    Ordered threshold rules for one input.

    Attributes:
        metric: Input name looked up in the factor inputs
        rules: Rules in priority order, first match wins
        hard_fail: A match zeroes the factor
        fatal: A hard-fail match zeroes the overall score too
    """

    metric: str
    rules: tuple[ThresholdRule, ...]
    hard_fail: bool = False
    fatal: bool = False


@dataclass(frozen=True)
class HealthFactor:
    """A weighted dimension of health scored by its checks."""

    name: str
    weight: float
    checks: tuple[HealthCheck, ...]


@dataclass(frozen=True)
class HealthPolicy:
    """Complete scoring policy for one entity kind."""

    kind: EntityKind
    factors: tuple[HealthFactor, ...]

    def __post_init__(self) -> None:
        if not self.factors:
            raise ValueError("health policy needs at least one factor")
        if any(f.weight < 0 for f in self.factors) or self.total_weight <= 0:
            raise ValueError("factor weights must be non-negative with a positive total")

    @property
    def total_weight(self) -> float:
        return sum(f.weight for f in self.factors)

    @property
    def metrics(self) -> set[str]:
        """Every input name the policy's checks read."""
        return {c.metric for f in self.factors for c in f.checks}


def score_health(
    factors: Mapping[str, Any],
    kind: EntityKind = EntityKind.CLUSTER,
    policy: HealthPolicy | None = None,
) -> HealthScore:
    """
    Score health from factor inputs.

    Args:
        factors: Input name to value, e.g. {"active_controller": 1,
            "offline_partitions": 0, "cpu_percent": 42.0}. Booleans count
            as 1/0.
        kind: Entity kind, selects the default policy
        policy: Explicit policy, overrides the default for kind

    Returns:
        Complete HealthScore

    Example:
        score_health({"active_controller": False}).overall  # 0.0
    """
    if policy is None:
        from kafka_query.aggregation.policies import default_policy

        policy = default_policy(kind)

    components: dict[str, float] = {}
    issues: list[Issue] = []
    fatal = False

    for factor in policy.factors:
        score, factor_issues, factor_fatal = _score_factor(factor, factors)
        components[factor.name] = score
        issues.extend(factor_issues)
        fatal = fatal or factor_fatal

    if fatal:
        overall = 0.0
    else:
        weighted = sum(components[f.name] * f.weight for f in policy.factors)
        overall = round(weighted / policy.total_weight, 1)

    return HealthScore(
        overall=overall,
        components=components,
        status=HealthStatus.from_score(overall),
        issues=tuple(issues),
    )


def _score_factor(
    factor: HealthFactor, inputs: Mapping[str, Any]
) -> tuple[float, list[Issue], bool]:
    score = 100.0
    issues: list[Issue] = []

    # Hard-fail checks run first so they win regardless of check order
    ordered = sorted(factor.checks, key=lambda c: not c.hard_fail)
    for check in ordered:
        value = _numeric(inputs.get(check.metric))
        if value is None:
            continue
        rule = next((r for r in check.rules if r.matches(value)), None)
        if rule is None:
            continue

        issues.append(
            Issue(
                factor=factor.name,
                metric=check.metric,
                severity=rule.severity,
                message=_format_message(rule, check.metric, value),
                value=value,
            )
        )
        if check.hard_fail:
            return 0.0, issues, check.fatal
        score -= rule.penalty

    return max(score, 0.0), issues, False


def _numeric(value: Any) -> float | None:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)) and not math.isnan(value):
        return float(value)
    return None


def _format_message(rule: ThresholdRule, metric: str, value: float) -> str:
    template = rule.message or "{metric} is {value:g} ({comparison} {threshold:g})"
    return template.format(
        metric=metric,
        value=value,
        threshold=rule.threshold,
        comparison=rule.comparison.value,
    )
