"""
Severity vs. immunity race forecasting.

Both processes are projected forward linearly from their current level and
per-day rate; whichever reaches 1.0 first decides the verdict. Pure
functions only: the same inputs always give the same verdict.
"""

import math

from prognosis.domain.models import Verdict

EPSILON = 1e-6
PROGNOSIS_PREFIX = "Prognosis: "


def days_safe(days: float) -> float:
    """Map projections that never complete (NaN, infinite, negative) to +inf."""
    if math.isnan(days) or math.isinf(days) or days < 0.0:
        return math.inf
    return days


def days_to_complete(current: float, rate_per_day: float) -> float:
    """Raw projected days for a level to climb from ``current`` to 1.0."""
    return (1.0 - current) / max(EPSILON, rate_per_day)


def classify(
    current_immunity: float,
    immunity_rate_per_day: float,
    current_severity: float,
    severity_rate_per_day: float,
) -> Verdict:
    """
    Tooltip verdict for one affliction.

    Rules, first match wins:
        no immunity gain, severity not rising  -> Stable
        no immunity gain, severity rising      -> At risk
        severity not rising                    -> Improving
        otherwise the earlier finish line wins; ties go to At risk
    """
    if immunity_rate_per_day <= 0.0 and severity_rate_per_day <= 0.0:
        return Verdict.STABLE
    if immunity_rate_per_day <= 0.0 and severity_rate_per_day > 0.0:
        return Verdict.AT_RISK
    if severity_rate_per_day <= 0.0:
        return Verdict.IMPROVING

    days_to_immune = days_safe(days_to_complete(current_immunity, immunity_rate_per_day))
    days_to_fatal = days_safe(days_to_complete(current_severity, severity_rate_per_day))
    return Verdict.LIKELY_IMMUNE if days_to_immune < days_to_fatal else Verdict.AT_RISK


def is_at_risk(
    current_immunity: float,
    immunity_rate_per_day: float,
    current_severity: float,
    severity_rate_per_day: float,
) -> bool:
    """
    Alert-path variant of :func:`classify`.

    Biased toward warning: ties count as at risk, and the raw projections
    are compared without the +inf sentinel, so a severity already past 1.0
    is at risk here even where the tooltip would say "Likely immune".
    """
    if immunity_rate_per_day <= 0.0 and severity_rate_per_day > 0.0:
        return True
    if severity_rate_per_day <= 0.0:
        return False

    days_to_immune = days_to_complete(current_immunity, immunity_rate_per_day)
    days_to_fatal = days_to_complete(current_severity, severity_rate_per_day)
    return days_to_immune >= days_to_fatal


def prognosis_line(verdict: Verdict) -> str:
    if verdict is Verdict.NONE:
        return ""
    return PROGNOSIS_PREFIX + verdict.label


def append_line(text: str, line: str) -> str:
    """Append ``line`` to tooltip ``text`` on its own line."""
    if not line:
        return text
    if text:
        return text + "\n" + line
    return line
