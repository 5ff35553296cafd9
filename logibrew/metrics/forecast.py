"""
Trend Forecaster.

Rule-based severity classification of the delay rate:

    above = delay_rate > threshold
    rising = delay_rate > previous_delay_rate

    high    above and rising
    medium  exactly one of the two
    low     neither

Recommendations map the top delay cause to a canned remediation.
"""

from typing import Optional

from logibrew.core.config import settings
from logibrew.metrics.schemas import (
    DelayPattern,
    ForecastStatistics,
    Prediction,
    Recommendation,
    TrendForecast,
)

REMEDIATIONS: dict[str, str] = {
    "weather": "Build weather buffers into schedules and pre-book alternate routings on affected lanes.",
    "port_congestion": "Shift bookings to less congested ports or off-peak berthing windows.",
    "customs": "Pre-file customs declarations and confirm HS codes before departure.",
    "documentation": "Check shipping documents against the compliance checklist before handoff.",
    "carrier": "Review carrier on-time performance and qualify a backup carrier for affected lanes.",
    "equipment": "Reserve container and chassis capacity ahead of peak periods.",
    "labor": "Plan around announced labor actions and confirm terminal staffing.",
}
FALLBACK_REMEDIATION = "Review recent delayed shipments to find a common root cause."


def normalize_cause(cause: str) -> str:
    return cause.strip().lower().replace("-", "_").replace(" ", "_")


class TrendForecaster:
    """Deterministic forecast from current and previous window statistics."""

    def __init__(
        self,
        delay_rate_threshold: Optional[float] = None,
        top_causes_limit: Optional[int] = None,
    ):
        self.delay_rate_threshold = (
            settings.delay_rate_threshold if delay_rate_threshold is None else delay_rate_threshold
        )
        self.top_causes_limit = (
            settings.top_delay_causes_limit if top_causes_limit is None else top_causes_limit
        )

    def classify(self, delay_rate: float, previous_delay_rate: float) -> str:
        above = delay_rate > self.delay_rate_threshold
        rising = delay_rate > previous_delay_rate
        if above and rising:
            return "high"
        if above or rising:
            return "medium"
        return "low"

    def forecast(
        self,
        delay_rate: float,
        previous_delay_rate: float,
        compliance_rate: float,
        delay_patterns: list[DelayPattern],
        window_days: int,
    ) -> TrendForecast:
        severity = self.classify(delay_rate, previous_delay_rate)

        if delay_rate > previous_delay_rate:
            trend = "rising"
        elif delay_rate < previous_delay_rate:
            trend = "falling"
        else:
            trend = "stable"

        top_causes = delay_patterns[: self.top_causes_limit]

        return TrendForecast(
            period=f"next_{window_days}_days",
            window_days=window_days,
            severity=severity,
            statistics=ForecastStatistics(
                delay_rate=delay_rate,
                previous_delay_rate=previous_delay_rate,
                compliance_rate=compliance_rate,
                trend=trend,
            ),
            top_delay_causes=top_causes,
            predictions=[
                Prediction(
                    severity=severity,
                    message=self._message(severity, delay_rate, previous_delay_rate, window_days),
                )
            ],
            recommendations=self._recommend(top_causes, severity),
        )

    def _message(
        self,
        severity: str,
        delay_rate: float,
        previous_delay_rate: float,
        window_days: int,
    ) -> str:
        threshold = self.delay_rate_threshold
        if severity == "high":
            return (
                f"Delay rate {delay_rate}% exceeds {threshold}% and is rising from "
                f"{previous_delay_rate}%. Expect more disruptions over the next {window_days} days."
            )
        if delay_rate > threshold:
            return f"Delay rate {delay_rate}% exceeds {threshold}% but is not rising."
        if delay_rate > previous_delay_rate:
            return (
                f"Delay rate is rising ({previous_delay_rate}% to {delay_rate}%) "
                f"but remains below {threshold}%."
            )
        return f"Delay rate {delay_rate}% is below {threshold}% and not rising."

    @staticmethod
    def _recommend(top_causes: list[DelayPattern], severity: str) -> list[Recommendation]:
        if not top_causes:
            return []
        cause = top_causes[0].cause
        return [
            Recommendation(
                cause=cause,
                description=REMEDIATIONS.get(normalize_cause(cause), FALLBACK_REMEDIATION),
                priority=severity,
            )
        ]
