"""
Metrics Aggregator - dashboard statistics over decision chains.

Reads chains, never writes them. Missing, partial or unreadable data
degrades to zero counts and is reported in the snapshot. Only chains
that pass verification contribute to the statistics.

Payload fields read (names configurable in settings):
- outcome       compliance rate ("compliant", case-insensitive)
- delayCause    delay rate and delay-cause histogram
- requestedAt   response time start (epoch ms or ISO-8601)
- resolvedAt    response time end
- action/status recent activity labels
- aiInsight     passed through verbatim
"""

import math
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from logibrew.audit.repository import ChainStore
from logibrew.audit.schemas import DecisionRecord
from logibrew.audit.service import Clock, epoch_millis
from logibrew.audit.verifier import ChainVerifier
from logibrew.core.config import settings
from logibrew.core.exceptions import StorageError, ValidationError
from logibrew.metrics.forecast import TrendForecaster
from logibrew.metrics.schemas import (
    ChainIntegrity,
    DelayPattern,
    MetricsSnapshot,
    MetricsSummary,
    RecentActivity,
)

logger = structlog.get_logger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS
# 9999-12-31T23:59:59.999Z
MAX_MARKER_MS = 253_402_300_799_999
EPOCH_MILLIS_PATTERN = re.compile(r"-?[0-9]+")


def percent(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    return round(numerator / denominator * 100, 1)


def parse_marker(value: Any) -> Optional[int]:
    """
    Epoch milliseconds from an int or an ISO-8601 string.

    Returns None for anything else, including non-ASCII digits and values
    outside the datetime range.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        millis = int(value)
    elif isinstance(value, int):
        millis = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if EPOCH_MILLIS_PATTERN.fullmatch(text):
            if len(text) > 16:
                return None
            millis = int(text)
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            millis = int(parsed.timestamp() * 1000)
    else:
        return None

    if abs(millis) > MAX_MARKER_MS:
        return None
    return millis


class MetricsAggregator:
    """
    Builds MetricsSnapshot objects from chain contents.

    Deterministic: the same shipment ids, window and as_of over unchanged
    chains give equal snapshots.
    """

    def __init__(
        self,
        store: ChainStore,
        verifier: Optional[ChainVerifier] = None,
        forecaster: Optional[TrendForecaster] = None,
        clock: Optional[Clock] = None,
        recent_activity_limit: Optional[int] = None,
    ):
        self._store = store
        self._verifier = verifier or ChainVerifier()
        self._forecaster = forecaster or TrendForecaster()
        self._clock = clock or epoch_millis
        self.recent_activity_limit = (
            settings.recent_activity_limit
            if recent_activity_limit is None
            else recent_activity_limit
        )

    async def build_metrics(
        self,
        shipment_ids: Optional[Iterable[str]] = None,
        window_days: Optional[int] = None,
        as_of: Optional[int] = None,
    ) -> MetricsSnapshot:
        """
        Aggregate chains over [as_of - window_days, as_of].

        Args:
            shipment_ids: Chains to include (None: every chain in the store)
            window_days: Window length (default from settings)
            as_of: Window end in epoch ms (default: now)
        """
        window_days = settings.metrics_window_days if window_days is None else window_days
        if window_days < 1:
            raise ValidationError("window_days must be at least 1", field="windowDays")

        as_of = self._clock() if as_of is None else as_of
        window_ms = window_days * DAY_MS
        window_start = as_of - window_ms
        previous_start = as_of - 2 * window_ms

        if shipment_ids is None:
            ids = await self._discover()
        else:
            ids = sorted(set(shipment_ids))

        integrity: list[ChainIntegrity] = []
        current: list[DecisionRecord] = []
        previous: list[DecisionRecord] = []
        response_hours: list[float] = []
        touched = 0

        for shipment_id in ids:
            records = await self._read_chain(shipment_id, integrity)
            if records is None:
                continue

            in_window = [r for r in records if window_start <= r.timestamp <= as_of]
            current.extend(in_window)
            previous.extend(r for r in records if previous_start <= r.timestamp < window_start)

            if in_window:
                touched += 1
                hours = self._response_hours(in_window)
                if hours is not None:
                    response_hours.append(hours)

        delayed, causes = self._delays(current)
        previous_delayed, _ = self._delays(previous)
        outcome_records, compliant = self._compliance(current)

        delay_rate = percent(delayed, len(current))
        previous_delay_rate = percent(previous_delayed, len(previous))
        compliance_rate = percent(compliant, outcome_records)

        delay_patterns = [
            DelayPattern(cause=cause, count=count)
            for cause, count in sorted(causes.items(), key=lambda item: (-item[1], item[0]))
        ]

        summary = MetricsSummary(
            total_shipments=touched,
            total_records=len(current),
            avg_response_time=(
                round(sum(response_hours) / len(response_hours), 1) if response_hours else 0.0
            ),
            response_time_samples=len(response_hours),
            compliance_rate=compliance_rate,
            delay_rate=delay_rate,
        )

        forecast = self._forecaster.forecast(
            delay_rate=delay_rate,
            previous_delay_rate=previous_delay_rate,
            compliance_rate=compliance_rate,
            delay_patterns=delay_patterns,
            window_days=window_days,
        )

        unavailable = sum(1 for entry in integrity if entry.error_type == "unavailable")
        failed = sum(
            1 for entry in integrity if not entry.valid and entry.error_type != "unavailable"
        )
        notes = []
        if not current:
            notes.append(
                f"No decisions logged in the last {window_days} days. "
                "Metrics will appear here as shipments are processed."
            )
        if unavailable:
            notes.append(f"{unavailable} chain(s) could not be read and were skipped.")
        if failed:
            notes.append(
                f"{failed} chain(s) failed verification and were excluded from the statistics."
            )
        message = " ".join(notes) or None

        logger.info(
            "metrics_built",
            chains=len(ids),
            records=len(current),
            window_days=window_days,
            unavailable=unavailable,
            failed_verification=failed,
            severity=forecast.severity,
        )

        return MetricsSnapshot(
            summary=summary,
            delay_patterns=delay_patterns,
            recent_activities=self._recent(current),
            forecast=forecast,
            integrity=integrity,
            window_days=window_days,
            window_start=window_start,
            window_end=as_of,
            last_updated=datetime.fromtimestamp(as_of / 1000, tz=timezone.utc),
            has_data=bool(current),
            message=message,
        )

    # =========================================================================
    # INTERNAL METHODS
    # =========================================================================

    async def _discover(self) -> list[str]:
        try:
            return await self._store.list_shipments()
        except StorageError as e:
            logger.warning("metrics_discovery_failed", error=e.message)
            return []

    async def _read_chain(
        self,
        shipment_id: str,
        integrity: list[ChainIntegrity],
    ) -> Optional[list[DecisionRecord]]:
        try:
            records, unreadable = await self._store.read(shipment_id).readable_prefix()
        except (StorageError, ValidationError) as e:
            logger.warning("metrics_chain_unavailable", shipment_id=shipment_id, error=e.message)
            integrity.append(
                ChainIntegrity(shipment_id=shipment_id, valid=False, error_type="unavailable")
            )
            return None

        verification = self._verifier.verify_readable(records, unreadable)
        integrity.append(
            ChainIntegrity(
                shipment_id=shipment_id,
                valid=verification.valid,
                records_checked=verification.records_checked,
                broken_at_sequence=verification.broken_at_sequence,
                error_type=verification.error_type,
            )
        )
        if not verification.valid:
            logger.warning(
                "metrics_chain_excluded",
                shipment_id=shipment_id,
                broken_at_sequence=verification.broken_at_sequence,
                error_type=verification.error_type,
            )
            return None
        return records

    def _response_hours(self, records: list[DecisionRecord]) -> Optional[float]:
        requested = next(
            (
                value
                for value in (parse_marker(r.payload.get(settings.requested_field)) for r in records)
                if value is not None
            ),
            None,
        )
        resolved = next(
            (
                value
                for value in (
                    parse_marker(r.payload.get(settings.resolved_field)) for r in reversed(records)
                )
                if value is not None
            ),
            None,
        )
        if requested is None or resolved is None or resolved < requested:
            return None
        return (resolved - requested) / HOUR_MS

    @staticmethod
    def _delays(records: list[DecisionRecord]) -> tuple[int, Counter]:
        causes: Counter = Counter()
        for record in records:
            cause = record.payload.get(settings.delay_cause_field)
            if isinstance(cause, str) and cause.strip():
                causes[cause.strip()] += 1
        return sum(causes.values()), causes

    @staticmethod
    def _compliance(records: list[DecisionRecord]) -> tuple[int, int]:
        expected = settings.compliant_value.lower()
        with_outcome = 0
        compliant = 0
        for record in records:
            if settings.outcome_field not in record.payload:
                continue
            with_outcome += 1
            outcome = record.payload[settings.outcome_field]
            if isinstance(outcome, str) and outcome.strip().lower() == expected:
                compliant += 1
        return with_outcome, compliant

    def _recent(self, records: list[DecisionRecord]) -> list[RecentActivity]:
        newest = sorted(
            records,
            key=lambda r: (r.timestamp, r.shipment_id, r.sequence),
            reverse=True,
        )[: self.recent_activity_limit]

        return [
            RecentActivity(
                shipment_id=r.shipment_id,
                sequence=r.sequence,
                action=str(r.payload.get(settings.action_field) or "decision"),
                status=str(r.payload.get(settings.status_field) or "completed"),
                timestamp=r.timestamp,
                insight=r.payload.get(settings.insight_field),
            )
            for r in newest
        ]
