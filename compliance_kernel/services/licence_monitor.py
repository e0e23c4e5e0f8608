"""
compliance_kernel.services.licence_monitor -- Expiry early warning.

Scans every licence for expiry inside the configured warning windows and
turns each hit into a ``LicenceExpiring`` event.  Intended to run once a
day; the scan itself is pure, so running it twice on the same day yields
the same events.
"""

from __future__ import annotations

from datetime import date

from compliance_kernel.domain import events
from compliance_kernel.domain.clock import Clock, SystemClock
from compliance_kernel.domain.events import ComplianceEvent
from compliance_kernel.domain.licence import ExpiringLicence, find_expiring
from compliance_kernel.logging_config import get_logger
from compliance_kernel.services.repositories import LicenceRepository

logger = get_logger("services.licence_monitor")

DEFAULT_WARNING_WINDOWS_DAYS: tuple[int, ...] = (90, 60, 30)


class LicenceExpiryMonitor:
    def __init__(
        self,
        licences: LicenceRepository,
        warning_windows_days: tuple[int, ...] = DEFAULT_WARNING_WINDOWS_DAYS,
        clock: Clock | None = None,
    ) -> None:
        self._licences = licences
        self._windows = tuple(warning_windows_days)
        self._clock = clock or SystemClock()

    def find_expiring(self, as_of: date | None = None) -> tuple[ExpiringLicence, ...]:
        as_of = as_of or self._clock.today()
        expiring = find_expiring(self._licences.list_all(), as_of, self._windows)
        logger.info(
            "licence_expiry_scan",
            extra={
                "as_of": as_of,
                "windows_days": list(self._windows),
                "expiring_count": len(expiring),
            },
        )
        return expiring

    def expiry_events(self, as_of: date | None = None) -> tuple[ComplianceEvent, ...]:
        as_of = as_of or self._clock.today()
        return tuple(
            events.licence_expiring(expiring, as_of)
            for expiring in self.find_expiring(as_of)
        )
