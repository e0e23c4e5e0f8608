"""
ComplianceEngineConfig schema.

The human-authored, reviewable configuration for the decision engine.
YAML documents are parsed into these frozen types by the loader; the
bridges translate them into the kernel's own settings objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ThresholdSettings:
    default_warning_percent: Decimal = Decimal("80")


@dataclass(frozen=True)
class CoverageSettings:
    # licence_number | issue_date | remaining_capacity
    tie_break: str = "licence_number"


@dataclass(frozen=True)
class CustomerSettings:
    gdp_required_categories: tuple[str, ...] = (
        "wholesaler_eu",
        "wholesaler_non_eu",
        "hospital_pharmacy",
        "community_pharmacy",
    )


@dataclass(frozen=True)
class CrossBorderSettings:
    permit_violation_overridable: bool = False


@dataclass(frozen=True)
class WebhookSettings:
    retry_delays_seconds: tuple[float, ...] = (10.0, 60.0, 300.0)
    unhealthy_failure_threshold: int = 3
    request_timeout_seconds: float = 30.0
    max_concurrent_deliveries: int = 8
    min_secret_length: int = 32


@dataclass(frozen=True)
class LicenceMonitorSettings:
    warning_windows_days: tuple[int, ...] = (90, 60, 30)


@dataclass(frozen=True)
class ComplianceEngineConfig:
    """Root configuration artifact."""

    config_id: str
    version: int
    thresholds: ThresholdSettings = field(default_factory=ThresholdSettings)
    coverage: CoverageSettings = field(default_factory=CoverageSettings)
    customers: CustomerSettings = field(default_factory=CustomerSettings)
    cross_border: CrossBorderSettings = field(default_factory=CrossBorderSettings)
    webhooks: WebhookSettings = field(default_factory=WebhookSettings)
    licence_monitor: LicenceMonitorSettings = field(default_factory=LicenceMonitorSettings)
    checksum: str = ""
