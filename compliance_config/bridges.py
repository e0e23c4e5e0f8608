"""
Config -> Kernel Bridges.

Functions that convert a ``ComplianceEngineConfig`` into the kernel's own
settings objects.  They live in compliance_config (the producer) because
the kernel must NEVER import compliance_config.

Usage:
    from compliance_config import get_active_config
    from compliance_config.bridges import build_delivery_policy, build_validation_settings

    config = get_active_config()
    settings = build_validation_settings(config)
    policy = build_delivery_policy(config)
"""

from __future__ import annotations

from compliance_config.schema import ComplianceEngineConfig
from compliance_kernel.domain.coverage import CoverageTieBreak
from compliance_kernel.domain.customer import BusinessCategory
from compliance_kernel.domain.validator import ValidationSettings
from compliance_kernel.domain.webhook import DeliveryPolicy


def build_validation_settings(config: ComplianceEngineConfig) -> ValidationSettings:
    return ValidationSettings(
        default_warning_percent=config.thresholds.default_warning_percent,
        tie_break=CoverageTieBreak(config.coverage.tie_break),
        gdp_required_categories=frozenset(
            BusinessCategory(c) for c in config.customers.gdp_required_categories
        ),
        permit_violation_overridable=config.cross_border.permit_violation_overridable,
    )


def build_delivery_policy(config: ComplianceEngineConfig) -> DeliveryPolicy:
    webhooks = config.webhooks
    return DeliveryPolicy(
        retry_delays_seconds=webhooks.retry_delays_seconds,
        unhealthy_failure_threshold=webhooks.unhealthy_failure_threshold,
        request_timeout_seconds=webhooks.request_timeout_seconds,
        max_concurrent_deliveries=webhooks.max_concurrent_deliveries,
        min_secret_length=webhooks.min_secret_length,
    )


def expiry_warning_windows(config: ComplianceEngineConfig) -> tuple[int, ...]:
    return config.licence_monitor.warning_windows_days
