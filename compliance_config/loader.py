"""
Configuration Loader (``compliance_config.loader``).

Responsibility
--------------
Loads a YAML configuration document and parses it into the frozen
``compliance_config.schema`` dataclasses.  The runtime entry point is
``compliance_config.get_active_config()``; callers do not use this module
directly.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Every value the engine depends on is range-checked here, so an invalid
  document fails at load time rather than mid-validation.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys or out-of-range values -> ``ConfigurationError``
  listing every problem found.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from compliance_config.schema import (
    ComplianceEngineConfig,
    CoverageSettings,
    CrossBorderSettings,
    CustomerSettings,
    LicenceMonitorSettings,
    ThresholdSettings,
    WebhookSettings,
)
from compliance_kernel.exceptions import ConfigurationError
from compliance_kernel.utils.hashing import hash_payload

TIE_BREAK_POLICIES = frozenset({"licence_number", "issue_date", "remaining_capacity"})
BUSINESS_CATEGORIES = frozenset({
    "hospital_pharmacy",
    "community_pharmacy",
    "veterinarian",
    "manufacturer",
    "wholesaler_eu",
    "wholesaler_non_eu",
    "research_institution",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 checksum of the canonical JSON serialization of ``data``."""
    return hash_payload(data)


def _decimal(value: Any, name: str, errors: list[str]) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        errors.append(f"{name} must be a number, got {value!r}")
        return None


def parse_thresholds(data: dict[str, Any], errors: list[str]) -> ThresholdSettings:
    defaults = ThresholdSettings()
    raw = data.get("default_warning_percent", defaults.default_warning_percent)
    warning = _decimal(raw, "thresholds.default_warning_percent", errors)
    if warning is None:
        return defaults
    if warning <= 0 or warning > 100:
        errors.append(
            f"thresholds.default_warning_percent must be in (0, 100], got {warning}"
        )
    return ThresholdSettings(default_warning_percent=warning)


def parse_coverage(data: dict[str, Any], errors: list[str]) -> CoverageSettings:
    tie_break = str(data.get("tie_break", CoverageSettings().tie_break))
    if tie_break not in TIE_BREAK_POLICIES:
        errors.append(
            f"coverage.tie_break must be one of {sorted(TIE_BREAK_POLICIES)}, "
            f"got {tie_break!r}"
        )
    return CoverageSettings(tie_break=tie_break)


def parse_customers(data: dict[str, Any], errors: list[str]) -> CustomerSettings:
    raw = data.get("gdp_required_categories")
    if raw is None:
        return CustomerSettings()
    categories = tuple(str(c) for c in raw)
    for category in categories:
        if category not in BUSINESS_CATEGORIES:
            errors.append(f"customers.gdp_required_categories: unknown category {category!r}")
    return CustomerSettings(gdp_required_categories=categories)


def parse_cross_border(data: dict[str, Any], errors: list[str]) -> CrossBorderSettings:
    raw = data.get("permit_violation_overridable", False)
    if not isinstance(raw, bool):
        errors.append(
            f"cross_border.permit_violation_overridable must be a boolean, got {raw!r}"
        )
        raw = False
    return CrossBorderSettings(permit_violation_overridable=raw)


def parse_webhooks(data: dict[str, Any], errors: list[str]) -> WebhookSettings:
    defaults = WebhookSettings()
    delays_raw = data.get("retry_delays_seconds", list(defaults.retry_delays_seconds))
    delays: list[float] = []
    if not isinstance(delays_raw, list) or not delays_raw:
        errors.append("webhooks.retry_delays_seconds must be a non-empty list")
    else:
        for value in delays_raw:
            if not isinstance(value, (int, float)) or value < 0:
                errors.append(
                    f"webhooks.retry_delays_seconds entries must be non-negative numbers, got {value!r}"
                )
            else:
                delays.append(float(value))

    threshold = data.get("unhealthy_failure_threshold", defaults.unhealthy_failure_threshold)
    if not isinstance(threshold, int) or threshold < 1:
        errors.append(f"webhooks.unhealthy_failure_threshold must be >= 1, got {threshold!r}")
        threshold = defaults.unhealthy_failure_threshold

    timeout = data.get("request_timeout_seconds", defaults.request_timeout_seconds)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        errors.append(f"webhooks.request_timeout_seconds must be positive, got {timeout!r}")
        timeout = defaults.request_timeout_seconds

    fan_out = data.get("max_concurrent_deliveries", defaults.max_concurrent_deliveries)
    if not isinstance(fan_out, int) or fan_out < 1:
        errors.append(f"webhooks.max_concurrent_deliveries must be >= 1, got {fan_out!r}")
        fan_out = defaults.max_concurrent_deliveries

    secret_length = data.get("min_secret_length", defaults.min_secret_length)
    if not isinstance(secret_length, int) or secret_length < 1:
        errors.append(f"webhooks.min_secret_length must be >= 1, got {secret_length!r}")
        secret_length = defaults.min_secret_length

    return WebhookSettings(
        retry_delays_seconds=tuple(delays) or defaults.retry_delays_seconds,
        unhealthy_failure_threshold=threshold,
        request_timeout_seconds=float(timeout),
        max_concurrent_deliveries=fan_out,
        min_secret_length=secret_length,
    )


def parse_licence_monitor(data: dict[str, Any], errors: list[str]) -> LicenceMonitorSettings:
    raw = data.get("warning_windows_days")
    if raw is None:
        return LicenceMonitorSettings()
    windows: list[int] = []
    for value in raw:
        if not isinstance(value, int) or value < 0:
            errors.append(
                f"licence_monitor.warning_windows_days entries must be non-negative integers, got {value!r}"
            )
        else:
            windows.append(value)
    return LicenceMonitorSettings(warning_windows_days=tuple(windows))


def parse_config(data: dict[str, Any]) -> ComplianceEngineConfig:
    """
    Parse a full configuration document.

    Raises:
        ConfigurationError: listing every missing or invalid value.
    """
    errors: list[str] = []
    for key in ("config_id", "version"):
        if key not in data:
            errors.append(f"{key} is required")

    config = ComplianceEngineConfig(
        config_id=str(data.get("config_id", "")),
        version=int(data.get("version", 0) or 0),
        thresholds=parse_thresholds(data.get("thresholds") or {}, errors),
        coverage=parse_coverage(data.get("coverage") or {}, errors),
        customers=parse_customers(data.get("customers") or {}, errors),
        cross_border=parse_cross_border(data.get("cross_border") or {}, errors),
        webhooks=parse_webhooks(data.get("webhooks") or {}, errors),
        licence_monitor=parse_licence_monitor(data.get("licence_monitor") or {}, errors),
        checksum=compute_checksum(data),
    )
    if errors:
        raise ConfigurationError(tuple(errors))
    return config
