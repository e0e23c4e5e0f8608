"""Tests for configuration loading, validation and the kernel bridges."""

import hashlib
from datetime import date
from decimal import Decimal

import pytest
import yaml

from compliance_config import get_active_config
from compliance_config.bridges import (
    build_delivery_policy,
    build_validation_settings,
    expiry_warning_windows,
)
from compliance_config.loader import compute_checksum, parse_config
from compliance_kernel.domain.coverage import CoverageTieBreak
from compliance_kernel.domain.customer import BusinessCategory
from compliance_kernel.exceptions import ConfigurationError
from compliance_kernel.utils import hash_payload


def _write(tmp_path, document: dict):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


# =============================================================================
# Default document
# =============================================================================


class TestDefaultConfig:
    def test_default_loads(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.version == 1
        assert config.thresholds.default_warning_percent == Decimal("80")
        assert config.webhooks.retry_delays_seconds == (10.0, 60.0, 300.0)
        assert config.licence_monitor.warning_windows_days == (90, 60, 30)
        assert len(config.checksum) == 64

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        record = next(r for r in captured_logs() if r["message"] == "COMPLIANCE_CONFIG_TRACE")
        assert record["config_id"] == "default"
        assert record["checksum"] == config.checksum

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    def test_minimal_document_uses_defaults(self):
        config = parse_config({"config_id": "minimal", "version": 2})
        assert config.coverage.tie_break == "licence_number"
        assert config.webhooks.unhealthy_failure_threshold == 3

    def test_errors_collected(self, tmp_path):
        path = _write(tmp_path, {
            "thresholds": {"default_warning_percent": 150},
            "coverage": {"tie_break": "random"},
            "customers": {"gdp_required_categories": ["dispensary"]},
            "webhooks": {"unhealthy_failure_threshold": 0, "retry_delays_seconds": [-1]},
        })

        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config(path)

        errors = exc_info.value.errors
        assert "config_id is required" in errors
        assert "version is required" in errors
        assert any("default_warning_percent" in e for e in errors)
        assert any("tie_break" in e for e in errors)
        assert any("dispensary" in e for e in errors)
        assert any("unhealthy_failure_threshold" in e for e in errors)
        assert any("retry_delays_seconds" in e for e in errors)

    def test_non_numeric_percent(self):
        with pytest.raises(ConfigurationError, match="must be a number"):
            parse_config({
                "config_id": "x",
                "version": 1,
                "thresholds": {"default_warning_percent": "lots"},
            })

    def test_permit_flag_must_be_boolean(self):
        with pytest.raises(ConfigurationError):
            parse_config({
                "config_id": "x",
                "version": 1,
                "cross_border": {"permit_violation_overridable": "yes please"},
            })

    def test_checksum_is_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})

    def test_checksum_uses_canonical_encoding(self):
        document = {"effective": date(2025, 1, 1), "limit": Decimal("12.50")}
        expected = hashlib.sha256(
            b'{"effective":"2025-01-01","limit":"12.5"}'
        ).hexdigest()
        assert compute_checksum(document) == expected
        assert compute_checksum(document) == hash_payload(document)


# =============================================================================
# Bridges
# =============================================================================


class TestBridges:
    def test_validation_settings(self):
        config = parse_config({
            "config_id": "x",
            "version": 1,
            "thresholds": {"default_warning_percent": 90},
            "coverage": {"tie_break": "remaining_capacity"},
            "customers": {"gdp_required_categories": ["veterinarian"]},
            "cross_border": {"permit_violation_overridable": True},
        })

        settings = build_validation_settings(config)

        assert settings.default_warning_percent == Decimal("90")
        assert settings.tie_break == CoverageTieBreak.REMAINING_CAPACITY
        assert settings.gdp_required_categories == frozenset({BusinessCategory.VETERINARIAN})
        assert settings.permit_violation_overridable is True

    def test_delivery_policy(self):
        config = parse_config({
            "config_id": "x",
            "version": 1,
            "webhooks": {
                "retry_delays_seconds": [1, 2],
                "unhealthy_failure_threshold": 5,
                "max_concurrent_deliveries": 2,
            },
        })

        policy = build_delivery_policy(config)

        assert policy.retry_delays_seconds == (1.0, 2.0)
        assert policy.max_attempts == 3
        assert policy.unhealthy_failure_threshold == 5
        assert policy.max_concurrent_deliveries == 2

    def test_expiry_windows(self):
        config = parse_config({
            "config_id": "x",
            "version": 1,
            "licence_monitor": {"warning_windows_days": [45, 15]},
        })
        assert expiry_warning_windows(config) == (45, 15)
