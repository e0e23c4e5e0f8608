"""
compliance_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``ComplianceEngineConfig``.
    ``compliance_config.bridges`` turns it into the kernel's settings
    objects.

Architecture position:
    Configuration -- sits above ``compliance_kernel``.  The kernel MUST
    NEVER import from ``compliance_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested document does not exist.
    - ``ConfigurationError`` -- schema or range validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COMPLIANCE_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each decision back to the configuration that governed
    it.
"""

from __future__ import annotations

from pathlib import Path

from compliance_config.loader import load_yaml_file, parse_config
from compliance_config.schema import ComplianceEngineConfig
from compliance_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> ComplianceEngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML document to load.  Defaults to the packaged
            ``sets/default.yaml``.

    Raises:
        FileNotFoundError: If the document does not exist.
        ConfigurationError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "COMPLIANCE_CONFIG_TRACE",
        extra={
            "trace_type": "COMPLIANCE_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config


__all__ = [
    "ComplianceEngineConfig",
    "get_active_config",
]
