"""Configuration loading for the invoicing engine.

Settings live in a JSON file grouped by concern:

    {
        "pricing": {"flat_rate": 25, "mileage_rate": 1.10, ...},
        "adjustments": {"apply_urban_fee": false, ...},
        "flags": {"driver_load_threshold": 10, ...},
        "resolver": {"lookup_concurrency": 5, ...},
        "noise_trip_numbers": {"placeholders": [...], "patterns": [...]}
    }

Missing sections or keys fall back to the defaults of
``InvoiceGenerationSettings`` / ``NoiseTripConfig``.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from .schemas import InvoiceGenerationSettings


load_dotenv()

# Environment variables for the geocoding collaborator
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT", "dispatch_invoicing_v1")
DISTANCE_CACHE_DB = os.getenv("DISTANCE_CACHE_DB")

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "invoice_settings.json"


# Section key -> (json key, settings field)
_SETTINGS_SECTIONS: dict[str, dict[str, str]] = {
    "pricing": {
        "flat_rate": "flat_rate",
        "mileage_rate": "mileage_rate",
        "additional_stop_fee": "additional_stop_fee",
        "distance_threshold": "distance_threshold",
    },
    "adjustments": {
        "apply_urban_fee": "apply_urban_fee",
        "urban_fee_amount": "urban_fee_amount",
        "apply_rush_fee": "apply_rush_fee",
        "rush_fee_percentage": "rush_fee_percentage",
        "allow_manual_distance_adjustment": "allow_manual_distance_adjustment",
    },
    "flags": {
        "driver_load_threshold": "flag_driver_load_threshold",
        "distance_threshold": "flag_distance_threshold",
        "time_window_threshold": "flag_time_window_threshold",
        "max_route_stops": "flag_max_route_stops",
    },
    "resolver": {
        "lookup_concurrency": "lookup_concurrency",
        "slow_generation_notice_seconds": "slow_generation_notice_seconds",
    },
}


@dataclass
class NoiseTripConfig:
    """Rules for classifying a trip number as placeholder/test noise.

    Attributes:
        placeholders: Literal values (case-insensitive) that are always noise.
        patterns: Regular expressions (full match, case-insensitive) for noise.
        expected_format: Optional regex a real trip number must fully match;
            when set, anything else is treated as noise.
        verification_format: Regex a trip number should match to be accepted
            without manual verification.
    """

    placeholders: list[str] = field(
        default_factory=lambda: [
            "test", "n/a", "na", "none", "null", "tbd", "unknown", "xxx", "-", "?",
        ]
    )
    patterns: list[str] = field(
        default_factory=lambda: [
            r"test[\s\-_]*\w*",
            r"0+",
            r"(\d)\1{2,}",
            r"0?123(4(5(6(7(89?)?)?)?)?)?",
        ]
    )
    expected_format: Optional[str] = None
    verification_format: str = r"[A-Za-z]{1,3}[\-\s]?\d{3,8}|\d{3,8}"


def get_default_settings() -> InvoiceGenerationSettings:
    """Get default invoice generation settings without loading from file.

    Returns:
        InvoiceGenerationSettings instance with default values.
    """
    return InvoiceGenerationSettings()


def get_default_noise_config() -> NoiseTripConfig:
    """Get the default noise trip-number rules.

    Returns:
        NoiseTripConfig instance with default values.
    """
    return NoiseTripConfig()


def settings_from_dict(data: dict[str, Any]) -> InvoiceGenerationSettings:
    """Build settings from a sectioned configuration dictionary.

    Args:
        data: Parsed configuration with optional sections.

    Returns:
        InvoiceGenerationSettings with file values over defaults.
    """
    values: dict[str, Any] = {}
    for section, keys in _SETTINGS_SECTIONS.items():
        section_data = data.get(section, {})
        for json_key, settings_field in keys.items():
            if json_key in section_data:
                values[settings_field] = section_data[json_key]
    return InvoiceGenerationSettings(**values)


def noise_config_from_dict(data: dict[str, Any]) -> NoiseTripConfig:
    """Build noise rules from the ``noise_trip_numbers`` section."""
    defaults = NoiseTripConfig()
    section = data.get("noise_trip_numbers", {})
    return NoiseTripConfig(
        placeholders=section.get("placeholders", defaults.placeholders),
        patterns=section.get("patterns", defaults.patterns),
        expected_format=section.get("expected_format", defaults.expected_format),
        verification_format=section.get("verification_format", defaults.verification_format),
    )


def _read_config(config_path: Path) -> dict[str, Any]:
    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_invoice_settings(config_path: Optional[Path] = None) -> InvoiceGenerationSettings:
    """Load invoice generation settings from a JSON file.

    Args:
        config_path: Path to the settings file. Defaults to
            config/invoice_settings.json at the project root.

    Returns:
        InvoiceGenerationSettings instance with loaded values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        json.JSONDecodeError: If the config file is invalid JSON.
    """
    return settings_from_dict(_read_config(Path(config_path or DEFAULT_CONFIG_PATH)))


def load_noise_config(config_path: Optional[Path] = None) -> NoiseTripConfig:
    """Load noise trip-number rules from a JSON file.

    Args:
        config_path: Path to the settings file.

    Returns:
        NoiseTripConfig instance with loaded values.
    """
    return noise_config_from_dict(_read_config(Path(config_path or DEFAULT_CONFIG_PATH)))
