from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
import configparser
import math
from typing import Iterable

from pretty_rocm_smi.errors import ConfigError


@dataclass(frozen=True)
class ThresholdConfig:
    """Warning/critical boundaries, one pair per classified metric.

    Utilization, memory and power are percentages (memory of VRAM total,
    power of the reported power cap); temperatures are degrees Celsius.
    """

    utilization_warn: float = 70.0
    utilization_crit: float = 90.0
    temp_warn: float = 75.0
    temp_crit: float = 90.0
    mem_warn_pct: float = 70.0
    mem_crit_pct: float = 90.0
    power_warn: float = 70.0
    power_crit: float = 90.0

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"Threshold {item.name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ConfigError(f"Threshold {item.name} must be a finite number, got {value}")
            if value < 0:
                raise ConfigError(f"Threshold {item.name} must not be negative, got {value}")
        for warn, crit in THRESHOLD_PAIRS:
            if getattr(self, warn) > getattr(self, crit):
                raise ConfigError(
                    f"Threshold {warn} ({getattr(self, warn)}) is above "
                    f"{crit} ({getattr(self, crit)})"
                )


THRESHOLD_PAIRS = (
    ("utilization_warn", "utilization_crit"),
    ("temp_warn", "temp_crit"),
    ("mem_warn_pct", "mem_crit_pct"),
    ("power_warn", "power_crit"),
)

THRESHOLD_NAMES = frozenset(name for pair in THRESHOLD_PAIRS for name in pair)


@dataclass(frozen=True)
class CollectorConfig:
    rocm_smi_path: str = "rocm-smi"
    timeout_s: float = 10.0
    rocm_version_file: str = "/opt/rocm/.info/version"
    collect_details: bool = True


@dataclass(frozen=True)
class AppConfig:
    collector: CollectorConfig
    thresholds: ThresholdConfig


def default_config() -> AppConfig:
    return AppConfig(collector=CollectorConfig(), thresholds=ThresholdConfig())


def _parse_threshold(name: str, raw: str) -> float:
    if name not in THRESHOLD_NAMES:
        known = ", ".join(sorted(THRESHOLD_NAMES))
        raise ConfigError(f"Unknown threshold {name!r} (expected one of: {known})")
    try:
        return float(raw.strip().rstrip("%"))
    except ValueError:
        raise ConfigError(f"Threshold {name} must be a number, got {raw!r}") from None


def apply_threshold_overrides(
    thresholds: ThresholdConfig, overrides: Iterable[str]
) -> ThresholdConfig:
    """Apply ``NAME=VALUE`` strings on top of ``thresholds``."""
    values: dict[str, float] = {}
    for override in overrides:
        name, sep, raw = override.partition("=")
        if not sep:
            raise ConfigError(f"Threshold override must look like NAME=VALUE, got {override!r}")
        name = name.strip().lower()
        values[name] = _parse_threshold(name, raw)
    if not values:
        return thresholds
    return replace(thresholds, **values)


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser(interpolation=None)
    try:
        read_files = parser.read(path, encoding="utf-8")
    except configparser.Error as exc:
        raise ConfigError(f"Invalid config file {path}: {exc}") from None
    if not read_files:
        raise ConfigError(f"Config file not found: {path}")

    defaults = CollectorConfig()
    try:
        # parser.get with fallback handles a missing [collector] section
        collector = CollectorConfig(
            rocm_smi_path=parser.get("collector", "rocm_smi_path", fallback=defaults.rocm_smi_path),
            timeout_s=parser.getfloat("collector", "timeout_s", fallback=defaults.timeout_s),
            rocm_version_file=parser.get(
                "collector", "rocm_version_file", fallback=defaults.rocm_version_file
            ),
            collect_details=parser.getboolean(
                "collector", "collect_details", fallback=defaults.collect_details
            ),
        )
    except (configparser.Error, ValueError) as exc:
        raise ConfigError(f"Invalid [collector] value in {path}: {exc}") from None
    if not math.isfinite(collector.timeout_s) or collector.timeout_s <= 0:
        raise ConfigError(f"timeout_s must be positive, got {collector.timeout_s}")

    overrides: list[str] = []
    if parser.has_section("thresholds"):
        try:
            overrides = [f"{name}={value}" for name, value in parser.items("thresholds")]
        except configparser.Error as exc:
            raise ConfigError(f"Invalid [thresholds] value in {path}: {exc}") from None
    thresholds = apply_threshold_overrides(ThresholdConfig(), overrides)

    return AppConfig(collector=collector, thresholds=thresholds)
