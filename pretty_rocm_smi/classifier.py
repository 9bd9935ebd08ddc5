from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from pretty_rocm_smi.config import ThresholdConfig
from pretty_rocm_smi.parsing import DeviceMetrics


class Tier(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


# Metric kinds that have a warning/critical table in ThresholdConfig.
THRESHOLD_FIELDS = {
    "utilization": ("utilization_warn", "utilization_crit"),
    "temperature": ("temp_warn", "temp_crit"),
    "memory": ("mem_warn_pct", "mem_crit_pct"),
    "power": ("power_warn", "power_crit"),
}

# Display order of the classified metrics.
METRIC_KEYS = ("temperature", "power", "memory", "utilization", "fan", "sclk", "mclk")


@dataclass(frozen=True)
class ClassifiedMetric:
    key: str
    value: float | None
    tier: Tier


@dataclass(frozen=True)
class DeviceClassification:
    device: DeviceMetrics
    metrics: Mapping[str, ClassifiedMetric]

    def __post_init__(self) -> None:
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))

    def tier(self, key: str) -> Tier:
        return self.metrics[key].tier


def tier_for(value: float | None, warn: float, crit: float) -> Tier:
    """Boundaries are inclusive: a value equal to a threshold takes the higher tier."""
    if value is None:
        return Tier.UNKNOWN
    if value >= crit:
        return Tier.CRITICAL
    if value >= warn:
        return Tier.WARNING
    return Tier.NORMAL


def classify_value(kind: str, value: float | None, thresholds: ThresholdConfig) -> Tier:
    """Classify ``value`` of metric ``kind``; kinds without a threshold table are NORMAL when known."""
    if kind not in THRESHOLD_FIELDS:
        return Tier.UNKNOWN if value is None else Tier.NORMAL
    warn_name, crit_name = THRESHOLD_FIELDS[kind]
    return tier_for(value, getattr(thresholds, warn_name), getattr(thresholds, crit_name))


def _power_pct(device: DeviceMetrics) -> float | None:
    if device.power_w is None or not device.power_cap_w:
        return None
    return device.power_w / device.power_cap_w * 100


def classify(device: DeviceMetrics, thresholds: ThresholdConfig) -> DeviceClassification:
    values = {
        "temperature": device.temperature_c,
        "memory": device.memory_used_pct,
        "utilization": device.utilization_pct,
        "fan": device.fan_pct,
        "sclk": device.sclk_mhz,
        "mclk": device.mclk_mhz,
    }
    metrics: dict[str, ClassifiedMetric] = {}
    for key in METRIC_KEYS:
        if key == "power":
            # Power is judged against the cap; without a cap there is nothing to compare to.
            pct = _power_pct(device)
            if pct is None:
                tier = Tier.UNKNOWN if device.power_w is None else Tier.NORMAL
            else:
                tier = classify_value("power", pct, thresholds)
            metrics[key] = ClassifiedMetric(key, device.power_w, tier)
        else:
            value = values[key]
            metrics[key] = ClassifiedMetric(key, value, classify_value(key, value, thresholds))
    return DeviceClassification(device=device, metrics=metrics)


def classify_all(
    devices: list[DeviceMetrics], thresholds: ThresholdConfig
) -> list[DeviceClassification]:
    return [classify(device, thresholds) for device in devices]
