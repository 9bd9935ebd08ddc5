"""Color-coded terminal front-end for rocm-smi."""

__version__ = "0.2.0"

from pretty_rocm_smi.classifier import ClassifiedMetric, DeviceClassification, Tier, classify
from pretty_rocm_smi.collector import Collector, RawReport, read_report
from pretty_rocm_smi.config import AppConfig, ThresholdConfig, load_config
from pretty_rocm_smi.errors import (
    CollectionError,
    CollectionTimeoutError,
    ConfigError,
    ParseError,
    PrettySmiError,
)
from pretty_rocm_smi.parsing import DeviceMetrics, HostInfo, parse, parse_host_info
from pretty_rocm_smi.renderer import RenderLine, build_lines, render_records, render_table

__all__ = [
    "AppConfig",
    "ClassifiedMetric",
    "CollectionError",
    "CollectionTimeoutError",
    "Collector",
    "ConfigError",
    "DeviceClassification",
    "DeviceMetrics",
    "HostInfo",
    "ParseError",
    "PrettySmiError",
    "RawReport",
    "RenderLine",
    "ThresholdConfig",
    "Tier",
    "build_lines",
    "classify",
    "load_config",
    "parse",
    "parse_host_info",
    "read_report",
    "render_records",
    "render_table",
]
