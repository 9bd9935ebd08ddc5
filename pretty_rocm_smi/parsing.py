"""Turn rocm-smi output into per-device metric records.

The parser is tolerant: lines it does not understand are skipped, and a
recognized label whose value cannot be read leaves that field unknown
(``None``). Only a report with no device entry at all is an error.

Accepted shapes, which may be mixed within one report:

* device blocks: a header line (``GPU[0]``, ``GPU 1:``, ``card2``,
  ``Device``) followed by ``label: value`` lines, ended by a blank line;
* prefixed lines as printed by verbose rocm-smi
  (``GPU[0]  : Temperature (Sensor edge) (C): 45.0``);
* the concise rocm-smi table;
* ``rocm-smi --json`` objects keyed by ``cardN``.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any

from pretty_rocm_smi.collector import RawReport
from pretty_rocm_smi.errors import ParseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceMetrics:
    index: int
    temperature_c: float | None = None
    utilization_pct: float | None = None
    memory_used_bytes: int | None = None
    memory_total_bytes: int | None = None
    memory_pct: float | None = None
    power_w: float | None = None
    power_cap_w: float | None = None
    fan_pct: float | None = None
    sclk_mhz: float | None = None
    mclk_mhz: float | None = None
    name: str | None = None
    gfx_version: str | None = None

    @property
    def memory_used_pct(self) -> float | None:
        """Percent of VRAM in use, falling back to the tool-reported VRAM%."""
        if self.memory_used_bytes is not None and self.memory_total_bytes:
            return self.memory_used_bytes / self.memory_total_bytes * 100
        return self.memory_pct


@dataclass(frozen=True)
class HostInfo:
    driver_version: str | None = None
    rocm_version: str | None = None


TEXT_FIELDS = frozenset({"name", "gfx_version"})
PERCENT_FIELDS = frozenset({"utilization_pct", "fan_pct", "memory_pct"})
BYTE_FIELDS = frozenset({"memory_used_bytes", "memory_total_bytes"})
# Pseudo field for "used / total" memory values.
MEMORY_PAIR = "memory_pair"

_UNIT_SCALE = {
    "b": 1,
    "kb": 1024,
    "kib": 1024,
    "mb": 1024**2,
    "mib": 1024**2,
    "gb": 1024**3,
    "gib": 1024**3,
    "ghz": 1000,
}
_UNITS = ("°c", "c", "%", "w", "mhz", "ghz", "b", "kib", "mib", "gib", "kb", "mb", "gb")

_NUMBER = re.compile(
    r"([-+]?\d+(?:\.\d+)?)\s*(" + "|".join(re.escape(unit) for unit in _UNITS) + r")?"
)
_CLOCK_LEVEL = re.compile(r"^\d+\s*:\s*")
_PAIR = re.compile(r"^(.+?)\s*/\s*(.+)$")
_LABEL_UNIT = re.compile(r"\((b|kib|mib|gib|kb|mb|gb)\)")

_HEADER = re.compile(r"^(?:gpu|card|device)\s*(?:\[\s*(\d+)\s*\]|#?\s*(\d+))?\s*:?$", re.IGNORECASE)
_PREFIXED = re.compile(r"^(?:gpu|card)\s*\[\s*(\d+)\s*\]\s*:\s*(.+)$", re.IGNORECASE)
_JSON_CARD = re.compile(r"^(?:card|gpu)\s*\[?\s*(\d+)\s*\]?$", re.IGNORECASE)
_DRIVER = re.compile(r"driver version\s*:\s*(\S+)", re.IGNORECASE)

# Concise table columns: (minimum column count, {field: column}).
TABLE_LAYOUTS = {
    # ROCm 6: Device Node IDs(DID, GUID) Temp Power Partitions(Mem, Compute, ID)
    #         SCLK MCLK Fan Perf PwrCap VRAM% GPU%
    "device": (
        15,
        {
            "temperature_c": 4,
            "power_w": 5,
            "sclk_mhz": 9,
            "mclk_mhz": 10,
            "fan_pct": 11,
            "power_cap_w": 13,
            "memory_pct": 14,
            "utilization_pct": 15,
        },
    ),
    # ROCm 5: GPU Temp AvgPwr SCLK MCLK Fan Perf PwrCap VRAM% GPU%
    "gpu": (
        10,
        {
            "temperature_c": 1,
            "power_w": 2,
            "sclk_mhz": 3,
            "mclk_mhz": 4,
            "fan_pct": 5,
            "power_cap_w": 7,
            "memory_pct": 8,
            "utilization_pct": 9,
        },
    ),
}


def normalize_label(label: str) -> str:
    return " ".join(label.lower().split())


def match_field(label: str) -> str | None:
    """Map a rocm-smi label onto a DeviceMetrics field name, or None."""
    key = normalize_label(label)
    if not key:
        return None
    if "gfx" in key and ("version" in key or "ver" in key.split()):
        return "gfx_version"
    if key in ("card series", "product name", "marketing name", "device name", "name", "card name"):
        return "name"
    if "temp" in key:
        if any(word in key for word in ("junction", "hotspot", "mem")):
            return None
        return "temperature_c"
    if "fan" in key:
        if "rpm" in key or "level" in key:
            return None
        return "fan_pct"
    if "clk" in key or "clock" in key:
        if key.startswith("mclk") or "memory clock" in key or "mem clock" in key:
            return "mclk_mhz"
        if key.startswith("sclk") or key in (
            "clock", "clocks", "gpu clock", "graphics clock", "core clock", "shader clock"
        ):
            return "sclk_mhz"
        return None
    if "power" in key:
        if any(word in key for word in ("cap", "limit", "max")):
            return "power_cap_w"
        if any(word in key for word in ("profile", "state", "level", "mode")):
            return None
        return "power_w"
    if "vram" in key or "mem" in key:
        if "activity" in key or "bandwidth" in key or re.search(r"\buse\b", key):
            return None
        if "%" in key or "percent" in key or "allocated" in key:
            return "memory_pct"
        if "used" in key:
            return "memory_used_bytes"
        if "total" in key or "size" in key or "capacity" in key:
            return "memory_total_bytes"
        if key in ("memory", "vram", "mem", "memory usage", "vram usage"):
            return MEMORY_PAIR
        return None
    if (
        "util" in key
        or "busy" in key
        or "gpu%" in key
        or key in ("gpu", "gpu use", "gpu use (%)", "gpu load", "load", "usage", "gpu usage")
    ):
        return "utilization_pct"
    return None


def parse_number(value: str, field: str, label: str = "") -> float | None:
    """Parse ``value`` for ``field``, stripping unit suffixes; None when unreadable."""
    text = value.strip().lower().rstrip("*").strip()
    if field in ("sclk_mhz", "mclk_mhz"):
        text = _CLOCK_LEVEL.sub("", text)
    text = text.strip("()[] ")
    match = _NUMBER.fullmatch(text)
    if not match:
        return None
    number = float(match.group(1))
    unit = match.group(2)
    if field in BYTE_FIELDS:
        if unit is None:
            hint = _LABEL_UNIT.search(normalize_label(label))
            unit = hint.group(1) if hint else "b"
        if unit not in _UNIT_SCALE or unit == "ghz":
            return None
        number *= _UNIT_SCALE[unit]
    elif unit == "ghz":
        number *= _UNIT_SCALE[unit]
    if number < 0:
        return None
    if field in PERCENT_FIELDS and number > 100:
        return None
    return number


def _set_field(fields: dict[str, Any], field: str, value: Any) -> None:
    # First readable value wins; an unreadable one still marks the field as reported.
    if fields.get(field) is None:
        fields[field] = value


def assign(fields: dict[str, Any], label: str, value: str) -> bool:
    """Record ``label: value`` into ``fields``; False when the label is not recognized."""
    field = match_field(label)
    if field is None:
        return False
    value = value.strip()
    if field in TEXT_FIELDS:
        _set_field(fields, field, value or None)
    elif field == MEMORY_PAIR:
        _assign_memory_pair(fields, label, value)
    else:
        _set_field(fields, field, parse_number(value, field, label))
    return True


def _assign_memory_pair(fields: dict[str, Any], label: str, value: str) -> None:
    used = total = None
    match = _PAIR.match(value)
    if not match and value.rstrip().endswith("%"):
        # "Memory: 95%" carries only the used share of VRAM.
        _set_field(fields, "memory_pct", parse_number(value, "memory_pct", label))
        return
    if match:
        used_text, total_text = match.group(1), match.group(2)
        total_unit = _NUMBER.fullmatch(total_text.strip().lower())
        if total_unit and total_unit.group(2) and not re.search(r"[a-z]", used_text.lower()):
            used_text = f"{used_text} {total_unit.group(2)}"
        used = parse_number(used_text, "memory_used_bytes", label)
        total = parse_number(total_text, "memory_total_bytes", label)
    _set_field(fields, "memory_used_bytes", used)
    _set_field(fields, "memory_total_bytes", total)


class _DeviceTable:
    def __init__(self) -> None:
        self.indexed: dict[int, dict[str, Any]] = {}
        self.anonymous: list[dict[str, Any]] = []

    def device(self, index: int) -> dict[str, Any]:
        return self.indexed.setdefault(index, {})

    def new_anonymous(self) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        self.anonymous.append(fields)
        return fields

    def resolve(self) -> dict[int, dict[str, Any]]:
        """Give anonymous blocks the lowest free indices in order of appearance."""
        resolved = dict(self.indexed)
        next_index = 0
        for fields in self.anonymous:
            if not fields:
                continue
            while next_index in resolved:
                next_index += 1
            resolved[next_index] = fields
        return resolved


def _parse_text(text: str, table: _DeviceTable) -> None:
    current: dict[str, Any] | None = None
    layout = "device"
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            current = None
            continue

        prefixed = _PREFIXED.match(line)
        if prefixed:
            label, sep, value = prefixed.group(2).partition(":")
            if sep and match_field(label) is not None:
                assign(table.device(int(prefixed.group(1))), label, value)
            continue

        header = _HEADER.match(line)
        if header:
            index = header.group(1) or header.group(2)
            current = table.device(int(index)) if index else table.new_anonymous()
            continue

        key = normalize_label(line)
        if "gpu%" in key and "temp" in key:
            layout = "gpu" if key.startswith("gpu") else "device"
            continue

        parts = line.split()
        if parts[0].isdigit():
            min_columns, columns = TABLE_LAYOUTS[layout]
            if len(parts) >= min_columns:
                _assign_table_row(table.device(int(parts[0])), parts, columns)
                continue

        label, sep, value = line.partition(":")
        if not sep or match_field(label) is None:
            continue
        if current is None:
            current = table.new_anonymous()
        assign(current, label, value)


def _assign_table_row(fields: dict[str, Any], parts: list[str], columns: dict[str, int]) -> None:
    for field, column in columns.items():
        if column < len(parts):
            _set_field(fields, field, parse_number(parts[column], field))
        else:
            fields.setdefault(field, None)


def _parse_json(data: dict[str, Any], table: _DeviceTable) -> bool:
    found = False
    for key, values in data.items():
        match = _JSON_CARD.match(str(key).strip())
        if not match or not isinstance(values, dict):
            continue
        found = True
        fields = table.device(int(match.group(1)))
        for label, value in values.items():
            if isinstance(value, (dict, list)):
                continue
            assign(fields, str(label), "" if value is None else str(value))
    return found


def _load_json(text: str) -> dict[str, Any] | None:
    stripped = text.strip()
    if not stripped.startswith("{"):
        return None
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug("Report looks like JSON but does not decode; parsing as text.")
        return None
    return data if isinstance(data, dict) else None


def _parse_any(text: str) -> _DeviceTable:
    table = _DeviceTable()
    data = _load_json(text)
    if data is None or not _parse_json(data, table):
        _parse_text(text, table)
    return table


def _parse_hw(text: str) -> dict[int, str]:
    """GFX versions from the ``rocm-smi --showhw`` table (column 4)."""
    versions: dict[int, str] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 10 and parts[0].isdigit() and parts[4].lower().startswith("gfx"):
            versions[int(parts[0])] = parts[4]
    return versions


def _merge_extras(resolved: dict[int, dict[str, Any]], extras: Any) -> None:
    for name in ("meminfo", "productname"):
        text = extras.get(name)
        if not text:
            continue
        extra = _parse_any(text)
        for index, values in extra.indexed.items():
            if index not in resolved:
                continue
            for field, value in values.items():
                if value is not None:
                    _set_field(resolved[index], field, value)
    hw = extras.get("hw")
    if hw:
        for index, version in _parse_hw(hw).items():
            if index in resolved:
                _set_field(resolved[index], "gfx_version", version)


def _to_metrics(index: int, fields: dict[str, Any]) -> DeviceMetrics:
    values = {key: value for key, value in fields.items() if key != MEMORY_PAIR}
    used = values.get("memory_used_bytes")
    total = values.get("memory_total_bytes")
    if used is not None and total is not None and used > total:
        logger.warning(
            "GPU %s reports %s bytes used of %s total; treating memory as unknown.",
            index,
            int(used),
            int(total),
        )
        used = total = None
    for field in BYTE_FIELDS:
        values.pop(field, None)
    return DeviceMetrics(
        index=index,
        memory_used_bytes=None if used is None else int(used),
        memory_total_bytes=None if total is None else int(total),
        **values,
    )


def parse(report: RawReport) -> list[DeviceMetrics]:
    """Parse ``report`` into devices ordered by ascending index.

    Raises ParseError when no device entry can be recognized.
    """
    table = _parse_any(report.stdout)
    resolved = table.resolve()
    if not resolved:
        raise ParseError("no GPU device data found in rocm-smi output")
    _merge_extras(resolved, report.extras)
    devices = [_to_metrics(index, resolved[index]) for index in sorted(resolved)]
    logger.debug("Parsed %s device(s).", len(devices))
    return devices


def parse_host_info(report: RawReport) -> HostInfo:
    driver = None
    for text in (report.extras.get("driver"), report.stdout):
        match = _DRIVER.search(text or "")
        if match:
            driver = match.group(1)
            break
    return HostInfo(driver_version=driver, rocm_version=report.extras.get("rocm_version"))
