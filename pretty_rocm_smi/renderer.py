"""Terminal table and JSON-lines rendering of classified GPU metrics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import json
from typing import Any, Callable, Sequence

from colorlog.escape_codes import escape_codes, parse_colors

from pretty_rocm_smi.classifier import DeviceClassification, Tier, classify_value
from pretty_rocm_smi.config import ThresholdConfig
from pretty_rocm_smi.parsing import DeviceMetrics, HostInfo

TITLE = "pretty-rocm-smi"
PLACEHOLDER = "—"
MIN_WIDTH = 40
GIB = 1024**3
MIB = 1024**2

TIER_STYLES = {
    Tier.NORMAL: "",
    Tier.WARNING: "bold_yellow",
    Tier.CRITICAL: "bold_red",
    Tier.UNKNOWN: "thin",
}
FRAME_STYLE = "cyan"
HEADER_STYLE = "bold_white"

METRIC_UNITS = {
    "temperature": "C",
    "power": "W",
    "memory": "%",
    "utilization": "%",
    "fan": "%",
    "sclk": "MHz",
    "mclk": "MHz",
}


@dataclass(frozen=True)
class RenderCell:
    label: str
    text: str
    tier: Tier


@dataclass(frozen=True)
class RenderLine:
    index: int
    cells: tuple[RenderCell, ...]


def format_bytes(value: int) -> str:
    if value // MIB < 1024:
        return f"{value // MIB}MiB"
    return f"{value / GIB:.1f}GiB"


def _format_power(device: DeviceMetrics) -> str:
    if device.power_cap_w:
        return f"{device.power_w:.0f}W / {device.power_cap_w:.0f}W"
    return f"{device.power_w:.0f}W"


def _format_memory(device: DeviceMetrics) -> str:
    if device.memory_used_bytes is not None and device.memory_total_bytes:
        return f"{format_bytes(device.memory_used_bytes)} / {device.memory_total_bytes / GIB:.0f}GiB"
    return f"{device.memory_pct:.0f}%"


# (column label, metric key, formatter, right aligned)
COLUMNS: tuple[tuple[str, str, Callable[[DeviceMetrics], str], bool], ...] = (
    ("Temp", "temperature", lambda d: f"{d.temperature_c:.0f}°C", True),
    ("Power", "power", _format_power, False),
    ("VRAM", "memory", _format_memory, False),
    ("GPU%", "utilization", lambda d: f"{d.utilization_pct:.0f}%", True),
    ("Fan", "fan", lambda d: f"{d.fan_pct:.0f}%", True),
    ("SCLK", "sclk", lambda d: f"{d.sclk_mhz:.0f}MHz", True),
    ("MCLK", "mclk", lambda d: f"{d.mclk_mhz:.0f}MHz", True),
)


def style(text: str, tier: Tier) -> str:
    return paint(text, TIER_STYLES[tier])


def paint(text: str, colors: str) -> str:
    if not colors:
        return text
    return f"{parse_colors(colors)}{text}{escape_codes['reset']}"


def build_line(classification: DeviceClassification) -> RenderLine:
    device = classification.device
    cells = [RenderCell("GPU", str(device.index), Tier.NORMAL)]
    for label, key, formatter, _ in COLUMNS:
        metric = classification.metrics[key]
        text = PLACEHOLDER if metric.value is None else formatter(device)
        cells.append(RenderCell(label, text, metric.tier))
    return RenderLine(index=device.index, cells=tuple(cells))


def build_lines(classifications: Sequence[DeviceClassification]) -> list[RenderLine]:
    return [build_line(classification) for classification in classifications]


def _align(text: str, width: int, right: bool) -> str:
    padding = " " * (width - len(text))
    return padding + text if right else text + padding


def _column_widths(lines: Sequence[RenderLine]) -> list[int]:
    labels = ["GPU", *(column[0] for column in COLUMNS)]
    widths = [len(label) for label in labels]
    for line in lines:
        for position, cell in enumerate(line.cells):
            widths[position] = max(widths[position], len(cell.text))
    return widths


def _summary(
    classifications: Sequence[DeviceClassification], thresholds: ThresholdConfig
) -> str:
    devices = [c.device for c in classifications]
    sep = paint("│", "thin")
    parts = [f" {paint('Total:', 'thin')} {paint(str(len(devices)), 'bold')} GPUs"]

    with_memory = [
        d for d in devices if d.memory_used_bytes is not None and d.memory_total_bytes
    ]
    if with_memory:
        used = sum(d.memory_used_bytes for d in with_memory)
        total = sum(d.memory_total_bytes for d in with_memory)
        tier = classify_value("memory", used / total * 100, thresholds)
        parts.append(f"VRAM: {style(f'{used / GIB:.1f}', tier)}/{total / GIB:.0f} GiB")
    else:
        parts.append(f"VRAM: {style(PLACEHOLDER, Tier.UNKNOWN)}")

    with_power = [d for d in devices if d.power_w is not None]
    if with_power:
        power = sum(d.power_w for d in with_power)
        capped = [d for d in with_power if d.power_cap_w]
        if capped:
            cap = sum(d.power_cap_w for d in capped)
            capped_power = sum(d.power_w for d in capped)
            tier = classify_value("power", capped_power / cap * 100, thresholds)
            parts.append(f"Power: {style(f'{power:.0f}W', tier)}{paint(f'/{cap:.0f}W', 'thin')}")
        else:
            parts.append(f"Power: {power:.0f}W")
    else:
        parts.append(f"Power: {style(PLACEHOLDER, Tier.UNKNOWN)}")

    temps = [d.temperature_c for d in devices if d.temperature_c is not None]
    if temps:
        avg = sum(temps) / len(temps)
        tier = classify_value("temperature", avg, thresholds)
        parts.append(f"Avg Temp: {style(f'{avg:.0f}°C', tier)}")
    else:
        parts.append(f"Avg Temp: {style(PLACEHOLDER, Tier.UNKNOWN)}")
    return f"  {sep}  ".join(parts)


def render_table(
    classifications: Sequence[DeviceClassification],
    host: HostInfo | None = None,
    thresholds: ThresholdConfig | None = None,
    now: datetime | None = None,
) -> str:
    """Render a boxed, ANSI-colored table with one row per device."""
    host = host or HostInfo()
    thresholds = thresholds or ThresholdConfig()
    timestamp = (now or datetime.now()).strftime("%a %b %d %H:%M:%S %Y")
    lines = build_lines(classifications)
    widths = _column_widths(lines)
    aligns = [True, *(column[3] for column in COLUMNS)]
    labels = ["GPU", *(column[0] for column in COLUMNS)]

    first = classifications[0].device if classifications else None
    name = (first.name if first else None) or "AMD GPU"
    gfx = f" ({first.gfx_version})" if first and first.gfx_version else ""
    driver = host.driver_version or "N/A"
    rocm = host.rocm_version or "N/A"
    info_plain = f"{name}{gfx} Driver: {driver}  ROCm: {rocm}"
    info = (
        f"{paint(name, 'bold')}{paint(gfx, 'thin')} "
        f"{paint('Driver:', 'thin')} {paint(driver, 'bold')}  "
        f"{paint('ROCm:', 'thin')} {paint(rocm, 'bold')}"
    )

    row_width = 1 + sum(widths) + 3 * (len(widths) - 1) + 1
    width = max(MIN_WIDTH, row_width, len(TITLE) + len(timestamp) + 3, len(info_plain) + 2)

    def boxed(content: str, plain_len: int) -> str:
        edge = paint("║", FRAME_STYLE)
        return f"{edge}{content}{' ' * (width - plain_len)}{edge}"

    out = [paint(f"╔{'═' * width}╗", FRAME_STYLE)]
    gap = width - 2 - len(TITLE) - len(timestamp)
    out.append(
        boxed(f" {paint(TITLE, 'bold_cyan')}{' ' * gap}{paint(timestamp, 'thin')} ", width)
    )
    out.append(boxed(f" {info}", len(info_plain) + 1))
    out.append(paint(f"╠{'═' * width}╣", FRAME_STYLE))

    header = "   ".join(
        _align(label, widths[i], aligns[i]) for i, label in enumerate(labels)
    )
    out.append(boxed(f" {paint(header, HEADER_STYLE)}", len(header) + 1))
    out.append(paint(f"╟{'─' * width}╢", FRAME_STYLE))

    for line in lines:
        cells = []
        plain_len = 1
        for i, cell in enumerate(line.cells):
            padding = " " * (widths[i] - len(cell.text))
            text = paint(cell.text, HEADER_STYLE) if i == 0 else style(cell.text, cell.tier)
            cells.append(padding + text if aligns[i] else text + padding)
            plain_len += widths[i]
        plain_len += 3 * (len(cells) - 1)
        out.append(boxed(" " + "   ".join(cells), plain_len))

    out.append(paint(f"╚{'═' * width}╝", FRAME_STYLE))
    out.append(_summary(classifications, thresholds))
    return "\n".join(out) + "\n"


def build_record(classification: DeviceClassification) -> dict[str, Any]:
    device = classification.device
    line = build_line(classification)
    texts = {key: cell.text for (_, key, _, _), cell in zip(COLUMNS, line.cells[1:])}
    metrics: dict[str, Any] = {}
    for key, metric in classification.metrics.items():
        metrics[key] = {
            "value": None if metric.value is None else round(metric.value, 2),
            "unit": METRIC_UNITS[key],
            "text": texts[key],
            "tier": metric.tier.value,
        }
    return {
        "index": device.index,
        "name": device.name,
        "gfx_version": device.gfx_version,
        "memory_used_bytes": device.memory_used_bytes,
        "memory_total_bytes": device.memory_total_bytes,
        "metrics": metrics,
    }


def render_records(classifications: Sequence[DeviceClassification]) -> str:
    """One JSON object per device per line, without any escape codes."""
    records = [build_record(classification) for classification in classifications]
    return "".join(json.dumps(record, ensure_ascii=False) + "\n" for record in records)
