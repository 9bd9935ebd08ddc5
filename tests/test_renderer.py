"""Tests for the colored table and JSON-lines renderers."""
from __future__ import annotations

from datetime import datetime
import json
import re

import pytest
from colorlog.escape_codes import escape_codes

from pretty_rocm_smi.classifier import Tier, classify, classify_all
from pretty_rocm_smi.collector import RawReport
from pretty_rocm_smi.config import ThresholdConfig
from pretty_rocm_smi.parsing import DeviceMetrics, HostInfo, parse
from pretty_rocm_smi.renderer import (
    PLACEHOLDER,
    build_line,
    build_record,
    format_bytes,
    render_records,
    render_table,
    style,
)
from pretty_rocm_smi.schema import validate_record

ANSI = re.compile(r"\x1b\[[0-9;]*m")
NOW = datetime(2026, 10, 19, 12, 30, 0)


def _visible(text: str) -> str:
    return ANSI.sub("", text)


@pytest.fixture
def classifications(concise_output, detail_extras):
    devices = parse(RawReport(stdout=concise_output, extras=detail_extras))
    return classify_all(devices, ThresholdConfig())


class TestStyle:
    """Tests for tier styling."""

    def test_normal_is_unstyled(self):
        assert style("45°C", Tier.NORMAL) == "45°C"

    def test_warning_and_critical(self):
        assert style("80°C", Tier.WARNING) == f"{escape_codes['bold_yellow']}80°C{escape_codes['reset']}"
        assert style("95°C", Tier.CRITICAL) == f"{escape_codes['bold_red']}95°C{escape_codes['reset']}"

    def test_unknown_is_dim(self):
        assert style(PLACEHOLDER, Tier.UNKNOWN) == f"{escape_codes['thin']}{PLACEHOLDER}{escape_codes['reset']}"


class TestBuildLine:
    """Tests for RenderLine construction."""

    def test_cells_in_order(self):
        device = DeviceMetrics(
            index=2,
            temperature_c=45.4,
            power_w=41.0,
            power_cap_w=300.0,
            memory_used_bytes=512 * 1024**2,
            memory_total_bytes=24 * 1024**3,
            utilization_pct=12.0,
            fan_pct=20.0,
            sclk_mhz=800.0,
            mclk_mhz=1600.0,
        )
        line = build_line(classify(device, ThresholdConfig()))
        assert line.index == 2
        assert [cell.label for cell in line.cells] == [
            "GPU", "Temp", "Power", "VRAM", "GPU%", "Fan", "SCLK", "MCLK",
        ]
        assert [cell.text for cell in line.cells] == [
            "2", "45°C", "41W / 300W", "512MiB / 24GiB", "12%", "20%", "800MHz", "1600MHz",
        ]

    def test_unknown_uses_placeholder(self):
        device = DeviceMetrics(index=0, temperature_c=50.0)
        line = build_line(classify(device, ThresholdConfig()))
        cells = {cell.label: cell for cell in line.cells}
        assert cells["Temp"].text == "50°C"
        assert cells["Temp"].tier is Tier.NORMAL
        assert cells["Power"].text == PLACEHOLDER
        assert cells["Power"].tier is Tier.UNKNOWN

    def test_format_bytes(self):
        assert format_bytes(1023 * 1024**2) == "1023MiB"
        assert format_bytes(3 * 1024**3 // 2) == "1.5GiB"


class TestRenderTable:
    """Tests for the interactive table."""

    def test_critical_values_styled(self):
        device = DeviceMetrics(index=0, temperature_c=92.0, utilization_pct=97.0)
        output = render_table([classify(device, ThresholdConfig())], now=NOW)
        assert style("92°C", Tier.CRITICAL) in output
        assert style("97%", Tier.CRITICAL) in output

    def test_placeholder_is_dim(self):
        device = DeviceMetrics(index=0, temperature_c=50.0)
        output = render_table([classify(device, ThresholdConfig())], now=NOW)
        assert style(PLACEHOLDER, Tier.UNKNOWN) in output
        assert "50°C" in output

    def test_box_is_aligned(self, classifications):
        host = HostInfo(driver_version="6.8.5", rocm_version="6.2.1")
        output = render_table(classifications, host, now=NOW)
        box = [_visible(line) for line in output.splitlines()[:-1]]
        assert len({len(line) for line in box}) == 1
        rows = [line for line in box if line.startswith("║")]
        assert len(rows) == 5

    def test_columns_line_up_across_rows(self, classifications):
        output = render_table(classifications, now=NOW)
        rows = [_visible(line) for line in output.splitlines() if _visible(line).startswith("║ ")][2:]
        assert len(rows) == 3
        header, first, second = rows
        assert header.index("Power") == first.index("41W") == second.index("285W")
        assert header.index("VRAM") == first.index("1.0GiB") == second.index("23.0GiB")

    def test_header_info(self, classifications):
        host = HostInfo(driver_version="6.8.5", rocm_version="6.2.1")
        output = _visible(render_table(classifications, host, now=NOW))
        assert "pretty-rocm-smi" in output
        assert "Mon Oct 19 12:30:00 2026" in output
        assert "Radeon RX 7900 XTX (gfx1100) Driver: 6.8.5  ROCm: 6.2.1" in output

    def test_header_defaults(self):
        output = _visible(render_table([classify(DeviceMetrics(index=0), ThresholdConfig())], now=NOW))
        assert "AMD GPU Driver: N/A  ROCm: N/A" in output

    def test_summary(self, classifications):
        summary = _visible(render_table(classifications, now=NOW).splitlines()[-1])
        assert "Total: 2 GPUs" in summary
        assert "VRAM: 24.0/48 GiB" in summary
        assert "Power: 326W/600W" in summary
        assert "Avg Temp: 68°C" in summary

    def test_summary_unknowns(self):
        output = render_table([classify(DeviceMetrics(index=0), ThresholdConfig())], now=NOW)
        summary = _visible(output.splitlines()[-1])
        assert f"VRAM: {PLACEHOLDER}" in summary
        assert f"Avg Temp: {PLACEHOLDER}" in summary

    def test_does_not_mutate_input(self, classifications):
        before = [dict(c.metrics) for c in classifications]
        render_table(classifications, now=NOW)
        render_records(classifications)
        assert [dict(c.metrics) for c in classifications] == before


class TestRenderRecords:
    """Tests for the non-interactive JSON-lines output."""

    def test_one_record_per_device(self, classifications):
        output = render_records(classifications)
        lines = output.splitlines()
        assert len(lines) == 2
        assert "\x1b" not in output
        assert [json.loads(line)["index"] for line in lines] == [0, 1]

    def test_tiers_survive_round_trip(self, classifications):
        records = [json.loads(line) for line in render_records(classifications).splitlines()]
        for classification, record in zip(classifications, records):
            recovered = {key: Tier(entry["tier"]) for key, entry in record["metrics"].items()}
            assert recovered == {key: metric.tier for key, metric in classification.metrics.items()}

    def test_unknown_record(self):
        record = build_record(classify(DeviceMetrics(index=0, temperature_c=50.0), ThresholdConfig()))
        assert record["metrics"]["power"] == {
            "value": None,
            "unit": "W",
            "text": PLACEHOLDER,
            "tier": "unknown",
        }
        assert record["metrics"]["temperature"]["tier"] == "normal"

    def test_records_match_schema(self, classifications):
        for classification in classifications:
            assert validate_record(build_record(classification)) == []

    def test_schema_rejects_bad_tier(self, classifications):
        record = build_record(classifications[0])
        record["metrics"]["temperature"]["tier"] = "scorching"
        assert validate_record(record)
