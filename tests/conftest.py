"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import json
import logging

import pytest

CONCISE_OUTPUT = """\
============================================ ROCm System Management Interface ============================================
====================================================== Concise Info ======================================================
Device  Node  IDs              Temp    Power  Partitions          SCLK    MCLK     Fan  Perf  PwrCap  VRAM%  GPU%
              (DID,     GUID)  (Edge)  (Avg)  (Mem, Compute, ID)
==========================================================================================================================
0       1     0x744c,   12345  45.0°C  41.0W  N/A, N/A, 0         800Mhz  1600Mhz  0%   auto  300.0W  3%     0%
1       2     0x744c,   23456  92.0°C  285.0W N/A, N/A, 0         2500Mhz 1250Mhz  80%  auto  300.0W  95%    97%
==========================================================================================================================
================================================== End of ROCm SMI Log ===================================================
"""

LEGACY_CONCISE_OUTPUT = """\
======================= ROCm System Management Interface =======================
================================= Concise Info =================================
GPU  Temp (DieEdge)  AvgPwr  SCLK    MCLK     Fan  Perf  PwrCap  VRAM%  GPU%
0    35.0c           12.0W   800Mhz  1600Mhz  0%   auto  203.0W    0%   0%
================================================================================
============================= End of ROCm SMI Log ==============================
"""

VERBOSE_OUTPUT = """\
============================ ROCm System Management Interface ============================
GPU[1]\t\t: Temperature (Sensor edge) (C): 80.0
GPU[0]\t\t: Temperature (Sensor edge) (C): 45.0
GPU[0]\t\t: Temperature (Sensor junction) (C): 48.0
GPU[0]\t\t: Temperature (Sensor memory) (C): 52.0
GPU[0]\t\t: Average Graphics Package Power (W): 41.0
GPU[1]\t\t: Average Graphics Package Power (W): N/A
GPU[0]\t\t: Max Graphics Package Power (W): 300.0
GPU[0]\t\t: GPU use (%): 12
GPU[1]\t\t: GPU use (%): 75
GPU[0]\t\t: sclk clock level: 1: (800Mhz)
GPU[0]\t\t: Fan speed (level): 51
GPU[0]\t\t: Fan speed (%): 20
GPU[0]\t\t: Fan RPM: 800
GPU[0]\t\t: GPU Memory Allocated (VRAM%): 3
GPU[0]\t\t: GPU memory use (%): 40
GPU[0]\t\t: Voltage (mV): 806
==================================== End of ROCm SMI Log =================================
"""

MEMINFO_JSON = json.dumps(
    {
        "card0": {
            "VRAM Total Memory (B)": "25753026560",
            "VRAM Total Used Memory (B)": "1073741824",
        },
        "card1": {
            "VRAM Total Memory (B)": "25753026560",
            "VRAM Total Used Memory (B)": "24696061952",
        },
        "card7": {
            "VRAM Total Memory (B)": "1024",
            "VRAM Total Used Memory (B)": "0",
        },
    }
)

PRODUCTNAME_OUTPUT = """\
============================ ROCm System Management Interface ============================
============================================ Product Info ============================================
GPU[0]\t\t: Card Series: \t\tRadeon RX 7900 XTX
GPU[0]\t\t: Card Model: \t\t0x744c
GPU[0]\t\t: Card Vendor: \t\tAdvanced Micro Devices, Inc. [AMD/ATI]
GPU[1]\t\t: Card Series: \t\tRadeon RX 7900 XTX
======================================================================================================
"""

HW_OUTPUT = """\
============================ ROCm System Management Interface ============================
============================== Concise Hardware Info ==============================
GPU  NODE  DID     GUID   GFX VER  GFX RAS  SDMA RAS  UMC RAS  VBIOS  BUS           PARTITION ID
0    1     0x744c  12345  gfx1100  N/A      N/A       N/A      113-X  0000:03:00.0  0
1    2     0x744c  23456  gfx1100  N/A      N/A       N/A      113-X  0000:43:00.0  0
===================================================================================
"""

DRIVER_OUTPUT = """\
============================ ROCm System Management Interface ============================
Driver version: 6.8.5
==================================== End of ROCm SMI Log =================================
"""


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (spawns real processes)"
    )


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger; put the original handlers back."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def concise_output():
    return CONCISE_OUTPUT


@pytest.fixture
def verbose_output():
    return VERBOSE_OUTPUT


@pytest.fixture
def detail_extras():
    return {
        "meminfo": MEMINFO_JSON,
        "productname": PRODUCTNAME_OUTPUT,
        "hw": HW_OUTPUT,
        "driver": DRIVER_OUTPUT,
        "rocm_version": "6.2.1",
    }


@pytest.fixture
def legacy_concise_output():
    return LEGACY_CONCISE_OUTPUT
