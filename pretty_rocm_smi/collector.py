from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import subprocess
import sys
import time
from types import MappingProxyType
from typing import Mapping

import psutil

from pretty_rocm_smi.config import CollectorConfig
from pretty_rocm_smi.errors import CollectionError, CollectionTimeoutError
from pretty_rocm_smi.logging_utils import TRACE_LEVEL

# Supplementary rocm-smi queries, keyed by the name the parser looks them up under.
DETAIL_QUERIES: dict[str, list[str]] = {
    "meminfo": ["--showmeminfo", "vram", "--json"],
    "productname": ["--showproductname"],
    "hw": ["--showhw"],
    "driver": ["--showdriver"],
}


@dataclass(frozen=True)
class RawReport:
    stdout: str
    returncode: int = 0
    stderr: str = ""
    command: tuple[str, ...] = ()
    extras: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


def _kill_tree(pid: int) -> None:
    """Kill a process and everything it spawned (rocm-smi is itself a Python script)."""
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    for proc in [*children, parent]:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(children, timeout=1)


def run_command(command: list[str], timeout_s: float) -> CommandResult:
    """Run ``command`` and capture stdout and stderr separately.

    Raises CollectionError when the executable cannot be started and
    CollectionTimeoutError when it outlives ``timeout_s``; the process tree
    is killed and reaped before the timeout error propagates.
    """
    try:
        proc = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
        )
    except FileNotFoundError:
        raise CollectionError(f"{command[0]}: command not found") from None
    except PermissionError:
        raise CollectionError(f"{command[0]}: permission denied") from None
    except OSError as exc:
        raise CollectionError(f"{command[0]}: {exc.strerror or exc}") from None

    with proc:
        try:
            stdout, stderr = proc.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            _kill_tree(proc.pid)
            proc.communicate()
            raise CollectionTimeoutError(
                f"{command[0]} did not respond within {timeout_s:g}s"
            ) from None
    return CommandResult(returncode=proc.returncode, stdout=stdout, stderr=stderr)


def read_report(path: str) -> RawReport:
    """Read a previously captured report from ``path`` (``-`` for stdin)."""
    if path == "-":
        text = sys.stdin.buffer.read().decode("utf-8", errors="replace")
        return RawReport(stdout=text, command=("-",))
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise CollectionError(f"Input file not found: {path}") from None
    except OSError as exc:
        raise CollectionError(f"Cannot read {path}: {exc.strerror or exc}") from None
    return RawReport(stdout=text, command=(path,))


class Collector:
    def __init__(self, config: CollectorConfig) -> None:
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)

    def collect(self) -> RawReport:
        command = [self.config.rocm_smi_path]
        self.logger.debug("Running %s", " ".join(command))
        result = run_command(command, self.config.timeout_s)
        self.logger.log(TRACE_LEVEL, "stdout: %s", result.stdout.strip())
        if result.returncode != 0:
            detail = result.stderr.strip().splitlines()
            message = f"{command[0]} exited with status {result.returncode}"
            if detail:
                message = f"{message}: {detail[-1]}"
            raise CollectionError(message)
        if not result.stdout.strip():
            raise CollectionError(f"{command[0]} produced no output")

        extras: dict[str, str] = {}
        if self.config.collect_details:
            extras = self._collect_details()
        return RawReport(
            stdout=result.stdout,
            returncode=result.returncode,
            stderr=result.stderr,
            command=tuple(command),
            extras=extras,
        )

    def _collect_details(self) -> dict[str, str]:
        """Run the supplementary queries under one shared ``timeout_s`` deadline."""
        extras: dict[str, str] = {}
        deadline = time.monotonic() + self.config.timeout_s
        for name, args in DETAIL_QUERIES.items():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.logger.debug("Detail queries out of time, skipping %s", name)
                break
            output = self._run_optional([self.config.rocm_smi_path, *args], remaining)
            if output:
                extras[name] = output
        version = self._read_rocm_version()
        if version:
            extras["rocm_version"] = version
        return extras

    def _run_optional(self, command: list[str], timeout_s: float) -> str | None:
        try:
            result = run_command(command, timeout_s)
        except CollectionError as exc:
            self.logger.debug("Skipping %s: %s", " ".join(command), exc)
            return None
        if result.returncode != 0:
            self.logger.debug(
                "Command failed (%s): %s", result.returncode, " ".join(command)
            )
            if result.stderr:
                self.logger.log(TRACE_LEVEL, "stderr: %s", result.stderr.strip())
            return None
        self.logger.log(TRACE_LEVEL, "stdout: %s", result.stdout.strip())
        return result.stdout

    def _read_rocm_version(self) -> str | None:
        try:
            content = Path(self.config.rocm_version_file).read_text()
        except (FileNotFoundError, PermissionError, OSError):
            self.logger.debug("ROCm version file not readable: %s", self.config.rocm_version_file)
            return None
        version = content.strip().split("-")[0]
        if version[:1].isdigit():
            return version
        return None
