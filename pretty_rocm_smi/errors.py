"""Exception hierarchy; each error carries the process exit code it maps to."""

from __future__ import annotations


class PrettySmiError(Exception):
    """Base exception for all pretty-rocm-smi errors."""

    exit_code = 1


class CollectionError(PrettySmiError):
    """rocm-smi is missing, exited non-zero, or produced no output."""

    exit_code = 1


class CollectionTimeoutError(CollectionError, TimeoutError):
    """rocm-smi did not finish within the configured timeout."""


class ParseError(PrettySmiError):
    """No recognizable device entry was found in the report."""

    exit_code = 2


class ConfigError(PrettySmiError):
    """Invalid command-line usage, config file, or threshold override."""

    exit_code = 3
