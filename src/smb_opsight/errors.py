# SMB OpSight - Operational & Financial Analytics engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Error types raised by SMB OpSight.

Two kinds of failure matter to callers:

- ``ConfigurationError``: the caller asked for something invalid (unknown
  period type, malformed date, bad configuration value). Not retryable.
- ``SourceReadError``: a read against the transactional store failed.
  Single-period computations fail closed on it, multi-period trends
  degrade the affected period instead.

Empty data is never an error: every computation defines a zero/empty
result for it.
"""


class OpSightError(Exception):
    """Base class for all SMB OpSight errors."""


class ConfigurationError(OpSightError, ValueError):
    """Invalid period type, malformed date input or configuration value."""


class SourceReadError(OpSightError, RuntimeError):
    """A query against the transactional store failed."""

    def __init__(self, source: str, message: str = "") -> None:
        self.source = source
        detail = message or "read failed"
        super().__init__(f"Failed to read '{source}' from the store: {detail}")
