"""
Exception taxonomy for the sploit daemon.

ConfigError is fatal at startup; mid-run it keeps the prior schedule.
TransportError aborts the current job or update cycle.
StoreError aborts the current notification pass.
NotifyError is logged and never retried.
"""

from __future__ import annotations


class SploitError(Exception):
    """Base class for all daemon errors."""


class ConfigError(SploitError):
    """Settings or definition files are missing or malformed."""


class TransportError(SploitError):
    """A console RPC primitive failed."""


class ConsoleTimeoutError(TransportError):
    """The console stayed busy past the maximum wait."""


class RpcAuthError(TransportError):
    """Token bootstrap against msfrpcd failed."""


class StoreError(SploitError):
    """The vulnerability store could not be queried."""


class NotifyError(SploitError):
    """A notification could not be delivered."""
