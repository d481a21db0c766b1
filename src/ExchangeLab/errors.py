"""Exception hierarchy shared across catalog resolution, distribution, and provisioning.

ExchangeLab drives several external systems (the vendor download site, remote
file shares, Exchange Management Shell, Hyper-V). This module groups their
failure modes so callers can react to a category (for example, a fatal
workflow error vs. a malformed configuration) while still having access to
the specialised subclasses when finer-grained handling is required.

Per-target and per-machine failures are deliberately *not* represented here:
they are reported as outcome values and never raised.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ExchangeLabError",
    "ConfigError",
    "CatalogError",
    "WorkflowError",
    "UnknownOrUnavailableVersion",
    "InvalidLocator",
    "DetectionUnavailable",
    "FetchFailed",
    "ShellCommandError",
    "ProvisioningError",
]


class ExchangeLabError(RuntimeError):
    """Base exception for every ExchangeLab failure."""


class ConfigError(ExchangeLabError):
    """Raised when CLI arguments or YAML configuration inputs are invalid."""


class CatalogError(ConfigError):
    """Raised when a version catalog is malformed (duplicate or badly formed keys)."""


class WorkflowError(ExchangeLabError):
    """Terminal error for a distribution invocation."""


class UnknownOrUnavailableVersion(WorkflowError):
    """Raised when the requested version resolves to the unavailable sentinel.

    ``reason`` is one of ``"unknown"`` (key absent from the catalog),
    ``"retracted"`` (key present but no longer obtainable) or ``"invalid"``
    (the locator cannot be turned into a file name).
    """

    def __init__(self, message: str, *, key: Optional[str] = None, reason: str = "unknown") -> None:
        super().__init__(message)
        self.key = key
        self.reason = reason


class InvalidLocator(UnknownOrUnavailableVersion):
    """Raised when a locator has no usable final path segment."""

    def __init__(self, message: str, *, locator: Optional[str] = None) -> None:
        super().__init__(message, reason="invalid")
        self.locator = locator


class DetectionUnavailable(WorkflowError):
    """Raised when automatic version or target detection cannot produce an answer."""


class FetchFailed(WorkflowError):
    """Raised when the artifact transfer to the local cache fails."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ShellCommandError(ExchangeLabError):
    """Raised when a PowerShell invocation exits non-zero or cannot be started."""

    def __init__(self, message: str, *, returncode: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class ProvisioningError(ExchangeLabError):
    """Raised when a lab plan cannot be executed at all (invalid plan, missing host)."""
# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.errors",
#   "purpose": "Define the exception hierarchy used across catalog resolution, distribution, and provisioning",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "configuration", "name": "Configuration Errors", "anchor": "CFG", "kind": "api"},
#     {"id": "workflow", "name": "Workflow Errors", "anchor": "WRK", "kind": "api"},
#     {"id": "shell", "name": "Shell & Provisioning Errors", "anchor": "SHL", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
