"""PowerShell invocation helpers shared by the Exchange and Hyper-V adapters."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from typing import Any, Callable, Optional, Sequence

from .errors import ShellCommandError

__all__ = ["Runner", "find_powershell", "run_powershell", "run_powershell_json", "quote"]

LOGGER = logging.getLogger("ExchangeLab.shell")

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

_CANDIDATES = ("pwsh", "powershell", "powershell.exe")


def find_powershell() -> str:
    """Return the first PowerShell executable found on ``PATH``."""

    for candidate in _CANDIDATES:
        located = shutil.which(candidate)
        if located:
            return located
    raise ShellCommandError("PowerShell executable not found on PATH")


def quote(value: str) -> str:
    """Quote ``value`` as a single-quoted PowerShell literal."""

    return "'" + value.replace("'", "''") + "'"


def run_powershell(
    script: str,
    *,
    executable: Optional[str] = None,
    runner: Runner = subprocess.run,
    timeout: Optional[float] = None,
    preamble: Sequence[str] = (),
) -> str:
    """Run ``script`` non-interactively and return its standard output.

    Raises:
        ShellCommandError: When PowerShell cannot be started, times out, or
            exits with a non-zero status.
    """

    command_text = "; ".join([*preamble, script]) if preamble else script
    argv = [
        executable or find_powershell(),
        "-NoProfile",
        "-NonInteractive",
        "-Command",
        command_text,
    ]
    LOGGER.debug("running powershell", extra={"stage": "shell", "extra_fields": {"script": script}})
    try:
        completed = runner(argv, capture_output=True, text=True, timeout=timeout, check=False)
    except FileNotFoundError as exc:
        raise ShellCommandError(f"PowerShell executable not found: {argv[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ShellCommandError(f"PowerShell command timed out after {timeout}s") from exc

    if completed.returncode != 0:
        stderr = (completed.stderr or "").strip()
        raise ShellCommandError(
            f"PowerShell exited with status {completed.returncode}: {stderr or 'no error output'}",
            returncode=completed.returncode,
            stderr=stderr,
        )
    return completed.stdout or ""


def run_powershell_json(script: str, **kwargs: Any) -> Any:
    """Run ``script`` piped through ``ConvertTo-Json`` and decode the result.

    PowerShell collapses single-item arrays into a bare object; the result is
    always returned as a list so callers can iterate uniformly.
    """

    output = run_powershell(f"{script} | ConvertTo-Json -Depth 4 -Compress", **kwargs).strip()
    if not output:
        return []
    try:
        decoded = json.loads(output)
    except json.JSONDecodeError as exc:
        raise ShellCommandError(f"PowerShell returned invalid JSON: {exc}") from exc
    if isinstance(decoded, list):
        return decoded
    return [decoded]
