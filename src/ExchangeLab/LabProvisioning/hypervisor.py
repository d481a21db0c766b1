"""Hypervisor-host collaborator.

The VM and virtual-disk lifecycle belongs to the hypervisor; ExchangeLab only
issues create requests and observes success or failure.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

from ..shell import Runner, quote, run_powershell

__all__ = ["DiskKind", "HypervisorHost", "HyperVHost"]

LOGGER = logging.getLogger("ExchangeLab.LabProvisioning.hypervisor")


class DiskKind(str, Enum):
    DIFFERENCING = "differencing"
    FIXED = "fixed"
    DYNAMIC = "dynamic"


@runtime_checkable
class HypervisorHost(Protocol):
    """Create disks and VMs; raise :class:`~ExchangeLab.errors.ExchangeLabError` on failure."""

    def create_disk(
        self, path: str, kind: DiskKind, *, size_bytes: Optional[int] = None, parent: Optional[str] = None
    ) -> None:
        ...

    def create_vm(
        self, name: str, *, memory_bytes: int, disk_path: str, switch_name: Optional[str] = None
    ) -> None:
        ...


class HyperVHost:
    """:class:`HypervisorHost` driving the Hyper-V PowerShell module."""

    def __init__(
        self,
        *,
        computer_name: Optional[str] = None,
        runner: Optional[Runner] = None,
        executable: Optional[str] = None,
    ) -> None:
        self.computer_name = computer_name
        self._runner = runner
        self._executable = executable

    def _run(self, script: str) -> str:
        if self.computer_name:
            script = f"{script} -ComputerName {quote(self.computer_name)}"
        kwargs = {"executable": self._executable, "preamble": ("$ErrorActionPreference = 'Stop'",)}
        if self._runner is not None:
            kwargs["runner"] = self._runner
        return run_powershell(script, **kwargs)

    def create_disk(
        self, path: str, kind: DiskKind, *, size_bytes: Optional[int] = None, parent: Optional[str] = None
    ) -> None:
        parts = ["New-VHD", "-Path", quote(path)]
        if kind is DiskKind.DIFFERENCING:
            if not parent:
                raise ValueError("differencing disks require a parent disk")
            parts += ["-ParentPath", quote(parent), "-Differencing"]
        else:
            if not size_bytes:
                raise ValueError(f"{kind.value} disks require a size")
            parts += ["-SizeBytes", str(size_bytes), "-Fixed" if kind is DiskKind.FIXED else "-Dynamic"]
        LOGGER.info(
            "creating virtual disk",
            extra={"stage": "provision", "extra_fields": {"path": path, "kind": kind.value}},
        )
        self._run(" ".join(parts))

    def create_vm(
        self, name: str, *, memory_bytes: int, disk_path: str, switch_name: Optional[str] = None
    ) -> None:
        parts = [
            "New-VM",
            "-Name",
            quote(name),
            "-MemoryStartupBytes",
            str(memory_bytes),
            "-VHDPath",
            quote(disk_path),
        ]
        if switch_name:
            parts += ["-SwitchName", quote(switch_name)]
        LOGGER.info(
            "creating virtual machine",
            extra={"stage": "provision", "target": name, "extra_fields": {"memory_bytes": memory_bytes}},
        )
        self._run(" ".join(parts))
