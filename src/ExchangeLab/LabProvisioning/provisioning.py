# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.LabProvisioning.provisioning",
#   "purpose": "Validate lab plans and drive disk and VM creation machine by machine",
#   "sections": [
#     {"id": "plan", "name": "Plan models", "anchor": "PLAN", "kind": "api"},
#     {"id": "report", "name": "Outcome types", "anchor": "OUT", "kind": "api"},
#     {"id": "run", "name": "provision_lab", "anchor": "function-provision-lab", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Lab provisioning.

A :class:`LabPlan` lists the machines of a test lab. :func:`provision_lab`
walks the list in order and, for each machine, asks the hypervisor host for a
virtual disk and then for a VM bound to it. A machine whose disk cannot be
created is skipped; failures never stop the remaining machines.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PureWindowsPath
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ExchangeLabError, ProvisioningError
from ..logging_utils import generate_correlation_id
from .hypervisor import DiskKind, HypervisorHost

__all__ = [
    "LabMachine",
    "LabPlan",
    "MachineStatus",
    "MachineOutcome",
    "ProvisioningReport",
    "load_lab_plan",
    "provision_lab",
]

LOGGER = logging.getLogger("ExchangeLab.LabProvisioning")

_MB = 1024 * 1024
_GB = 1024 * _MB

# --- Plan models -----------------------------------------------------------------


class LabMachine(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    memory_mb: int = Field(default=8192, ge=512)
    disk_kind: DiskKind = DiskKind.DIFFERENCING
    disk_size_gb: Optional[int] = Field(default=None, gt=0)
    parent_disk: Optional[str] = None

    @model_validator(mode="after")
    def check_disk_settings(self) -> "LabMachine":
        if self.disk_kind is DiskKind.DIFFERENCING and not self.parent_disk:
            raise ValueError(f"machine {self.name}: differencing disks need parent_disk")
        if self.disk_kind is not DiskKind.DIFFERENCING and self.disk_size_gb is None:
            raise ValueError(f"machine {self.name}: {self.disk_kind.value} disks need disk_size_gb")
        return self

    model_config = {"extra": "forbid"}


class LabPlan(BaseModel):
    vhd_root: str = Field(min_length=1, description="Directory the virtual disks are created in")
    switch_name: Optional[str] = None
    parent_disk: Optional[str] = Field(
        default=None, description="Default parent for differencing disks"
    )
    machines: List[LabMachine] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def inherit_parent_disk(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and data.get("parent_disk"):
            machines = []
            for machine in data.get("machines") or []:
                if isinstance(machine, Mapping) and "parent_disk" not in machine:
                    machine = {**machine, "parent_disk": data["parent_disk"]}
                machines.append(machine)
            data = {**data, "machines": machines}
        return data

    @field_validator("machines")
    @classmethod
    def unique_names(cls, machines: List[LabMachine]) -> List[LabMachine]:
        seen = set()
        for machine in machines:
            folded = machine.name.casefold()
            if folded in seen:
                raise ValueError(f"duplicate machine name {machine.name!r}")
            seen.add(folded)
        return machines

    def disk_path(self, machine: LabMachine) -> str:
        return str(PureWindowsPath(self.vhd_root) / f"{machine.name}.vhdx")

    model_config = {"extra": "forbid"}


def load_lab_plan(raw: Mapping[str, object]) -> LabPlan:
    """Validate a raw ``lab:`` mapping into a :class:`LabPlan`."""

    if not isinstance(raw, Mapping):
        raise ProvisioningError("Lab plan must be a mapping with a 'machines' list")

    try:
        return LabPlan.model_validate(dict(raw))
    except PydanticValidationError as exc:
        messages = [
            f"{' -> '.join(str(part) for part in error['loc']) or 'lab'}: {error['msg']}"
            for error in exc.errors()
        ]
        raise ProvisioningError("Lab plan validation failed:\n  " + "\n  ".join(messages)) from exc


# --- Outcome types -------------------------------------------------------------


class MachineStatus(str, Enum):
    CREATED = "created"
    DISK_FAILED = "disk_failed"
    VM_FAILED = "vm_failed"


@dataclass(frozen=True, slots=True)
class MachineOutcome:
    name: str
    status: MachineStatus
    disk_path: str
    detail: Optional[str] = None


@dataclass(slots=True)
class ProvisioningReport:
    correlation_id: str
    outcomes: Dict[str, MachineOutcome] = field(default_factory=OrderedDict)

    @property
    def failed_machines(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if outcome.status is not MachineStatus.CREATED]

    @property
    def succeeded(self) -> bool:
        return not self.failed_machines

    def to_dict(self) -> Dict[str, object]:
        return {
            "correlation_id": self.correlation_id,
            "outcomes": {
                name: {"status": o.status.value, "disk_path": o.disk_path, "detail": o.detail}
                for name, o in self.outcomes.items()
            },
        }


# --- provision_lab ---------------------------------------------------------------


def _provision_machine(plan: LabPlan, machine: LabMachine, host: HypervisorHost, correlation_id: str) -> MachineOutcome:
    disk_path = plan.disk_path(machine)
    extra = {"correlation_id": correlation_id, "stage": "provision", "target": machine.name}
    try:
        host.create_disk(
            disk_path,
            machine.disk_kind,
            size_bytes=machine.disk_size_gb * _GB if machine.disk_size_gb else None,
            parent=machine.parent_disk,
        )
    except (ExchangeLabError, OSError, ValueError) as exc:
        LOGGER.error("disk creation failed", extra={**extra, "extra_fields": {"error": str(exc)}})
        return MachineOutcome(machine.name, MachineStatus.DISK_FAILED, disk_path, str(exc))

    try:
        host.create_vm(
            machine.name,
            memory_bytes=machine.memory_mb * _MB,
            disk_path=disk_path,
            switch_name=plan.switch_name,
        )
    except (ExchangeLabError, OSError, ValueError) as exc:
        LOGGER.error("vm creation failed", extra={**extra, "extra_fields": {"error": str(exc)}})
        return MachineOutcome(machine.name, MachineStatus.VM_FAILED, disk_path, str(exc))

    LOGGER.info("machine created", extra=extra)
    return MachineOutcome(machine.name, MachineStatus.CREATED, disk_path)


def provision_lab(plan: LabPlan, host: HypervisorHost) -> ProvisioningReport:
    """Create every machine in ``plan`` in order, recording one outcome per machine."""

    if host is None:
        raise ProvisioningError("No hypervisor host configured")
    report = ProvisioningReport(correlation_id=generate_correlation_id())
    for machine in plan.machines:
        report.outcomes[machine.name] = _provision_machine(plan, machine, host, report.correlation_id)
    LOGGER.info(
        "lab provisioning finished",
        extra={
            "correlation_id": report.correlation_id,
            "stage": "summary",
            "extra_fields": {"machines": len(report.outcomes), "failed": report.failed_machines},
        },
    )
    return report
