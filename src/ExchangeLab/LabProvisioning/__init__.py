"""Sequenced creation of lab virtual disks and VMs through a hypervisor host."""

from .hypervisor import DiskKind, HypervisorHost, HyperVHost
from .provisioning import (
    LabMachine,
    LabPlan,
    MachineOutcome,
    MachineStatus,
    ProvisioningReport,
    load_lab_plan,
    provision_lab,
)

__all__ = [
    "DiskKind",
    "HypervisorHost",
    "HyperVHost",
    "LabMachine",
    "LabPlan",
    "MachineOutcome",
    "MachineStatus",
    "ProvisioningReport",
    "load_lab_plan",
    "provision_lab",
]
