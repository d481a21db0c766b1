"""Installed-product inventory: which Exchange version is deployed, and on which servers.

Used only by the convenience path of the distribution workflow, when the
caller supplies neither a version key nor a list of targets.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Union, runtime_checkable

from ..errors import DetectionUnavailable, ExchangeLabError
from ..settings import InventoryConfiguration
from ..shell import Runner, run_powershell_json
from .catalog import product_line_for

__all__ = [
    "ProductVersion",
    "InstalledProductInventory",
    "StaticInventory",
    "ExchangeShellInventory",
    "parse_admin_display_version",
    "detect_product_line",
    "detect_targets",
]

LOGGER = logging.getLogger("ExchangeLab.CumulativeUpdate.inventory")

_VERSION_PATTERN = re.compile(r"(?P<major>\d+)\.(?P<minor>\d+)(?:\s*\(Build\s+(?P<build>[\d.]+)\)|\.(?P<tail>[\d.]+))?")


@dataclass(frozen=True, slots=True, order=True)
class ProductVersion:
    major: int
    minor: int
    build: Optional[str] = None

    @property
    def pair(self) -> tuple[int, int]:
        return (self.major, self.minor)

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}"
        return f"{base} (Build {self.build})" if self.build else base


def parse_admin_display_version(value: str) -> ProductVersion:
    """Parse ``"Version 15.1 (Build 1261.35)"`` or ``"15.1.2507.6"`` style strings."""

    match = _VERSION_PATTERN.search(value or "")
    if match is None:
        raise ValueError(f"Unrecognised Exchange version string: {value!r}")
    build = match.group("build") or match.group("tail")
    return ProductVersion(int(match.group("major")), int(match.group("minor")), build)


@runtime_checkable
class InstalledProductInventory(Protocol):
    """Collaborator reporting installed product versions and servers."""

    def installed_versions(self) -> Sequence[ProductVersion]:
        """Return the versions of every installed Exchange server."""

    def installed_servers(self) -> Sequence[str]:
        """Return the names of every installed Exchange server."""


class StaticInventory:
    """Inventory backed by fixed values, typically from the ``inventory:`` config section.

    Version strings are parsed on first use so that a malformed entry only
    matters when detection is actually requested.
    """

    def __init__(
        self,
        versions: Sequence[Union[ProductVersion, str]] = (),
        servers: Sequence[str] = (),
    ) -> None:
        self._versions = tuple(versions)
        self._servers = tuple(servers)

    @classmethod
    def from_config(cls, config: InventoryConfiguration) -> "StaticInventory":
        return cls(versions=config.versions, servers=config.servers)

    def installed_versions(self) -> Sequence[ProductVersion]:
        parsed = []
        for value in self._versions:
            if isinstance(value, ProductVersion):
                parsed.append(value)
                continue
            try:
                parsed.append(parse_admin_display_version(value))
            except ValueError as exc:
                raise DetectionUnavailable(f"Configured inventory has an invalid version: {exc}") from exc
        return tuple(parsed)

    def installed_servers(self) -> Sequence[str]:
        return self._servers


class ExchangeShellInventory:
    """Inventory read from Exchange Management Shell (``Get-ExchangeServer``)."""

    SNAPIN_PREAMBLE = (
        "Add-PSSnapin Microsoft.Exchange.Management.PowerShell.SnapIn -ErrorAction Stop",
    )

    def __init__(self, *, runner: Optional[Runner] = None, executable: Optional[str] = None) -> None:
        self._runner = runner
        self._executable = executable
        self._servers: Optional[List[dict]] = None

    def _query(self) -> List[dict]:
        if self._servers is None:
            kwargs = {"executable": self._executable, "preamble": self.SNAPIN_PREAMBLE}
            if self._runner is not None:
                kwargs["runner"] = self._runner
            rows = run_powershell_json(
                "Get-ExchangeServer | Select-Object Name, @{n='AdminDisplayVersion';e={$_.AdminDisplayVersion.ToString()}}",
                **kwargs,
            )
            self._servers = [row for row in rows if isinstance(row, dict)]
        return self._servers

    def installed_versions(self) -> Sequence[ProductVersion]:
        versions = []
        for row in self._query():
            raw = row.get("AdminDisplayVersion")
            if not isinstance(raw, str):
                continue
            try:
                versions.append(parse_admin_display_version(raw))
            except ValueError:
                LOGGER.warning(
                    "skipping unparsable server version",
                    extra={"stage": "inventory", "target": row.get("Name"), "extra_fields": {"version": raw}},
                )
        return versions

    def installed_servers(self) -> Sequence[str]:
        return [str(row["Name"]) for row in self._query() if row.get("Name")]


def detect_product_line(inventory: Optional[InstalledProductInventory]) -> str:
    """Return the product line of the newest installed Exchange version.

    Raises:
        DetectionUnavailable: When no inventory is configured, it fails, it
            reports nothing, or the newest version has no product-line mapping.
    """

    if inventory is None:
        raise DetectionUnavailable("No installed-product inventory is available for version detection")
    try:
        versions = list(inventory.installed_versions())
    except ExchangeLabError as exc:
        raise DetectionUnavailable(f"Installed-product inventory failed: {exc}") from exc
    if not versions:
        raise DetectionUnavailable("Installed-product inventory reported no Exchange versions")
    newest = max(versions, key=lambda version: version.pair)
    line = product_line_for(newest.major, newest.minor)
    LOGGER.info(
        "detected installed product line",
        extra={"stage": "detect", "extra_fields": {"version": str(newest), "product_line": line}},
    )
    return line


def detect_targets(inventory: Optional[InstalledProductInventory]) -> List[str]:
    """Return installed server names to distribute to."""

    if inventory is None:
        raise DetectionUnavailable("No installed-product inventory is available for target detection")
    try:
        servers = [name for name in inventory.installed_servers() if name]
    except ExchangeLabError as exc:
        raise DetectionUnavailable(f"Installed-product inventory failed: {exc}") from exc
    if not servers:
        raise DetectionUnavailable("Installed-product inventory reported no Exchange servers")
    return servers
