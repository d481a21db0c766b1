# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.CumulativeUpdate.distribution",
#   "purpose": "Resolve a Cumulative Update, fetch it once, and replicate it to many servers",
#   "sections": [
#     {"id": "outcomes", "name": "Outcome types", "anchor": "OUT", "kind": "api"},
#     {"id": "helpers", "name": "Locator helpers", "anchor": "HELP", "kind": "helpers"},
#     {"id": "workflow", "name": "DistributionWorkflow", "anchor": "class-distributionworkflow", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Cumulative Update distribution workflow.

One invocation walks four states in order:

``ResolveLocator``
    The version key (or the latest key of the detected product line) is
    resolved through the :class:`~.catalog.VersionCatalog`; an explicit locator
    skips the catalog.
``AcquireArtifact``
    The installer is fetched once into ``temp_directory/<file name>`` unless a
    file already sits at that path.
``DistributeToTargets``
    Each target, in the order supplied, gets its destination directory created
    and the cached installer copied in. Target failures are recorded and the
    batch moves on.
``Cleanup``
    When requested, and only if every target succeeded, the cached installer is
    removed.

Failures in the first two states abort the invocation; the report then carries
the terminal error and no target is touched.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Mapping, Optional, Sequence
from urllib.parse import unquote, urlparse

from ..errors import (
    DetectionUnavailable,
    InvalidLocator,
    UnknownOrUnavailableVersion,
    WorkflowError,
)
from ..logging_utils import generate_correlation_id
from ..settings import DistributionConfiguration, ResolvedConfig
from .catalog import UNAVAILABLE, LookupStatus, VersionCatalog, catalog_from_config
from .fetch import Fetcher, FetchResult, HttpFetcher
from .filesystem import FileSystem, LocalFileSystem, RemoteLocation, build_remote_location
from .inventory import (
    InstalledProductInventory,
    StaticInventory,
    detect_product_line,
    detect_targets,
)

__all__ = [
    "TargetStatus",
    "TargetOutcome",
    "WorkflowStatus",
    "CachedArtifact",
    "DistributionRequest",
    "DistributionReport",
    "DistributionWorkflow",
    "file_name_from_locator",
    "summarize",
    "workflow_from_config",
]

LOGGER = logging.getLogger("ExchangeLab.CumulativeUpdate.distribution")

# --- Outcome types -------------------------------------------------------------


class TargetStatus(str, Enum):
    COPIED = "copied"
    ALREADY_EXISTS = "already_exists"
    DIRECTORY_CREATE_FAILED = "directory_create_failed"
    COPY_FAILED = "copy_failed"

    @property
    def succeeded(self) -> bool:
        return self in (TargetStatus.COPIED, TargetStatus.ALREADY_EXISTS)


class WorkflowStatus(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class TargetOutcome:
    """Result of distributing the artifact to one target."""

    identifier: str
    status: TargetStatus
    file_path: Optional[str] = None
    detail: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded


@dataclass(frozen=True, slots=True)
class CachedArtifact:
    """Installer held in the local cache for the duration of one invocation.

    Attributes:
        source_locator: URL the artifact was (or would have been) fetched from.
        local_path: Deterministic cache path derived from the locator.
        fetched: ``True`` when this invocation performed the transfer.
        fetch_result: Transfer metadata when ``fetched`` is ``True``.
    """

    source_locator: str
    local_path: Path
    fetched: bool
    fetch_result: Optional[FetchResult] = None

    @property
    def file_name(self) -> str:
        return self.local_path.name


@dataclass(frozen=True, slots=True)
class DistributionRequest:
    """Caller input for one invocation.

    ``locator`` wins over ``version_key``; when both are missing the version
    is detected through the installed-product inventory. Empty ``targets``
    means "every installed server". ``None`` for the remaining fields falls
    back to :class:`~ExchangeLab.settings.DistributionConfiguration`.
    """

    version_key: Optional[str] = None
    locator: Optional[str] = None
    targets: Sequence[str] = ()
    destination_directory: Optional[str] = None
    remove_temp: Optional[bool] = None


@dataclass(slots=True)
class DistributionReport:
    """Everything an invocation produced."""

    status: WorkflowStatus
    correlation_id: str
    version_key: Optional[str] = None
    locator: Optional[str] = None
    artifact: Optional[CachedArtifact] = None
    outcomes: Dict[str, TargetOutcome] = field(default_factory=OrderedDict)
    error: Optional[WorkflowError] = None
    cleaned_up: bool = False

    @property
    def failed_targets(self) -> List[str]:
        return [name for name, outcome in self.outcomes.items() if not outcome.succeeded]

    @property
    def succeeded(self) -> bool:
        """``True`` when the invocation completed and every target succeeded."""

        return self.status is WorkflowStatus.COMPLETED and not self.failed_targets

    def raise_for_status(self) -> "DistributionReport":
        """Raise the terminal error of an aborted invocation, return ``self`` otherwise."""

        if self.error is not None:
            raise self.error
        return self

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "correlation_id": self.correlation_id,
            "version_key": self.version_key,
            "locator": self.locator,
            "artifact": (
                {
                    "path": str(self.artifact.local_path),
                    "fetched": self.artifact.fetched,
                }
                if self.artifact
                else None
            ),
            "outcomes": {
                name: {
                    "status": outcome.status.value,
                    "file_path": outcome.file_path,
                    "detail": outcome.detail,
                }
                for name, outcome in self.outcomes.items()
            },
            "error": (
                {"type": type(self.error).__name__, "message": str(self.error)}
                if self.error
                else None
            ),
            "cleaned_up": self.cleaned_up,
        }


# --- Locator helpers -------------------------------------------------------------


def file_name_from_locator(locator: str) -> str:
    """Return the unquoted final path segment of ``locator``.

    Raises:
        InvalidLocator: When the locator is not an absolute URL or has no
            usable final segment.
    """

    parsed = urlparse(locator)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidLocator(f"Locator {locator!r} is not an absolute http(s) URL", locator=locator)
    name = unquote(PurePosixPath(parsed.path).name)
    if not name or name in {".", ".."} or any(sep in name for sep in ("/", "\\")):
        raise InvalidLocator(f"Locator {locator!r} has no usable file name", locator=locator)
    return name


def _unique_targets(targets: Iterable[str]) -> List[str]:
    seen = set()
    unique: List[str] = []
    for target in targets:
        name = target.strip()
        folded = name.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        unique.append(name)
    return unique


# --- DistributionWorkflow ---------------------------------------------------------


class DistributionWorkflow:
    """Fetch one installer and replicate it to many servers.

    Args:
        catalog: Version catalog used to resolve keys.
        config: Temp directory, destination directory, root template, cleanup flag.
        fetcher: Resource-fetch collaborator.
        filesystem: File-system collaborator (local and UNC paths).
        inventory: Optional installed-product inventory for auto-detection.
    """

    def __init__(
        self,
        catalog: VersionCatalog,
        *,
        config: Optional[DistributionConfiguration] = None,
        fetcher: Optional[Fetcher] = None,
        filesystem: Optional[FileSystem] = None,
        inventory: Optional[InstalledProductInventory] = None,
    ) -> None:
        self.catalog = catalog
        self.config = config or DistributionConfiguration()
        self.fetcher: Fetcher = fetcher or HttpFetcher()
        self.filesystem: FileSystem = filesystem or LocalFileSystem()
        self.inventory = inventory

    def _log(self, level: int, message: str, correlation_id: str, stage: str, **fields: object) -> None:
        target = fields.pop("target", None)
        LOGGER.log(
            level,
            message,
            extra={
                "correlation_id": correlation_id,
                "stage": stage,
                "target": target,
                "extra_fields": fields,
            },
        )

    # ResolveLocator
    def resolve_locator(self, request: DistributionRequest) -> tuple[Optional[str], str]:
        """Return ``(version_key, locator)`` for ``request``.

        Raises:
            UnknownOrUnavailableVersion: When the key resolves to the sentinel.
            DetectionUnavailable: When auto-detection is needed but fails.
        """

        if request.locator:
            file_name_from_locator(request.locator)
            return request.version_key, request.locator

        key = request.version_key
        if not key:
            line = detect_product_line(self.inventory)
            key = self.catalog.latest_for_line(line)
            if key == UNAVAILABLE:
                raise UnknownOrUnavailableVersion(
                    f"Catalog has no entries for product line {line}", key=None, reason="unknown"
                )

        lookup = self.catalog.lookup(key)
        if lookup.status is LookupStatus.UNKNOWN:
            raise UnknownOrUnavailableVersion(
                f"Version {key} is not in the catalog", key=key, reason="unknown"
            )
        if lookup.status is LookupStatus.RETRACTED:
            raise UnknownOrUnavailableVersion(
                f"Version {key} has no download location in the catalog", key=key, reason="retracted"
            )
        file_name_from_locator(lookup.locator)
        return key, lookup.locator

    # AcquireArtifact
    def acquire_artifact(self, locator: str, *, correlation_id: str = "") -> CachedArtifact:
        """Fetch ``locator`` into the cache unless a file already exists there.

        Raises:
            FetchFailed: When the transfer fails.
        """

        local_path = Path(self.config.temp_directory) / file_name_from_locator(locator)
        if self.filesystem.exists(local_path):
            self._log(
                logging.INFO,
                "installer already cached, skipping download",
                correlation_id,
                "acquire",
                path=str(local_path),
            )
            return CachedArtifact(locator, local_path, fetched=False)

        self._log(
            logging.INFO, "downloading installer", correlation_id, "acquire", url=locator, path=str(local_path)
        )
        result = self.fetcher.fetch(locator, local_path)
        self._log(
            logging.INFO,
            "installer downloaded",
            correlation_id,
            "acquire",
            bytes=result.bytes_written,
            attempts=result.attempts,
        )
        return CachedArtifact(locator, local_path, fetched=True, fetch_result=result)

    # DistributeToTargets (one target)
    def distribute_to_target(
        self,
        artifact: CachedArtifact,
        identifier: str,
        *,
        destination_directory: Optional[str] = None,
        correlation_id: str = "",
    ) -> TargetOutcome:
        """Copy ``artifact`` to one target; failures are returned, never raised."""

        directory = destination_directory or self.config.destination_directory
        try:
            location: RemoteLocation = build_remote_location(
                identifier,
                directory,
                artifact.file_name,
                root_template=self.config.remote_root_template,
            )
        except ValueError as exc:
            return TargetOutcome(identifier, TargetStatus.DIRECTORY_CREATE_FAILED, detail=str(exc))

        try:
            if not self.filesystem.exists(location.directory_path):
                self._log(
                    logging.INFO,
                    "creating destination directory",
                    correlation_id,
                    "distribute",
                    target=identifier,
                    path=location.directory_path,
                )
                self.filesystem.make_directory(location.directory_path)
        except OSError as exc:
            self._log(
                logging.ERROR,
                "failed to create destination directory",
                correlation_id,
                "distribute",
                target=identifier,
                path=location.directory_path,
                error=str(exc),
            )
            return TargetOutcome(
                identifier,
                TargetStatus.DIRECTORY_CREATE_FAILED,
                file_path=location.file_path,
                detail=str(exc),
            )

        try:
            if self.filesystem.exists(location.file_path):
                self._log(
                    logging.INFO,
                    "installer already present on target",
                    correlation_id,
                    "distribute",
                    target=identifier,
                    path=location.file_path,
                )
                return TargetOutcome(identifier, TargetStatus.ALREADY_EXISTS, file_path=location.file_path)
            self.filesystem.copy_file(artifact.local_path, location.file_path)
        except OSError as exc:
            self._log(
                logging.ERROR,
                "failed to copy installer",
                correlation_id,
                "distribute",
                target=identifier,
                path=location.file_path,
                error=str(exc),
            )
            return TargetOutcome(
                identifier, TargetStatus.COPY_FAILED, file_path=location.file_path, detail=str(exc)
            )

        self._log(
            logging.INFO,
            "installer copied",
            correlation_id,
            "distribute",
            target=identifier,
            path=location.file_path,
        )
        return TargetOutcome(identifier, TargetStatus.COPIED, file_path=location.file_path)

    def run(self, request: Optional[DistributionRequest] = None) -> DistributionReport:
        """Execute one invocation and return its report.

        Terminal errors are captured on the report (``status == ABORTED``);
        call :meth:`DistributionReport.raise_for_status` to re-raise them.
        """

        request = request or DistributionRequest()
        correlation_id = generate_correlation_id()
        report = DistributionReport(status=WorkflowStatus.ABORTED, correlation_id=correlation_id)
        remove_temp = self.config.remove_temp if request.remove_temp is None else request.remove_temp

        try:
            report.version_key, report.locator = self.resolve_locator(request)
            targets = _unique_targets(request.targets) or _unique_targets(detect_targets(self.inventory))
            report.artifact = self.acquire_artifact(report.locator, correlation_id=correlation_id)
        except (UnknownOrUnavailableVersion, DetectionUnavailable) as exc:
            self._log(logging.ERROR, str(exc), correlation_id, "resolve", error_type=type(exc).__name__)
            report.error = exc
            return report
        except WorkflowError as exc:
            self._log(logging.ERROR, str(exc), correlation_id, "acquire", error_type=type(exc).__name__)
            report.error = exc
            return report

        report.status = WorkflowStatus.COMPLETED
        for identifier in targets:
            outcome = self.distribute_to_target(
                report.artifact,
                identifier,
                destination_directory=request.destination_directory,
                correlation_id=correlation_id,
            )
            report.outcomes[identifier] = outcome
            if remove_temp and not outcome.succeeded:
                self._log(
                    logging.WARNING,
                    "target failed, keeping cached installer",
                    correlation_id,
                    "cleanup",
                    target=identifier,
                )
                remove_temp = False

        if remove_temp:
            report.cleaned_up = self._cleanup(report.artifact, correlation_id)

        self._log(
            logging.INFO,
            "distribution finished",
            correlation_id,
            "summary",
            status=report.status.value,
            targets=len(report.outcomes),
            failed=report.failed_targets,
        )
        return report

    # Cleanup
    def _cleanup(self, artifact: CachedArtifact, correlation_id: str) -> bool:
        if not artifact.fetched:
            self._log(
                logging.INFO,
                "cached installer predates this run, not removing it",
                correlation_id,
                "cleanup",
                path=str(artifact.local_path),
            )
            return False
        try:
            self.filesystem.remove_file(artifact.local_path)
        except OSError as exc:
            self._log(
                logging.WARNING,
                "failed to remove cached installer",
                correlation_id,
                "cleanup",
                path=str(artifact.local_path),
                error=str(exc),
            )
            return False
        self._log(logging.INFO, "cached installer removed", correlation_id, "cleanup", path=str(artifact.local_path))
        return True


def workflow_from_config(
    config: ResolvedConfig,
    *,
    catalog: Optional[VersionCatalog] = None,
    fetcher: Optional[Fetcher] = None,
    filesystem: Optional[FileSystem] = None,
    inventory: Optional[InstalledProductInventory] = None,
) -> DistributionWorkflow:
    """Assemble a :class:`DistributionWorkflow` from a :class:`ResolvedConfig`.

    A configured static inventory is used unless ``inventory`` is supplied.
    """

    if inventory is None and config.inventory is not None:
        inventory = StaticInventory.from_config(config.inventory)
    return DistributionWorkflow(
        catalog or catalog_from_config(config),
        config=config.defaults.distribution,
        fetcher=fetcher or HttpFetcher(config.defaults.http),
        filesystem=filesystem,
        inventory=inventory,
    )


def summarize(report: DistributionReport) -> Mapping[str, int]:
    """Count target outcomes by status."""

    counts: Dict[str, int] = {status.value: 0 for status in TargetStatus}
    for outcome in report.outcomes.values():
        counts[outcome.status.value] += 1
    return counts
