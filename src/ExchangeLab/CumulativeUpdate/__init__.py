"""Resolve Exchange Cumulative Updates and distribute installers to servers."""

from .catalog import (
    PRODUCT_LINES,
    UNAVAILABLE,
    CatalogEntry,
    CatalogLookup,
    LookupStatus,
    VersionCatalog,
    catalog_from_config,
    load_catalog,
    load_default_catalog,
    product_line_for,
)
from .distribution import (
    CachedArtifact,
    DistributionReport,
    DistributionRequest,
    DistributionWorkflow,
    TargetOutcome,
    TargetStatus,
    WorkflowStatus,
    file_name_from_locator,
    workflow_from_config,
)
from .fetch import Fetcher, FetchResult, HttpFetcher
from .filesystem import FileSystem, LocalFileSystem, RemoteLocation, build_remote_location
from .inventory import (
    ExchangeShellInventory,
    InstalledProductInventory,
    ProductVersion,
    StaticInventory,
    detect_product_line,
    detect_targets,
    parse_admin_display_version,
)

__all__ = [
    "PRODUCT_LINES",
    "UNAVAILABLE",
    "CatalogEntry",
    "CatalogLookup",
    "LookupStatus",
    "VersionCatalog",
    "catalog_from_config",
    "load_catalog",
    "load_default_catalog",
    "product_line_for",
    "CachedArtifact",
    "DistributionReport",
    "DistributionRequest",
    "DistributionWorkflow",
    "TargetOutcome",
    "TargetStatus",
    "WorkflowStatus",
    "file_name_from_locator",
    "workflow_from_config",
    "Fetcher",
    "FetchResult",
    "HttpFetcher",
    "FileSystem",
    "LocalFileSystem",
    "RemoteLocation",
    "build_remote_location",
    "ExchangeShellInventory",
    "InstalledProductInventory",
    "ProductVersion",
    "StaticInventory",
    "detect_product_line",
    "detect_targets",
    "parse_admin_display_version",
]
