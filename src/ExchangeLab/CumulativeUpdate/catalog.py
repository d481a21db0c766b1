# === NAVMAP v1 ===
# {
#   "module": "ExchangeLab.CumulativeUpdate.catalog",
#   "purpose": "Ordered version catalog mapping Cumulative Update keys to download locators",
#   "sections": [
#     {"id": "constants", "name": "Sentinel & product lines", "anchor": "CONST", "kind": "constants"},
#     {"id": "catalog", "name": "VersionCatalog", "anchor": "class-versioncatalog", "kind": "class"},
#     {"id": "loading", "name": "Catalog loading", "anchor": "LOAD", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Version catalog for Exchange Server Cumulative Updates.

A catalog is an immutable, ordered list of ``(key, locator)`` pairs where the
key has the form ``"{product_line}_{revision}"`` (``"2016_CU7"``) and the
locator is either an absolute download URL or :data:`UNAVAILABLE`. The order
the entries were defined in is the version order; nothing here ever compares
revision numbers. "Latest" for a product line is therefore simply the last
entry of that line, available or not.

The default catalog ships as ``catalog.yaml`` next to this module and can be
replaced by a user file or by a ``catalog:`` section in the configuration.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Final, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

import yaml
from jsonschema import Draft202012Validator

from ..errors import CatalogError, DetectionUnavailable
from ..settings import ResolvedConfig

__all__ = [
    "UNAVAILABLE",
    "PRODUCT_LINES",
    "CatalogEntry",
    "CatalogLookup",
    "LookupStatus",
    "VersionCatalog",
    "CATALOG_JSON_SCHEMA",
    "catalog_from_config",
    "load_catalog",
    "load_default_catalog",
    "product_line_for",
]

LOGGER = logging.getLogger("ExchangeLab.CumulativeUpdate.catalog")

# --- Sentinel & product lines ------------------------------------------------------

UNAVAILABLE: Final[str] = "N/A"

PRODUCT_LINES: Mapping[Tuple[int, int], str] = MappingProxyType(
    {
        (15, 0): "2013",
        (15, 1): "2016",
    }
)

_KEY_PATTERN = re.compile(r"^(?P<line>[^_\s]+)_(?P<revision>\S+)$")


def product_line_for(major: int, minor: int) -> str:
    """Map an installed ``major.minor`` version to its product-line label."""

    try:
        return PRODUCT_LINES[(major, minor)]
    except KeyError:
        raise DetectionUnavailable(
            f"Installed version {major}.{minor} does not map to a known product line"
        ) from None


def _is_absolute_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


@dataclass(frozen=True, slots=True)
class CatalogEntry:
    """One ``key -> locator`` pair.

    Attributes:
        key: ``"{product_line}_{revision}"`` identifier, unique in a catalog.
        locator: Download URL, or :data:`UNAVAILABLE`.
    """

    key: str
    locator: str

    @property
    def product_line(self) -> str:
        return self.key.split("_", 1)[0]

    @property
    def revision(self) -> str:
        return self.key.split("_", 1)[1]

    @property
    def available(self) -> bool:
        return self.locator != UNAVAILABLE


class LookupStatus(str, Enum):
    AVAILABLE = "available"
    RETRACTED = "retracted"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class CatalogLookup:
    """Detailed result of :meth:`VersionCatalog.lookup`."""

    key: str
    locator: str
    status: LookupStatus

    @property
    def available(self) -> bool:
        return self.status is LookupStatus.AVAILABLE


EntryLike = Union[CatalogEntry, Tuple[str, str]]


class VersionCatalog:
    """Immutable, insertion-ordered mapping from version key to locator."""

    __slots__ = ("_entries", "_index")

    def __init__(self, entries: Iterable[EntryLike]) -> None:
        ordered: List[CatalogEntry] = []
        index: Dict[str, CatalogEntry] = {}
        for position, item in enumerate(entries, start=1):
            entry = item if isinstance(item, CatalogEntry) else CatalogEntry(*item)
            if not _KEY_PATTERN.match(entry.key):
                raise CatalogError(
                    f"Catalog entry #{position} has malformed key {entry.key!r}; "
                    "expected '<product_line>_<revision>'"
                )
            if entry.key in index:
                raise CatalogError(f"Duplicate catalog key {entry.key!r} (entry #{position})")
            if entry.available and not _is_absolute_url(entry.locator):
                raise CatalogError(
                    f"Catalog entry {entry.key!r} has locator {entry.locator!r}; "
                    f"expected an absolute http(s) URL or {UNAVAILABLE!r}"
                )
            ordered.append(entry)
            index[entry.key] = entry
        self._entries: Tuple[CatalogEntry, ...] = tuple(ordered)
        self._index: Mapping[str, CatalogEntry] = MappingProxyType(index)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __repr__(self) -> str:
        return f"VersionCatalog({len(self._entries)} entries, lines={self.product_lines()})"

    def keys(self) -> List[str]:
        return [entry.key for entry in self._entries]

    def resolve(self, key: str) -> str:
        """Return the locator for ``key``, or :data:`UNAVAILABLE`.

        Unknown keys and keys whose locator is the sentinel both yield
        :data:`UNAVAILABLE`; use :meth:`lookup` to tell them apart.
        """

        entry = self._index.get(key)
        if entry is None:
            return UNAVAILABLE
        return entry.locator

    def lookup(self, key: str) -> CatalogLookup:
        """Resolve ``key`` and report whether it is available, retracted, or unknown."""

        entry = self._index.get(key)
        if entry is None:
            return CatalogLookup(key, UNAVAILABLE, LookupStatus.UNKNOWN)
        if not entry.available:
            return CatalogLookup(key, UNAVAILABLE, LookupStatus.RETRACTED)
        return CatalogLookup(key, entry.locator, LookupStatus.AVAILABLE)

    def latest_for_line(self, product_line: str) -> str:
        """Return the key of the last entry defined for ``product_line``.

        Availability is not considered, so a retracted final entry is still the
        latest. Returns :data:`UNAVAILABLE` when the line has no entries.
        """

        prefix = f"{product_line}_"
        latest = UNAVAILABLE
        for entry in self._entries:
            if entry.key.startswith(prefix):
                latest = entry.key
        return latest

    def entries_for_line(self, product_line: str) -> List[CatalogEntry]:
        prefix = f"{product_line}_"
        return [entry for entry in self._entries if entry.key.startswith(prefix)]

    def product_lines(self) -> List[str]:
        """Return product lines in the order they first appear."""

        seen: Dict[str, None] = {}
        for entry in self._entries:
            seen.setdefault(entry.product_line, None)
        return list(seen)


# --- Catalog loading ---------------------------------------------------------------

CATALOG_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["entries"],
    "additionalProperties": False,
    "properties": {
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["key", "locator"],
                "additionalProperties": False,
                "properties": {
                    "key": {"type": "string", "minLength": 3},
                    "locator": {"type": "string", "minLength": 1},
                },
            },
        }
    },
}

_CATALOG_VALIDATOR = Draft202012Validator(CATALOG_JSON_SCHEMA)


def _catalog_from_document(document: Any, *, source: str) -> VersionCatalog:
    if not isinstance(document, Mapping):
        raise CatalogError(f"Catalog {source} must contain a mapping with an 'entries' list")
    errors = sorted(_CATALOG_VALIDATOR.iter_errors(dict(document)), key=lambda err: list(err.path))
    if errors:
        details = "\n- ".join(
            f"{'/'.join(str(part) for part in err.path) or '<root>'}: {err.message}"
            for err in errors
        )
        raise CatalogError(f"Catalog {source} failed validation:\n- {details}")
    catalog = VersionCatalog(
        (str(item["key"]).strip(), str(item["locator"]).strip()) for item in document["entries"]
    )
    LOGGER.debug(
        "catalog loaded",
        extra={"stage": "catalog", "extra_fields": {"source": source, "entries": len(catalog)}},
    )
    return catalog


def load_catalog(path: Path) -> VersionCatalog:
    """Load a catalog from a YAML file with an ``entries`` list."""

    path = Path(path).expanduser()
    if not path.exists():
        raise CatalogError(f"Catalog file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise CatalogError(f"Catalog file '{path}' contains invalid YAML") from exc
    return _catalog_from_document(document, source=str(path))


_DEFAULT_CATALOG: Optional[VersionCatalog] = None


def load_default_catalog() -> VersionCatalog:
    """Return the catalog packaged with ExchangeLab (memoised)."""

    global _DEFAULT_CATALOG  # noqa: PLW0603

    if _DEFAULT_CATALOG is None:
        text = resources.files(__package__).joinpath("catalog.yaml").read_text(encoding="utf-8")
        _DEFAULT_CATALOG = _catalog_from_document(yaml.safe_load(text), source="<packaged>")
    return _DEFAULT_CATALOG


def catalog_from_config(config: ResolvedConfig) -> VersionCatalog:
    """Return the catalog embedded in ``config`` or the packaged default."""

    if config.catalog is None:
        return load_default_catalog()
    return VersionCatalog((entry.key.strip(), entry.locator.strip()) for entry in config.catalog)
