"""ExchangeLab: automation for Exchange Server lab and operations environments."""

from __future__ import annotations

from importlib import metadata as importlib_metadata
from typing import Dict

try:  # pragma: no cover - metadata may be unavailable during development
    __version__ = importlib_metadata.version("exchange-lab")
except importlib_metadata.PackageNotFoundError:  # pragma: no cover - local source tree
    __version__ = "0.0.0"


def about() -> Dict[str, object]:
    """Return metadata describing the installed package and its default catalog."""

    from .CumulativeUpdate.catalog import PRODUCT_LINES, load_default_catalog

    catalog = load_default_catalog()
    return {
        "package_version": __version__,
        "product_lines": {f"{major}.{minor}": line for (major, minor), line in PRODUCT_LINES.items()},
        "catalog": {
            line: catalog.latest_for_line(line) for line in catalog.product_lines()
        },
    }


__all__ = ["__version__", "about"]
