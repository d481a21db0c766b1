"""File-system collaborator and remote path construction.

Remote targets are addressed as UNC paths (``\\\\host\\C$\\Source``) and are
written with ordinary file-system calls, so the same :class:`LocalFileSystem`
serves local and remote destinations. When the root template contains no
backslash (e.g. ``/mnt/{host}`` for shares mounted on a POSIX host) paths are
built with POSIX separators instead.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath
from typing import Protocol, Type, Union, runtime_checkable

__all__ = [
    "FileSystem",
    "LocalFileSystem",
    "RemoteLocation",
    "build_remote_location",
]

PathLike = Union[str, Path]


@runtime_checkable
class FileSystem(Protocol):
    """Synchronous file-system operations used by the distribution workflow."""

    def exists(self, path: PathLike) -> bool:
        ...

    def make_directory(self, path: PathLike) -> None:
        ...

    def copy_file(self, source: PathLike, destination: PathLike) -> None:
        ...

    def remove_file(self, path: PathLike) -> None:
        ...


class LocalFileSystem:
    """:class:`FileSystem` backed by the operating system."""

    def exists(self, path: PathLike) -> bool:
        return Path(path).exists()

    def make_directory(self, path: PathLike) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def copy_file(self, source: PathLike, destination: PathLike) -> None:
        """Copy ``source`` to ``destination`` through a temporary sibling.

        The destination only appears once the copy finished, so an interrupted
        copy is never mistaken for an existing file on the next run.
        """

        target = Path(destination)
        temp_path = target.with_name(target.name + ".exlab-tmp")
        try:
            shutil.copyfile(source, temp_path)
            os.replace(temp_path, target)
        finally:
            temp_path.unlink(missing_ok=True)

    def remove_file(self, path: PathLike) -> None:
        Path(path).unlink(missing_ok=True)


@dataclass(frozen=True, slots=True)
class RemoteLocation:
    """Derived remote paths for one target."""

    identifier: str
    directory_path: str
    file_path: str


def _flavour(root_template: str) -> Type[PurePath]:
    return PureWindowsPath if "\\" in root_template else PurePosixPath


def build_remote_location(
    identifier: str,
    destination_directory: str,
    file_name: str,
    *,
    root_template: str,
) -> RemoteLocation:
    """Return ``root(identifier) + destination_directory`` and the file path beneath it.

    Raises:
        ValueError: When the identifier is empty or contains path separators.
    """

    host = identifier.strip()
    if not host or any(sep in host for sep in ("\\", "/")):
        raise ValueError(f"Invalid target identifier {identifier!r}")

    flavour = _flavour(root_template)
    if flavour is PureWindowsPath:
        relative = destination_directory.replace("/", "\\").strip("\\")
        root = root_template.format(host=host).rstrip("\\")
        directory = PureWindowsPath(f"{root}\\{relative}")
    else:
        relative = destination_directory.replace("\\", "/").strip("/")
        directory = PurePosixPath(root_template.format(host=host)) / relative
    return RemoteLocation(
        identifier=host,
        directory_path=str(directory),
        file_path=str(directory / file_name),
    )
