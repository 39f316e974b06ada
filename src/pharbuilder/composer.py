"""
Reads the metadata a Composer project carries in `composer.json` and
`composer.lock`, and edits the always-load registries Composer generates
under the vendor directory.
"""

import json
import posixpath
import re
from pathlib import Path
from typing import Any

from attrs import define, field
from pyvider.telemetry import logger

from .exceptions import (
    AutoloadRewriteError,
    MissingLockFileError,
    UnreadableLockFileError,
    UnreadableManifestError,
)

DEFAULT_VENDOR_DIR = "vendor"

_DIRECTORY_MAPPED = ("psr-4", "psr-0")
_PATH_LISTED = ("files", "classmap")

# Registry file -> (block opening, vendor-relative path expression) for every
# generated file that lists "files" autoload entries.
_FILES_REGISTRIES: dict[str, tuple[re.Pattern[str], re.Pattern[str]]] = {
    "autoload_files.php": (
        re.compile(r"^\s*return\s+(?:array\s*\(|\[)\s*$"),
        re.compile(r"\$vendorDir\s*\.\s*'/(?P<path>[^']*)'"),
    ),
    "autoload_static.php": (
        re.compile(r"^\s*public\s+static\s+\$files\s*=\s*(?:array\s*\(|\[)\s*$"),
        re.compile(r"__DIR__\s*\.\s*'/\.\.'\s*\.\s*'/(?P<path>[^']*)'"),
    ),
}
_REGISTRY_BLOCK_END = re.compile(r"^\s*(?:\)|\]);\s*$")
_REGISTRY_ENTRY = re.compile(r"^\s*'(?P<key>[^']+)'\s*=>\s*(?P<expr>.+?),?\s*$")


def _normalize(path: str) -> str:
    """Normalizes a manifest-declared path to a clean, relative POSIX path."""
    normalized = posixpath.normpath(path.replace("\\", "/")) if path else "."
    return normalized


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


@define(slots=True)
class SourcePaths:
    dirs: list[str] = field(factory=list)
    files: list[str] = field(factory=list)

    def merge(self, other: "SourcePaths") -> "SourcePaths":
        return SourcePaths(
            dirs=_unique(self.dirs + other.dirs),
            files=_unique(self.files + other.files),
        )


class ComposerReader:
    """Reads values from `composer.json` and `composer.lock`."""

    def __init__(self, composer_json_path: Path) -> None:
        self.composer_json_path = Path(composer_json_path)
        self.project_root = self.composer_json_path.parent
        self._lock_content: dict[str, Any] | None = None

    @property
    def lock_file_path(self) -> Path:
        return self.project_root / "composer.lock"

    def _read_manifest(self) -> dict[str, Any]:
        try:
            content = self.composer_json_path.read_text(encoding="utf-8")
            data = json.loads(content)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise UnreadableManifestError(
                f'The "composer.json" ({self.composer_json_path}) cannot be read: {e}'
            ) from e
        if not isinstance(data, dict):
            raise UnreadableManifestError(
                f'The "composer.json" ({self.composer_json_path}) is not a JSON object.'
            )
        return data

    def get_value(self, at_path: str) -> Any | None:
        """
        Looks up a `/`-separated key path (e.g. `config/vendor-dir`) in
        `composer.json`. Returns None when any segment is missing.
        """
        search: Any = self._read_manifest()
        for part in at_path.split("/"):
            if not isinstance(search, dict) or part not in search:
                return None
            search = search[part]
        return search

    def get_source_paths(self, include_dev: bool = False) -> SourcePaths:
        """Collects the root package's source directories and files."""
        manifest = self._read_manifest()
        paths = self._read_autoload(manifest.get("autoload") or {})
        if include_dev and "autoload-dev" in manifest:
            paths = paths.merge(self._read_autoload(manifest["autoload-dev"] or {}))
        return paths

    def _read_autoload(self, node: dict[str, Any]) -> SourcePaths:
        dirs: list[str] = []
        files: list[str] = []
        for kind, autoload in node.items():
            if kind in _DIRECTORY_MAPPED:
                for mapped in autoload.values():
                    for directory in [mapped] if isinstance(mapped, str) else mapped:
                        dirs.append(_normalize(directory))
            elif kind in _PATH_LISTED:
                for item in autoload:
                    path = _normalize(item)
                    if (self.project_root / path).is_dir():
                        dirs.append(path)
                    elif (self.project_root / path).is_file():
                        files.append(path)
                    else:
                        logger.debug("Skipping missing autoload path", kind=kind, path=item)
        return SourcePaths(dirs=_unique(dirs), files=_unique(files))

    def _get_lock_content(self) -> dict[str, Any]:
        if self._lock_content is None:
            lock_file = self.lock_file_path
            if not lock_file.is_file():
                raise MissingLockFileError(
                    f'The "composer.lock" ({lock_file}) does not exist. '
                    'Please run "composer install".'
                )
            try:
                content = json.loads(lock_file.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                raise UnreadableLockFileError(
                    f'The "composer.lock" ({lock_file}) cannot be read: {e}'
                ) from e
            if not isinstance(content, dict):
                raise UnreadableLockFileError(
                    f'The "composer.lock" ({lock_file}) is not a JSON object.'
                )
            self._lock_content = content
        return self._lock_content

    def get_dev_only_package_names(self) -> list[str]:
        lock = self._get_lock_content()
        return _unique([package["name"] for package in lock.get("packages-dev") or []])

    def get_stub_files(self, include_dev: bool = False) -> list[str]:
        """
        Lists the `files` autoload entries of dev-only packages as
        `<package>/<file>`, relative to the vendor directory. These are
        shipped as empty placeholders when dev packages are left out.
        """
        if include_dev:
            return []
        lock = self._get_lock_content()
        files: list[str] = []
        for package in lock.get("packages-dev") or []:
            for file in (package.get("autoload") or {}).get("files") or []:
                files.append(posixpath.normpath(f"{package['name']}/{file}"))
        return _unique(files)

    def get_vendor_dir(self) -> str:
        vendor_dir = self.get_value("config/vendor-dir")
        return _normalize(vendor_dir) if vendor_dir is not None else DEFAULT_VENDOR_DIR

    def remove_autoload_entries_for(self, package_names: list[str]) -> None:
        """
        Drops the named packages' entries from Composer's generated
        "files" registries. This edits the vendor directory in place.
        """
        if not package_names:
            return

        registry_dir = self.project_root / self.get_vendor_dir() / "composer"
        for filename, (block_start, path_expr) in _FILES_REGISTRIES.items():
            registry = registry_dir / filename
            if not registry.is_file():
                logger.debug("No files registry to rewrite", registry=str(registry))
                continue
            content = registry.read_text(encoding="utf-8")
            rewritten = _filter_registry(content, block_start, path_expr, package_names, registry)
            if rewritten != content:
                registry.write_text(rewritten, encoding="utf-8")
                logger.info(f"Removed dev-only autoload entries from {registry}")


def _filter_registry(
    content: str,
    block_start: re.Pattern[str],
    path_expr: re.Pattern[str],
    package_names: list[str],
    registry: Path,
) -> str:
    lines = content.splitlines(keepends=True)
    start = next((i for i, line in enumerate(lines) if block_start.match(line)), None)
    if start is None:
        raise AutoloadRewriteError(
            f"Could not find the files block in {registry}; unexpected generated format."
        )

    kept: list[str] = []
    removed: set[str] = set()
    for end in range(start + 1, len(lines)):
        line = lines[end]
        if _REGISTRY_BLOCK_END.match(line):
            break
        if not line.strip():
            kept.append(line)
            continue
        entry = _REGISTRY_ENTRY.match(line)
        if entry is None:
            raise AutoloadRewriteError(
                f"Unrecognized entry in {registry} at line {end + 1}: {line.strip()!r}"
            )
        path = path_expr.search(entry.group("expr"))
        owner = next(
            (
                name
                for name in package_names
                if path is not None and path.group("path").startswith(f"{name}/")
            ),
            None,
        )
        if owner is None:
            kept.append(line)
        else:
            removed.add(owner)
    else:
        raise AutoloadRewriteError(f"Unterminated files block in {registry}.")

    for name in package_names:
        if name not in removed:
            logger.debug("Package has no registered files", package=name, registry=str(registry))

    return "".join(lines[: start + 1] + kept + lines[end:])
