"""Core logic for building a PHAR from a Composer project."""

from collections.abc import Iterable
import os
from pathlib import Path
import time

from pyvider.telemetry import logger

from ..composer import ComposerReader
from ..config import BuildConfig
from ..crypto import load_private_key
from ..exceptions import ConfigurationError, SourceNotFoundError
from ..finder import select_files
from ..models import BuildReport, SourceSpec
from ..stub import render_stub, strip_shebang
from .writer import PharWriter, ProgressCallback


def _source_date_epoch() -> int | None:
    value = os.environ.get("SOURCE_DATE_EPOCH")
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"SOURCE_DATE_EPOCH must be an integer, got {value!r}.") from e


class BuildOrchestrator:
    """
    Drives one build: reads the Composer metadata, then feeds the writer
    the project sources, the placeholders for dev-only always-loaded files,
    the extra includes, the vendor directory, the Composer files and
    finally the entry point.
    """

    def __init__(
        self,
        composer_json_path: Path,
        config: BuildConfig,
        on_progress: ProgressCallback | None = None,
        timestamp: int | None = None,
    ) -> None:
        self.reader = ComposerReader(Path(composer_json_path))
        self.project_root = self.reader.project_root
        self.config = config
        self.on_progress = on_progress
        self.timestamp = timestamp if timestamp is not None else _source_date_epoch()

    def read_source_spec(self) -> SourceSpec:
        include_dev = self.config.include_dev
        paths = self.reader.get_source_paths(include_dev)
        vendor_dir = self.reader.get_vendor_dir()
        # Always read the lock file, so a missing one fails before the archive is touched.
        dev_packages = self.reader.get_dev_only_package_names()
        stubs = [f"{vendor_dir}/{file}" for file in self.reader.get_stub_files(include_dev)]
        return SourceSpec(
            dirs=tuple(paths.dirs),
            files=tuple(paths.files),
            vendor_dir=vendor_dir,
            excludes=() if include_dev else tuple(dev_packages),
            stubs=tuple(stubs),
        )

    def _add_file(self, writer: PharWriter, path: str) -> None:
        writer.add_file(path)
        writer.compress_entry(path)

    def _add_dir(self, writer: PharWriter, directory: str, excludes: Iterable[str] = ()) -> None:
        for relative_path in select_files(self.project_root / directory, excludes):
            path = relative_path if directory == "." else f"{directory}/{relative_path}"
            self._add_file(writer, path)

    def _add_entry_point(self, writer: PharWriter) -> None:
        entry_point = self.config.entry_point
        source = self.project_root / entry_point
        try:
            content = source.read_bytes()
            permissions = source.stat().st_mode & 0o777
        except OSError as e:
            raise SourceNotFoundError(f"Cannot read entry point {source}: {e}") from e
        writer.add_contents(entry_point, strip_shebang(content), permissions=permissions)
        writer.compress_entry(entry_point)

    def build_package(self) -> BuildReport:
        start = time.monotonic()
        logger.info("Orchestrator starting composer-driven build process...")

        spec = self.read_source_spec()
        logger.info(
            "composer.json analysed",
            dirs=len(spec.dirs),
            files=len(spec.files),
            excluded_packages=len(spec.excludes),
            placeholders=len(spec.stubs),
        )
        private_key = (
            load_private_key(self.config.signing_key) if self.config.signing_key else None
        )

        output_path = self.config.output_path
        writer = PharWriter.open(
            output_path,
            self.config.name,
            project_root=self.project_root,
            compression=self.config.compression,
            signature=self.config.signature,
            private_key=private_key,
            timestamp=self.timestamp,
            on_progress=self.on_progress,
        )
        writer.set_stub(
            render_stub(
                alias=self.config.name,
                entry_point=self.config.entry_point,
                shebang=self.config.shebang,
            )
        )

        for directory in spec.dirs:
            self._add_dir(writer, directory)
        for file in spec.files:
            self._add_file(writer, file)
        for stub in spec.stubs:
            writer.add_placeholder(stub)
            writer.compress_entry(stub)
        for include in self.config.includes:
            if (self.project_root / include).is_file():
                self._add_file(writer, include)
            else:
                self._add_dir(writer, include)

        # The registry rewrite must land before the vendor directory is read.
        self.reader.remove_autoload_entries_for(list(spec.excludes))
        self._add_dir(writer, spec.vendor_dir, spec.excludes)
        self._add_file(writer, self.reader.composer_json_path.name)
        self._add_file(writer, self.reader.lock_file_path.name)
        self._add_entry_point(writer)

        writer.finalize()

        report = BuildReport(
            output_path=output_path,
            size=output_path.stat().st_size,
            entry_count=len(writer),
            duration=time.monotonic() - start,
        )
        logger.info(
            f"PHAR built: {output_path}",
            size=report.size,
            entries=report.entry_count,
            duration=round(report.duration, 3),
        )
        return report
