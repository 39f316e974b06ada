"""Assembles PHAR archives entry by entry and writes them out in one pass."""

import bz2
from collections.abc import Callable
import enum
import hashlib
import os
from pathlib import Path
import posixpath
import struct
import tempfile
import time
import zlib

from cryptography.hazmat.primitives.asymmetric import rsa
from pyvider.telemetry import logger

from .. import crypto
from ..exceptions import (
    ArchiveCreateError,
    ArchiveError,
    ArchiveFinalizedError,
    ArchiveWriteError,
    InvalidStubError,
    SourceNotFoundError,
)
from ..models import (
    COMPRESSIBLE_EXTENSIONS,
    MANIFEST_HEADER_SIZE,
    PHAR_ENT_PERM_DEF_FILE,
    PHAR_HALT_COMPILER,
    PHAR_HDR_SIGNATURE,
    PHAR_SIGNATURE_MAGIC,
    PHAR_STUB_END,
    ArchiveEntry,
    Compression,
    ManifestHeader,
    SignatureAlgorithm,
)

ProgressCallback = Callable[[str], None]


class WriterState(enum.Enum):
    BUFFERING = "buffering"
    FINALIZED = "finalized"


def _archive_path(relative_path: str) -> str:
    path = posixpath.normpath(str(relative_path).replace("\\", "/"))
    if path.startswith("/") or path == ".." or path.startswith("../") or path == ".":
        raise ArchiveError(f"Entry path must be relative to the project root: {relative_path}")
    return path


def _compress(data: bytes, compression: Compression) -> bytes:
    if compression is Compression.GZIP:
        # PHAR stores raw deflate streams, without zlib or gzip framing.
        compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -zlib.MAX_WBITS)
        return compressor.compress(data) + compressor.flush()
    if compression is Compression.BZIP2:
        return bz2.compress(data, 9)
    return data


def prepare_stub(stub: str) -> bytes:
    """Cuts the stub after `__HALT_COMPILER();` and appends the closing tag PHP expects."""
    raw = stub.encode("utf-8")
    position = raw.upper().find(PHAR_HALT_COMPILER.upper())
    if position < 0:
        raise InvalidStubError("Illegal stub: it must contain __HALT_COMPILER();")
    return raw[: position + len(PHAR_HALT_COMPILER)] + PHAR_STUB_END


class PharWriter:
    """
    Owns one archive under construction. Entries are staged in memory and
    only written to disk by `finalize`, after which the writer rejects
    further changes.

    Compression is decided per entry: only entries with a text-like
    extension are compressed, right after they are added.
    """

    def __init__(
        self,
        output_path: Path,
        alias: str,
        project_root: Path,
        compression: Compression = Compression.NONE,
        signature: SignatureAlgorithm = SignatureAlgorithm.SHA1,
        private_key: rsa.RSAPrivateKey | None = None,
        timestamp: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.output_path = Path(output_path)
        self.alias = alias
        self.project_root = Path(project_root)
        self.compression = compression
        self.signature = signature
        self.private_key = private_key
        self.timestamp = timestamp
        self.on_progress = on_progress
        self.state = WriterState.BUFFERING
        self._stub: bytes | None = None
        self._entries: dict[str, ArchiveEntry] = {}

    @classmethod
    def open(cls, output_path: Path, alias: str, **kwargs) -> "PharWriter":
        """Starts a fresh archive at `output_path`, deleting whatever is there."""
        output_path = Path(output_path)
        public_key_path = output_path.with_name(output_path.name + ".pubkey")
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            for stale in (output_path, public_key_path):
                if stale.exists() or stale.is_symlink():
                    logger.info(f"Removing previous build output: {stale}")
                    stale.unlink()
        except OSError as e:
            raise ArchiveCreateError(f"Cannot create archive at {output_path}: {e}") from e
        return cls(output_path, alias, **kwargs)

    @property
    def public_key_path(self) -> Path:
        return self.output_path.with_name(self.output_path.name + ".pubkey")

    @property
    def entries(self) -> tuple[ArchiveEntry, ...]:
        return tuple(self._entries.values())

    def __contains__(self, relative_path: str) -> bool:
        return _archive_path(relative_path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _check_buffering(self) -> None:
        if self.state is WriterState.FINALIZED:
            raise ArchiveFinalizedError(f"Archive {self.output_path} is already finalized.")

    def _stage(self, entry: ArchiveEntry) -> None:
        self._entries[entry.path] = entry
        logger.debug("Added archive entry", path=entry.path, size=entry.uncompressed_size)
        if self.on_progress is not None:
            self.on_progress(entry.path)

    def set_stub(self, stub: str) -> None:
        self._check_buffering()
        self._stub = prepare_stub(stub)

    def add_file(self, relative_path: str) -> None:
        """Adds a file from the project root under the same relative path."""
        self._check_buffering()
        path = _archive_path(relative_path)
        source = self.project_root / path
        try:
            data = source.read_bytes()
            stat = source.stat()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise SourceNotFoundError(f"Cannot add {path}: file not found at {source}") from e
        except OSError as e:
            raise ArchiveWriteError(f"Cannot read {source}: {e}") from e

        timestamp = self.timestamp if self.timestamp is not None else int(stat.st_mtime)
        self._stage(
            ArchiveEntry(
                path=path,
                data=data,
                timestamp=timestamp,
                permissions=stat.st_mode & 0o777,
            )
        )

    def add_contents(
        self, relative_path: str, data: bytes, permissions: int = PHAR_ENT_PERM_DEF_FILE
    ) -> None:
        self._check_buffering()
        timestamp = self.timestamp if self.timestamp is not None else int(time.time())
        self._stage(
            ArchiveEntry(
                path=_archive_path(relative_path),
                data=data,
                timestamp=timestamp,
                permissions=permissions,
            )
        )

    def add_placeholder(self, relative_path: str) -> None:
        """Adds an empty entry standing in for a file that is not shipped."""
        self._check_buffering()
        timestamp = self.timestamp if self.timestamp is not None else int(time.time())
        self._stage(
            ArchiveEntry(
                path=_archive_path(relative_path),
                data=b"",
                timestamp=timestamp,
                placeholder=True,
            )
        )

    def compress_entry(self, relative_path: str) -> bool:
        """
        Compresses one staged entry with the archive's compression mode.
        Returns False, leaving the entry stored as-is, when compression is
        off, the extension is not text-like, the entry is a placeholder or
        it is already compressed.
        """
        self._check_buffering()
        path = _archive_path(relative_path)
        entry = self._entries.get(path)
        if entry is None:
            raise ArchiveError(f"No entry {path!r} in archive {self.output_path}.")

        if self.compression is Compression.NONE:
            return False
        if entry.placeholder or entry.compression is not Compression.NONE:
            return False
        if not path.endswith(COMPRESSIBLE_EXTENSIONS):
            return False

        entry.data = _compress(entry.data, self.compression)
        entry.compression = self.compression
        logger.debug(
            "Compressed archive entry",
            path=path,
            algorithm=self.compression.value,
            size=entry.uncompressed_size,
            stored=len(entry.data),
        )
        return True

    def _build_payload(self) -> bytes:
        entries = list(self._entries.values())
        alias = self.alias.encode("utf-8")
        entry_headers = b"".join(entry.header().pack() for entry in entries)

        global_flags = PHAR_HDR_SIGNATURE
        for entry in entries:
            global_flags |= entry.compression.entry_flag

        manifest = ManifestHeader(
            # Everything after the length field itself, archive metadata length included.
            manifest_length=MANIFEST_HEADER_SIZE - 4 + len(alias) + 4 + len(entry_headers),
            entry_count=len(entries),
            global_flags=global_flags,
            alias=alias,
        )
        return b"".join(
            [self._stub or b"", manifest.pack(), entry_headers, *(e.data for e in entries)]
        )

    def _signature_trailer(self, payload: bytes) -> bytes:
        if self.private_key is not None:
            signature = crypto.sign_payload(payload, self.private_key, self.signature)
            return (
                signature
                + struct.pack("<II", len(signature), self.signature.openssl_flag)
                + PHAR_SIGNATURE_MAGIC
            )
        digest = hashlib.new(self.signature.value, payload).digest()
        return digest + struct.pack("<I", self.signature.hash_flag) + PHAR_SIGNATURE_MAGIC

    def finalize(self) -> None:
        """Writes the stub, manifest, entries and signature to the output file."""
        self._check_buffering()
        if self._stub is None:
            raise InvalidStubError("A stub must be set before the archive is finalized.")

        try:
            payload = self._build_payload()
            archive = payload + self._signature_trailer(payload)

            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.output_path.name}.", dir=self.output_path.parent
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(archive)
                os.chmod(tmp_path, 0o755)
                os.replace(tmp_path, self.output_path)
            except OSError:
                tmp_path.unlink(missing_ok=True)
                raise

            if self.private_key is not None:
                self.public_key_path.write_bytes(crypto.public_key_pem(self.private_key))
        except OSError as e:
            raise ArchiveWriteError(f"Cannot write archive {self.output_path}: {e}") from e
        finally:
            self.state = WriterState.FINALIZED

        logger.info(
            f"Archive written: {self.output_path}",
            entries=len(self._entries),
            size=len(archive),
        )
