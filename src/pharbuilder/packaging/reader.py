"""Python-based reader and verifier for PHAR archives."""

import bz2
import hashlib
import hmac
from pathlib import Path
import re
import struct
import zlib

from .. import crypto
from ..exceptions import InvalidArchiveError, SignatureVerificationError
from ..models import (
    PHAR_SIGNATURE_MAGIC,
    SIGNATURE_FLAGS,
    Compression,
    EntryHeader,
    ManifestHeader,
    SignatureAlgorithm,
)

_HALT = re.compile(rb"__HALT_COMPILER\(\);(?: \?>)?(?:\r\n|\n)?", re.IGNORECASE)


class PharReader:
    """Reads the stub, manifest and entries of a PHAR file."""

    def __init__(self, package_path: Path) -> None:
        package_path = Path(package_path)
        if not package_path.is_file():
            raise FileNotFoundError(f"Archive not found at: {package_path}")
        self.package_path = package_path
        self._data = package_path.read_bytes()
        self._parse()

    def _parse(self) -> None:
        data = self._data
        halt = _HALT.search(data)
        if halt is None:
            raise InvalidArchiveError("No __HALT_COMPILER(); found: not a PHAR archive.")
        self.stub = data[: halt.end()]

        try:
            self.manifest, offset = ManifestHeader.unpack(data, halt.end())
            manifest_end = halt.end() + 4 + self.manifest.manifest_length
            entries: dict[str, EntryHeader] = {}
            for _ in range(self.manifest.entry_count):
                entry, offset = EntryHeader.unpack(data, offset)
                entries[entry.name] = entry
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidArchiveError(f"PHAR manifest validation failed: {e}") from e
        if offset != manifest_end:
            raise InvalidArchiveError(
                f"PHAR manifest length mismatch: declared end {manifest_end}, parsed {offset}."
            )

        self.entries = entries
        self._offsets: dict[str, int] = {}
        for entry in entries.values():
            self._offsets[entry.name] = offset
            offset += entry.stored_size
        self.content_end = offset
        if self.content_end > len(data):
            raise InvalidArchiveError("PHAR entry contents are truncated.")
        self._parse_signature()

    def _parse_signature(self) -> None:
        data = self._data
        if data[-4:] != PHAR_SIGNATURE_MAGIC:
            raise InvalidArchiveError(f"Invalid PHAR signature magic. Found {data[-4:]!r}.")
        (flags,) = struct.unpack("<I", data[-8:-4])
        if flags not in SIGNATURE_FLAGS:
            raise InvalidArchiveError(f"Unsupported PHAR signature type 0x{flags:04x}.")
        self.signature_algorithm, self.openssl_signed = SIGNATURE_FLAGS[flags]

        if self.openssl_signed:
            (sig_len,) = struct.unpack("<I", data[-12:-8])
            sig_end = len(data) - 12
        else:
            sig_len = hashlib.new(self.signature_algorithm.value).digest_size
            sig_end = len(data) - 8
        if sig_end - sig_len != self.content_end:
            raise InvalidArchiveError("PHAR signature does not follow the entry contents.")
        self.signature = data[self.content_end : sig_end]

    @property
    def alias(self) -> str:
        return self.manifest.alias.decode("utf-8")

    def read(self, name: str) -> bytes:
        """Returns the uncompressed contents of one entry, checking its CRC32."""
        entry = self.entries.get(name)
        if entry is None:
            raise KeyError(name)
        offset = self._offsets[name]
        stored = self._data[offset : offset + entry.stored_size]
        try:
            if entry.compression is Compression.GZIP:
                content = zlib.decompress(stored, -zlib.MAX_WBITS)
            elif entry.compression is Compression.BZIP2:
                content = bz2.decompress(stored)
            else:
                content = stored
        except (zlib.error, OSError, ValueError) as e:
            raise InvalidArchiveError(f"Cannot decompress entry {name}: {e}") from e
        if len(content) != entry.uncompressed_size or (zlib.crc32(content) & 0xFFFFFFFF) != entry.crc32:
            raise InvalidArchiveError(f"CRC32 or size mismatch for entry {name}.")
        return content

    def verify(self, public_key_path: Path | None = None) -> SignatureAlgorithm:
        """
        Checks the archive signature. OpenSSL-signed archives need a public
        key, taken from `<archive>.pubkey` unless given explicitly.
        """
        signed = self._data[: self.content_end]
        if self.openssl_signed:
            key_path = public_key_path or self.package_path.with_name(
                self.package_path.name + ".pubkey"
            )
            if not Path(key_path).is_file():
                raise SignatureVerificationError(f"Public key not found at: {key_path}")
            crypto.verify_payload(
                signed, self.signature, Path(key_path).read_bytes(), self.signature_algorithm
            )
        else:
            digest = hashlib.new(self.signature_algorithm.value, signed).digest()
            if not hmac.compare_digest(digest, self.signature):
                raise SignatureVerificationError(
                    f"{self.signature_algorithm.value.upper()} signature does not match."
                )
        for name in self.entries:
            self.read(name)
        return self.signature_algorithm

    def get_info(self) -> str:
        """Returns a human-readable string of the archive information."""
        compressed = sum(1 for e in self.entries.values() if e.compression is not Compression.NONE)
        kind = "OpenSSL" if self.openssl_signed else "hash"
        return (
            f"PHAR Archive Information:\n"
            f"  Alias: {self.alias}\n"
            f"  API Version: 0x{self.manifest.api_version:04x}\n"
            f"  Entries: {len(self.entries)} ({compressed} compressed)\n"
            f"  Stub Size: {len(self.stub)} bytes\n"
            f"  Signature: {self.signature_algorithm.value.upper()} ({kind})"
        )
