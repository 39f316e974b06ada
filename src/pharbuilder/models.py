import enum
import struct
import zlib
from pathlib import Path
from typing import Self

from attrs import define, field

# PHAR manifest constants, as written by PHP's ext/phar.
PHAR_API_VERSION: int = 0x1110
PHAR_API_MIN_READ: int = 0x1000
PHAR_HALT_COMPILER: bytes = b"__HALT_COMPILER();"
PHAR_STUB_END: bytes = b" ?>\r\n"
PHAR_SIGNATURE_MAGIC: bytes = b"GBMB"

PHAR_HDR_COMPRESSED_GZ: int = 0x00001000
PHAR_HDR_COMPRESSED_BZ2: int = 0x00002000
PHAR_HDR_SIGNATURE: int = 0x00010000

PHAR_ENT_PERM_MASK: int = 0x000001FF
PHAR_ENT_COMPRESSED_GZ: int = 0x00001000
PHAR_ENT_COMPRESSED_BZ2: int = 0x00002000
PHAR_ENT_COMPRESSION_MASK: int = PHAR_ENT_COMPRESSED_GZ | PHAR_ENT_COMPRESSED_BZ2
PHAR_ENT_PERM_DEF_FILE: int = 0o644

# u32 manifest length, u32 entry count, 2-byte API version, u32 flags, u32 alias length
MANIFEST_HEADER_FORMAT = "<IIBBII"
MANIFEST_HEADER_SIZE = struct.calcsize(MANIFEST_HEADER_FORMAT)

# u32 size, u32 timestamp, u32 stored size, u32 crc32, u32 flags, u32 metadata length
ENTRY_HEADER_FORMAT = "<IIIIII"
ENTRY_HEADER_SIZE = struct.calcsize(ENTRY_HEADER_FORMAT)

if MANIFEST_HEADER_SIZE != 18 or ENTRY_HEADER_SIZE != 24:
    raise AssertionError(
        f"PHAR header sizes are {MANIFEST_HEADER_SIZE}/{ENTRY_HEADER_SIZE}, expected 18/24."
    )

# Text-like types that compress well; everything else is stored as-is.
COMPRESSIBLE_EXTENSIONS: tuple[str, ...] = (
    ".php",
    ".txt",
    ".md",
    ".xml",
    ".js",
    ".css",
    ".less",
    ".scss",
    ".json",
    ".html",
    ".rst",
    ".svg",
)


class Compression(enum.Enum):
    NONE = "none"
    GZIP = "gzip"
    BZIP2 = "bzip2"

    @property
    def entry_flag(self) -> int:
        return {
            Compression.NONE: 0,
            Compression.GZIP: PHAR_ENT_COMPRESSED_GZ,
            Compression.BZIP2: PHAR_ENT_COMPRESSED_BZ2,
        }[self]

    @classmethod
    def from_entry_flags(cls, flags: int) -> "Compression":
        if flags & PHAR_ENT_COMPRESSED_GZ:
            return cls.GZIP
        if flags & PHAR_ENT_COMPRESSED_BZ2:
            return cls.BZIP2
        return cls.NONE


class SignatureAlgorithm(enum.Enum):
    SHA1 = "sha1"
    SHA256 = "sha256"
    SHA512 = "sha512"

    @property
    def hash_flag(self) -> int:
        return {"sha1": 0x0002, "sha256": 0x0003, "sha512": 0x0004}[self.value]

    @property
    def openssl_flag(self) -> int:
        return {"sha1": 0x0010, "sha256": 0x0011, "sha512": 0x0012}[self.value]


# Signature trailer flag -> (digest algorithm, is OpenSSL/RSA signed)
SIGNATURE_FLAGS: dict[int, tuple[SignatureAlgorithm, bool]] = {
    **{algo.hash_flag: (algo, False) for algo in SignatureAlgorithm},
    **{algo.openssl_flag: (algo, True) for algo in SignatureAlgorithm},
}


@define(frozen=True, slots=True)
class ManifestHeader:
    manifest_length: int
    entry_count: int
    global_flags: int
    alias: bytes
    api_version: int = field(default=PHAR_API_VERSION)

    def pack(self) -> bytes:
        header = struct.pack(
            MANIFEST_HEADER_FORMAT,
            self.manifest_length,
            self.entry_count,
            (self.api_version >> 8) & 0xFF,
            self.api_version & 0xF0,
            self.global_flags,
            len(self.alias),
        )
        return header + self.alias + struct.pack("<I", 0)

    @classmethod
    def unpack(cls, buffer: bytes, offset: int = 0) -> tuple[Self, int]:
        """Parses the header at `offset`, returning it and the offset of the first entry."""
        end = offset + MANIFEST_HEADER_SIZE
        if len(buffer) < end:
            raise ValueError("Buffer too short for PHAR manifest header.")
        length, count, api_major, api_minor, flags, alias_len = struct.unpack_from(
            MANIFEST_HEADER_FORMAT, buffer, offset
        )
        api_version = (api_major << 8) | api_minor
        if api_version < PHAR_API_MIN_READ or api_major != (PHAR_API_VERSION >> 8):
            raise ValueError(f"Unsupported PHAR API version 0x{api_version:04x}.")

        alias = bytes(buffer[end : end + alias_len])
        if len(alias) != alias_len or len(buffer) < end + alias_len + 4:
            raise ValueError("Truncated PHAR alias.")
        (metadata_len,) = struct.unpack_from("<I", buffer, end + alias_len)
        next_offset = end + alias_len + 4 + metadata_len

        header = cls(
            manifest_length=length,
            entry_count=count,
            global_flags=flags,
            alias=alias,
            api_version=api_version,
        )
        return header, next_offset


@define(frozen=True, slots=True)
class EntryHeader:
    name: str
    uncompressed_size: int
    timestamp: int
    stored_size: int
    crc32: int
    flags: int

    @property
    def compression(self) -> Compression:
        return Compression.from_entry_flags(self.flags)

    @property
    def permissions(self) -> int:
        return self.flags & PHAR_ENT_PERM_MASK

    def pack(self) -> bytes:
        name = self.name.encode("utf-8")
        return (
            struct.pack("<I", len(name))
            + name
            + struct.pack(
                ENTRY_HEADER_FORMAT,
                self.uncompressed_size,
                self.timestamp,
                self.stored_size,
                self.crc32,
                self.flags,
                0,  # no per-entry metadata
            )
        )

    @classmethod
    def unpack(cls, buffer: bytes, offset: int) -> tuple[Self, int]:
        if len(buffer) < offset + 4:
            raise ValueError("Truncated PHAR entry header.")
        (name_len,) = struct.unpack_from("<I", buffer, offset)
        name_end = offset + 4 + name_len
        if len(buffer) < name_end + ENTRY_HEADER_SIZE:
            raise ValueError("Truncated PHAR entry header.")
        name = bytes(buffer[offset + 4 : name_end]).decode("utf-8")
        size, timestamp, stored, crc, flags, metadata_len = struct.unpack_from(
            ENTRY_HEADER_FORMAT, buffer, name_end
        )
        entry = cls(
            name=name,
            uncompressed_size=size,
            timestamp=timestamp,
            stored_size=stored,
            crc32=crc,
            flags=flags,
        )
        return entry, name_end + ENTRY_HEADER_SIZE + metadata_len


@define(slots=True)
class ArchiveEntry:
    """One staged archive entry. `data` holds the stored (possibly compressed) bytes."""

    path: str
    data: bytes
    timestamp: int
    permissions: int = field(default=PHAR_ENT_PERM_DEF_FILE)
    placeholder: bool = field(default=False)
    compression: Compression = field(default=Compression.NONE)
    uncompressed_size: int = field(init=False)
    crc32: int = field(init=False)

    def __attrs_post_init__(self) -> None:
        self.uncompressed_size = len(self.data)
        self.crc32 = zlib.crc32(self.data) & 0xFFFFFFFF

    @property
    def flags(self) -> int:
        return (self.permissions & PHAR_ENT_PERM_MASK) | self.compression.entry_flag

    def header(self) -> EntryHeader:
        return EntryHeader(
            name=self.path,
            uncompressed_size=self.uncompressed_size,
            timestamp=self.timestamp,
            stored_size=len(self.data),
            crc32=self.crc32,
            flags=self.flags,
        )


@define(frozen=True, slots=True)
class SourceSpec:
    """What a build needs to pick up, with every path relative to the project root."""

    dirs: tuple[str, ...]
    files: tuple[str, ...]
    vendor_dir: str
    excludes: tuple[str, ...] = ()
    stubs: tuple[str, ...] = ()

    def __attrs_post_init__(self) -> None:
        overlap = set(self.files) & set(self.stubs)
        if overlap:
            raise ValueError(
                f"Paths cannot be both source files and placeholders: {sorted(overlap)}"
            )


_SIZE_UNITS = ("KiB", "MiB", "GiB", "TiB")
_DURATION_UNITS = (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1))


@define(frozen=True, slots=True)
class BuildReport:
    output_path: Path
    size: int
    entry_count: int
    duration: float

    @property
    def size_text(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        value = float(self.size)
        for unit in _SIZE_UNITS:
            value /= 1024
            if value < 1024 or unit == _SIZE_UNITS[-1]:
                break
        return f"{value:.2f} {unit}"

    @property
    def duration_text(self) -> str:
        if self.duration < 1:
            return f"{self.duration:.2f} seconds"
        remaining = int(round(self.duration))
        parts = []
        for unit, seconds in _DURATION_UNITS:
            value, remaining = divmod(remaining, seconds)
            if value:
                parts.append(f"{value} {unit}{'s' if value != 1 else ''}")
        # Two most significant units are enough for a build summary.
        return ", ".join(parts[:2])
