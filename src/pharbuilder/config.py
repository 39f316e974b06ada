"""Build settings, read from `extra.phar-builder` in composer.json."""

from pathlib import Path
import posixpath
from typing import Any

from attrs import define, field

from .composer import ComposerReader
from .exceptions import ConfigurationError
from .models import Compression, SignatureAlgorithm

CONFIG_PATH = "extra/phar-builder"


@define(frozen=True, slots=True)
class BuildConfig:
    name: str
    output_dir: Path
    entry_point: str
    compression: Compression = field(default=Compression.NONE)
    includes: tuple[str, ...] = field(default=())
    include_dev: bool = field(default=False)
    shebang: bool = field(default=True)
    signature: SignatureAlgorithm = field(default=SignatureAlgorithm.SHA1)
    signing_key: Path | None = field(default=None)

    @property
    def output_path(self) -> Path:
        return self.output_dir / self.name


def make_path_relative(path: str, root: Path) -> str:
    """Turns a path inside `root` into a `/`-separated path relative to it."""
    candidate = Path(path)
    if candidate.is_absolute():
        try:
            candidate = candidate.relative_to(root)
        except ValueError as e:
            raise ConfigurationError(f"Path {path} is outside the project root {root}.") from e
    return posixpath.normpath(candidate.as_posix())


def _parse_enum(enum_cls: type, key: str, value: Any) -> Any:
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"Invalid '{key}' value {value!r}; expected one of: {choices}."
        ) from e


def _default_name(reader: ComposerReader) -> str | None:
    package_name = reader.get_value("name")
    if not package_name:
        return None
    return f"{str(package_name).rsplit('/', 1)[-1]}.phar"


def _default_entry_point(reader: ComposerReader) -> str | None:
    binaries = reader.get_value("bin")
    if isinstance(binaries, str):
        return binaries
    return binaries[0] if binaries else None


def load_build_config(
    reader: ComposerReader, overrides: dict[str, Any] | None = None
) -> BuildConfig:
    """
    Merges `extra.phar-builder` from composer.json with `overrides` (keyed
    like the composer.json settings; None means "not given").
    """
    composer_conf = reader.get_value(CONFIG_PATH) or {}
    if not isinstance(composer_conf, dict):
        raise ConfigurationError(f"'{CONFIG_PATH}' in composer.json must be an object.")
    values = {
        **composer_conf,
        **{key: value for key, value in (overrides or {}).items() if value is not None},
    }

    root = reader.project_root.resolve()
    name = values.get("name") or _default_name(reader)
    entry_point = values.get("entry-point") or _default_entry_point(reader)
    if not name or not entry_point:
        raise ConfigurationError(
            "Missing required configuration: set 'name' and 'entry-point' in "
            "extra.phar-builder of composer.json or provide them as CLI options."
        )

    entry_point = make_path_relative(entry_point, root)
    if not (root / entry_point).is_file():
        raise ConfigurationError(f"Entry point not found: {root / entry_point}")

    output_dir = Path(values.get("output-dir") or ".")
    if not output_dir.is_absolute():
        output_dir = root / output_dir

    includes = values.get("includes") or []
    if isinstance(includes, str):
        includes = [includes]

    signing_key = values.get("signing-key")
    if signing_key is not None:
        signing_key = Path(signing_key)
        if not signing_key.is_absolute():
            signing_key = root / signing_key

    return BuildConfig(
        name=str(name),
        output_dir=output_dir,
        entry_point=entry_point,
        compression=_parse_enum(Compression, "compression", values.get("compression", "none")),
        includes=tuple(make_path_relative(str(include), root) for include in includes),
        include_dev=bool(values.get("include-dev", False)),
        shebang=bool(values.get("shebang", True)),
        signature=_parse_enum(SignatureAlgorithm, "signature", values.get("signature", "sha1")),
        signing_key=signing_key,
    )
