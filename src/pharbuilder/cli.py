"""The `phar-builder` command-line interface."""

import importlib.metadata
from pathlib import Path

import click

from .composer import ComposerReader
from .config import load_build_config
from .crypto import write_key_pair
from .exceptions import BuildError, SigningError, VerificationError
from .models import Compression, SignatureAlgorithm
from .packaging.orchestrator import BuildOrchestrator
from .packaging.reader import PharReader

try:
    __version__ = importlib.metadata.version("phar-builder")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"


def _echo_progress(path: str) -> None:
    click.echo(f" > {path}")


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(
    __version__,
    "-V",
    "--version",
    prog_name="phar-builder",
    message="%(prog)s version %(version)s",
)
def cli() -> None:
    """Builds single-file PHAR applications from Composer projects."""
    pass


@cli.command()
@click.option(
    "--out-dir",
    default="keys",
    type=click.Path(file_okay=False, writable=True, resolve_path=True),
    help="Directory to save the RSA key pair.",
)
def keygen(out_dir: str) -> None:
    """Generates an RSA key pair for OpenSSL-signed archives."""
    try:
        private_path, public_path = write_key_pair(Path(out_dir))
    except SigningError as e:
        click.secho(
            f"⚠️  {e} To regenerate, please delete the existing keys first.",
            fg="yellow",
        )
        return
    except OSError as e:
        click.secho(f"❌ Keygen failed: {e}", fg="red", err=True)
        raise click.Abort() from e
    click.secho(
        f"✅ Key pair generated: '{private_path}' and '{public_path}'.", fg="green"
    )


@cli.command("package")
@click.option(
    "--composer",
    "composer_json_path",
    default="composer.json",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to the composer.json manifest file.",
)
@click.option("--name", help="Override the archive file name.")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False, resolve_path=True),
    help="Override the directory the archive is written to.",
)
@click.option(
    "--entry-point",
    type=click.Path(dir_okay=False, resolve_path=True),
    help="Override the script run when the archive is executed.",
)
@click.option(
    "--compression",
    type=click.Choice([c.value for c in Compression], case_sensitive=False),
    help="Per-entry compression applied to text-like files.",
)
@click.option(
    "--include",
    "includes",
    multiple=True,
    type=click.Path(exists=True, resolve_path=True),
    help="Extra file or directory to add (repeatable).",
)
@click.option(
    "--include-dev/--no-include-dev",
    default=None,
    help="Ship dev-only sources and packages.",
)
@click.option(
    "--shebang/--no-shebang",
    default=None,
    help="Start the archive with a '#!/usr/bin/env php' line.",
)
@click.option(
    "--signature",
    type=click.Choice([s.value for s in SignatureAlgorithm], case_sensitive=False),
    help="Digest used for the archive signature.",
)
@click.option(
    "--signing-key",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="RSA private key; signs the archive with OpenSSL.",
)
@click.option("-q", "--quiet", is_flag=True, help="Do not list every added file.")
@click.pass_context
def package_command(
    ctx: click.Context,
    composer_json_path: str,
    name: str | None,
    output_dir: str | None,
    entry_point: str | None,
    compression: str | None,
    includes: tuple[str, ...],
    include_dev: bool | None,
    shebang: bool | None,
    signature: str | None,
    signing_key: str | None,
    quiet: bool,
) -> None:
    """Packages the Composer project and immediately verifies the archive."""
    click.echo("🚀 Creating your Phar application...")
    try:
        reader = ComposerReader(Path(composer_json_path))
        config = load_build_config(
            reader,
            {
                "name": name,
                "output-dir": output_dir,
                "entry-point": entry_point,
                "compression": compression,
                "includes": list(includes) or None,
                "include-dev": include_dev,
                "shebang": shebang,
                "signature": signature,
                "signing-key": signing_key,
            },
        )

        orchestrator = BuildOrchestrator(
            composer_json_path=Path(composer_json_path),
            config=config,
            on_progress=None if quiet else _echo_progress,
        )
        report = orchestrator.build_package()
        click.secho(f"✅ Phar creation successful: {report.output_path}", fg="green")
        click.echo(f"  File size: {report.size_text}")
        click.echo(f"  Process duration: {report.duration_text}")

        click.echo("\n" + "=" * 20 + " Auto-Verification " + "=" * 20)
        ctx.invoke(
            verify_command,
            package_file=str(report.output_path),
            public_key_path=None,
        )

    except BuildError as e:
        click.secho(f"❌ Packaging Failed:\n{e}", fg="red", err=True)
        raise click.Abort() from e


@cli.command("verify")
@click.argument(
    "package_file",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    default=None,
    required=False,
)
@click.option(
    "--public-key-path",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Public key for OpenSSL-signed archives (default: <archive>.pubkey).",
)
def verify_command(package_file: str | None, public_key_path: str | None) -> None:
    """Verifies a PHAR archive's manifest, entries and signature."""
    if not package_file:
        manifest_path = Path("composer.json")
        if not manifest_path.exists():
            raise click.UsageError(
                "Cannot find composer.json to determine defaults. Please provide the archive path directly."
            )
        try:
            config = load_build_config(ComposerReader(manifest_path))
        except BuildError as e:
            raise click.UsageError(str(e)) from e
        package_file = str(config.output_path)

    click.echo(f"🔍 Verifying archive '{package_file}'...")
    try:
        reader = PharReader(Path(package_file))
        click.echo(reader.get_info())
        algorithm = reader.verify(Path(public_key_path) if public_key_path else None)
    except (VerificationError, FileNotFoundError) as e:
        click.secho(f"❌ Verification failed: {e}", fg="red", err=True)
        raise click.Abort() from e
    click.secho(
        f"✅ {algorithm.value.upper()} signature and entry checksums verified.", fg="green"
    )


main = cli
