"""Tests for the builder's command-line interface."""

from pathlib import Path
from typing import Callable

from click.testing import CliRunner
from cryptography.hazmat.primitives.asymmetric import rsa
from pytest import MonkeyPatch

from pharbuilder.cli import cli


def test_cli_package_and_verify(
    tmp_path: Path, make_composer_project: Callable[..., Path]
) -> None:
    """Tests the full package and verify lifecycle via the CLI."""
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path) as td_str:
        td = Path(td_str)
        make_composer_project(td)

        result = runner.invoke(cli, ["package"])

        assert result.exit_code == 0, f"Package command failed: {result.output}"
        assert "🚀 Creating your Phar application..." in result.output
        assert " > src/App.php" in result.output
        assert "✅ Phar creation successful" in result.output
        assert "Auto-Verification" in result.output
        assert "Entries: 11 (0 compressed)" in result.output
        assert "✅ SHA1 signature and entry checksums verified." in result.output
        assert (td / "build" / "app.phar").exists()


def test_cli_package_quiet_with_options(
    tmp_path: Path, make_composer_project: Callable[..., Path]
) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path) as td_str:
        td = Path(td_str)
        make_composer_project(td)

        result = runner.invoke(
            cli,
            [
                "package",
                "--quiet",
                "--name",
                "tool.phar",
                "--output-dir",
                "dist",
                "--compression",
                "gzip",
                "--signature",
                "sha256",
            ],
        )

        assert result.exit_code == 0, result.output
        assert " > " not in result.output
        assert "✅ SHA256 signature and entry checksums verified." in result.output
        assert (td / "dist" / "tool.phar").exists()


def test_cli_package_with_signing_key(
    tmp_path: Path, make_composer_project: Callable[..., Path], private_key_bytes: bytes
) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path) as td_str:
        td = Path(td_str)
        make_composer_project(td)
        (td / "keys").mkdir()
        (td / "keys" / "phar-private.pem").write_bytes(private_key_bytes)

        result = runner.invoke(
            cli, ["package", "-q", "--signing-key", "keys/phar-private.pem"]
        )

        assert result.exit_code == 0, result.output
        assert "Signature: SHA1 (OpenSSL)" in result.output
        assert (td / "build" / "app.phar.pubkey").exists()


def test_cli_package_failures(
    tmp_path: Path, make_composer_project: Callable[..., Path]
) -> None:
    """Tests various failure modes of the package command."""
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path) as td_str:
        td = Path(td_str)
        result = runner.invoke(cli, ["package"])
        assert result.exit_code != 0
        assert "does not exist" in result.output

        make_composer_project(td)
        (td / "composer.lock").unlink()
        result = runner.invoke(cli, ["package"])
        assert result.exit_code != 0
        assert "❌ Packaging Failed" in result.output
        assert 'Please run "composer install"' in result.output
        assert not (td / "build" / "app.phar").exists()

        Path("composer.json").write_text('{"name": "acme/app", "bin": []}')
        result = runner.invoke(cli, ["package"])
        assert result.exit_code != 0
        assert "Missing required configuration" in result.output


def test_cli_verify_failures(tmp_path: Path) -> None:
    """Tests various failure modes of the verify command."""
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path):
        result = runner.invoke(cli, ["verify"])
        assert result.exit_code != 0
        assert "Cannot find composer.json to determine defaults" in result.output

        Path("app.phar").write_bytes(b"this is not a valid phar file")
        result = runner.invoke(cli, ["verify", "app.phar"])
        assert result.exit_code != 0
        assert "❌ Verification failed" in result.output
        assert "not a PHAR archive" in result.output


def test_cli_verify_defaults_from_composer_json(
    tmp_path: Path, make_composer_project: Callable[..., Path]
) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=tmp_path) as td_str:
        make_composer_project(Path(td_str))
        assert runner.invoke(cli, ["package", "-q"]).exit_code == 0

        result = runner.invoke(cli, ["verify"])

        assert result.exit_code == 0, result.output
        assert "Alias: app.phar" in result.output


def test_cli_keygen(
    tmp_path: Path, monkeypatch: MonkeyPatch, key_pair: tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]
) -> None:
    monkeypatch.setattr("pharbuilder.crypto.generate_keys", lambda: key_pair)
    runner = CliRunner()
    out_dir = tmp_path / "keys"

    result = runner.invoke(cli, ["keygen", "--out-dir", str(out_dir)])
    assert result.exit_code == 0, result.output
    assert "✅ Key pair generated" in result.output
    assert (out_dir / "phar-private.pem").exists()
    assert (out_dir / "phar-public.pem").exists()

    result = runner.invoke(cli, ["keygen", "--out-dir", str(out_dir)])
    assert result.exit_code == 0
    assert "To regenerate, please delete the existing keys first." in result.output


def test_cli_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("phar-builder version ")
