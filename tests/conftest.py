"""Pytest fixtures for the entire phar-builder test suite."""

import json
from pathlib import Path
from typing import Any, Callable

from cryptography.hazmat.primitives.asymmetric import rsa
import pytest

from pharbuilder.crypto import generate_keys, private_key_pem, public_key_pem

AUTOLOAD_FILES = r"""<?php

// autoload_files.php @generated by Composer

$vendorDir = dirname(__DIR__);
$baseDir = dirname($vendorDir);

return array(
{entries});
"""

AUTOLOAD_STATIC = r"""<?php

// autoload_static.php @generated by Composer

namespace Composer\Autoload;

class ComposerStaticInit0123456789abcdef
{{
    public static $files = array (
{entries}    );

    public static $prefixLengthsPsr4 = array (
        'A' =>
        array (
            'Acme\\App\\' => 9,
        ),
    );
}}
"""


def _files_registry(packages: dict[str, str]) -> tuple[str, str]:
    files_entries = "".join(
        f"    '{key}' => $vendorDir . '/{path}',\n" for key, path in packages.items()
    )
    static_entries = "".join(
        f"        '{key}' => __DIR__ . '/..' . '/{path}',\n" for key, path in packages.items()
    )
    return (
        AUTOLOAD_FILES.format(entries=files_entries),
        AUTOLOAD_STATIC.format(entries=static_entries),
    )


def _write(path: Path, content: str | bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content)


@pytest.fixture
def make_composer_project() -> Callable[..., Path]:
    """
    A factory fixture that lays out an installed Composer project under a
    given directory and returns the path of its composer.json.
    """

    def _make_project(
        root_dir: Path,
        *,
        phar_config: dict[str, Any] | None = None,
        dev_package: bool = False,
        composer_overrides: dict[str, Any] | None = None,
    ) -> Path:
        composer = {
            "name": "acme/app",
            "bin": ["bin/app"],
            "autoload": {"psr-4": {"Acme\\App\\": "src/"}},
            "require": {"monolog/monolog": "^3.0"},
            "extra": {
                "phar-builder": {
                    "name": "app.phar",
                    "output-dir": "build",
                    "compression": "none",
                    "include-dev": False,
                    **(phar_config or {}),
                }
            },
            **(composer_overrides or {}),
        }
        lock: dict[str, Any] = {
            "packages": [
                {
                    "name": "monolog/monolog",
                    "autoload": {"files": ["src/functions.php"]},
                }
            ]
        }
        registered = {"a4a119a56e50fbb293281d9a48007e0e": "monolog/monolog/src/functions.php"}
        if dev_package:
            composer["require-dev"] = {"acme/devtool": "^1.0"}
            lock["packages-dev"] = [
                {"name": "acme/devtool", "autoload": {"files": ["bootstrap.php"]}}
            ]
            registered["7b11c4dc42b3b3023073cb14e519683c"] = "acme/devtool/bootstrap.php"
            _write(root_dir / "vendor/acme/devtool/bootstrap.php", "<?php function dev_dump() {}\n")
            _write(root_dir / "vendor/acme/devtool/src/Dumper.php", "<?php class Dumper {}\n")

        _write(root_dir / "composer.json", json.dumps(composer, indent=4))
        _write(root_dir / "composer.lock", json.dumps(lock, indent=4))

        _write(root_dir / "bin/app", "#!/usr/bin/env php\n<?php require __DIR__.'/../vendor/autoload.php';\n")
        _write(root_dir / "src/App.php", "<?php\nnamespace Acme\\App;\n\nclass App {}\n" * 20)
        _write(root_dir / "src/Util/Helper.php", "<?php\nnamespace Acme\\App\\Util;\n\nclass Helper {}\n")
        _write(root_dir / "src/Tests/AppTest.php", "<?php // not shipped\n")
        _write(root_dir / "src/.env", "SECRET=1\n")

        files_php, static_php = _files_registry(registered)
        _write(root_dir / "vendor/autoload.php", "<?php return require __DIR__.'/composer/autoload_real.php';\n")
        _write(root_dir / "vendor/composer/autoload_real.php", "<?php // loader\n")
        _write(root_dir / "vendor/composer/autoload_files.php", files_php)
        _write(root_dir / "vendor/composer/autoload_static.php", static_php)
        _write(root_dir / "vendor/monolog/monolog/composer.json", "{}\n")
        _write(root_dir / "vendor/monolog/monolog/src/Logger.php", "<?php class Logger {}\n")
        _write(root_dir / "vendor/monolog/monolog/src/functions.php", "<?php function log_it() {}\n")
        _write(root_dir / "vendor/monolog/monolog/tests/LoggerTest.php", "<?php // test\n")
        return root_dir / "composer.json"

    return _make_project


@pytest.fixture(scope="session")
def key_pair() -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    """Generates a single RSA key pair for the entire test session."""
    return generate_keys()


@pytest.fixture(scope="session")
def private_key(key_pair: tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]) -> rsa.RSAPrivateKey:
    """Returns the private key object from the session-scoped key pair."""
    return key_pair[0]


@pytest.fixture(scope="session")
def public_key_bytes(private_key: rsa.RSAPrivateKey) -> bytes:
    """Provides the public key serialized in PEM format."""
    return public_key_pem(private_key)


@pytest.fixture(scope="session")
def private_key_bytes(private_key: rsa.RSAPrivateKey) -> bytes:
    """Provides the private key serialized in PEM format."""
    return private_key_pem(private_key)
