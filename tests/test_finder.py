"""Tests for the file selection rules."""

from pathlib import Path

import pytest

from pharbuilder.exceptions import SourceNotFoundError
from pharbuilder.finder import is_excluded, normalize_excludes, select_files


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    root = tmp_path / "vendor"
    files = [
        "acme/lib/src/Client.php",
        "acme/lib/src/ClientSpec.php",
        "acme/lib/src/Client.php~",
        "acme/lib/src/Client.php.back",
        "acme/lib/src/.Client.php.swp",
        "acme/lib/src/client.swp",
        "acme/lib/composer.json",
        "acme/lib/composer.lock",
        "acme/lib/.gitattributes",
        "acme/lib/.git/HEAD",
        "acme/lib/CVS/Entries",
        "acme/lib/doc/index.md",
        "acme/lib/Docs/guide.md",
        "acme/lib/tests/ClientTest.php",
        "acme/lib/Test/Fixture.php",
        "acme/lib/phpunit/Framework.php",
        "acme/lib/README.md",
        "acme/lib/assets/logo.png",
        "acme/devtool/bootstrap.php",
        "acme/devtool/src/Dumper.php",
        "autoload.php",
    ]
    for rel in files:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(rel)
    return root


def test_fixed_exclusions(source_tree: Path) -> None:
    selected = select_files(source_tree)
    assert sorted(selected) == [
        "acme/devtool/bootstrap.php",
        "acme/devtool/src/Dumper.php",
        "acme/lib/README.md",
        "acme/lib/assets/logo.png",
        "acme/lib/src/Client.php",
        "autoload.php",
    ]


def test_caller_excludes_are_applied(source_tree: Path) -> None:
    selected = select_files(source_tree, ["acme/devtool"])
    assert not any(path.startswith("acme/devtool/") for path in selected)
    assert "acme/lib/src/Client.php" in selected


def test_absolute_excludes_with_trailing_separator(source_tree: Path) -> None:
    selected = select_files(source_tree, [f"{source_tree.resolve()}/acme/devtool/"])
    assert not any(path.startswith("acme/devtool/") for path in selected)


def test_exclude_does_not_match_name_prefix(source_tree: Path) -> None:
    selected = select_files(source_tree, ["acme/dev"])
    assert "acme/devtool/bootstrap.php" in selected


def test_missing_excludes_are_ignored(source_tree: Path) -> None:
    assert select_files(source_tree, ["does/not/exist"]) == select_files(source_tree)


def test_selection_is_repeatable(source_tree: Path) -> None:
    assert select_files(source_tree) == select_files(source_tree)


def test_missing_root_dir(tmp_path: Path) -> None:
    with pytest.raises(SourceNotFoundError, match="Source directory not found"):
        select_files(tmp_path / "nope")


def test_normalize_excludes(tmp_path: Path) -> None:
    excludes = normalize_excludes(tmp_path, ["a/b/", f"{tmp_path.resolve()}/c/d", "", "/"])
    assert excludes == {"a/b", "c/d"}


@pytest.mark.parametrize(
    "path, excluded",
    [
        ("src/App.php", False),
        ("src/AppSpec.js", True),
        ("src/docs/api.php", True),
        ("src/doctrine/Entity.php", False),
        ("TESTS/Unit.php", True),
        ("src/latest/Thing.php", False),
        ("src/.hidden/Thing.php", True),
        ("src/composer.phar", True),
    ],
)
def test_is_excluded(path: str, excluded: bool) -> None:
    assert is_excluded(path) is excluded
