"""Renders the bootstrap stub that runs a PHAR's entry point."""

from pathlib import Path
import re

import jinja2

_TEMPLATE_DIR = Path(__file__).parent / "templates"

_SHEBANG = re.compile(rb"^#!/(.*)\n")
_PHP_STRING_SPECIALS = re.compile(r'([\\"$])')


def _php_string(value: str) -> str:
    """Escapes a value for a PHP double-quoted string."""
    return _PHP_STRING_SPECIALS.sub(r"\\\1", value)


def _get_template_env() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(_TEMPLATE_DIR),
        trim_blocks=True,
        lstrip_blocks=True,
        autoescape=False,
    )
    env.filters["php_string"] = _php_string
    return env


def render_stub(alias: str, entry_point: str, shebang: bool = True, runtime: str = "php") -> str:
    template = _get_template_env().get_template("stub.php.j2")
    return template.render(
        alias=alias, entry_point=entry_point, shebang=shebang, runtime=runtime
    )


def strip_shebang(content: bytes) -> bytes:
    """Removes a leading `#!/...` line, which PHP would otherwise echo."""
    return _SHEBANG.sub(b"", content, count=1)
