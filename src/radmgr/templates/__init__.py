"""
Jinja2 templates for the files radmgr writes into FreeRADIUS/OpenVPN.

Uses Jinja2 the same way for every file: trim_blocks/lstrip_blocks so the
templates can be laid out like the config they produce.
"""
from __future__ import annotations

from functools import lru_cache

from jinja2 import Environment, PackageLoader, StrictUndefined

from ..conffile import format_value

__all__ = ["render", "read_static", "fr_escape", "fr_value"]


def fr_escape(value) -> str:
    """Escape a value for use inside a double-quoted FreeRADIUS string."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


def fr_value(value) -> str:
    """A bare or double-quoted FreeRADIUS value, whichever reads back unchanged."""
    return format_value(value)


@lru_cache(maxsize=1)
def _env() -> Environment:
    env = Environment(
        loader=PackageLoader("radmgr", "templates"),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        undefined=StrictUndefined,
        autoescape=False,
    )
    env.filters["fr_escape"] = fr_escape
    env.filters["fr_value"] = fr_value
    return env


def render(name: str, **context) -> str:
    return _env().get_template(name).render(**context)


def read_static(name: str) -> str:
    """Non-template resources (schema.sql) come through the same loader."""
    source, _, _ = _env().loader.get_source(_env(), name)
    return source
