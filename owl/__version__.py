"""
Version information for owl.

The version comes from the installed distribution metadata; source checkouts
that were never installed fall back to pyproject.toml.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("owl-reconciler")
except PackageNotFoundError:
    import tomllib
    from pathlib import Path

    _pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        __version__ = tomllib.loads(_pyproject.read_text(encoding="utf-8"))["project"][
            "version"
        ]
    except (OSError, KeyError, tomllib.TOMLDecodeError):
        __version__ = "0.0.0-dev"
