"""Command line tools for submitting readings to the alert listener."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` must keep resolving to the module rather than the Typer
# instance, since tests patch ``cli.app.ApiClient`` by module path.

__all__ = []
