from __future__ import annotations

import importlib
from typing import Any, Callable

from .config import Config, ConfigError


def load_callable(target: str) -> Callable[..., Any]:
    """Resolve a ``"package.module:function"`` reference."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"collaborator must look like 'module:function', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f"cannot import collaborator module {module_name}: {exc}") from exc
    func = getattr(module, attr, None)
    if not callable(func):
        raise ConfigError(f"{target} is not callable")
    return func


def load_story_generator(config: Config) -> Callable[..., Any] | None:
    target = config.collaborators.story_generator.strip()
    if not target:
        return None
    return load_callable(target)
