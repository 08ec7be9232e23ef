"""Discovery of command plugins on disk.

Layout under the commands directory::

    general/ping.py       one command per module, named after the file
    group/kick.py
    admin/...
    owner/...
    extras.py             flat module exporting COMMANDS = {name: {...}}

A category module defines ``execute(ctx)`` and optionally ``DESCRIPTION``,
``USAGE`` and ``CATEGORY``. Each ``COMMANDS`` entry is a mapping with an
``execute`` callable and the same optional keys in lower case.
"""

from __future__ import annotations

import importlib
import importlib.util
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Mapping

from chatkeeper.commands.registry import CommandSource
from chatkeeper.models import CommandCategory, CommandDescriptor

# Folder name to category, in scan order.
CATEGORY_DIRS: dict[str, CommandCategory] = {
    "general": CommandCategory.GENERAL,
    "group": CommandCategory.GROUP,
    "admin": CommandCategory.ADMIN,
    "owner": CommandCategory.OWNER,
}

_MODULE_PREFIX = "chatkeeper_plugin"


def _module_name(path: Path, root: Path) -> str:
    relative = path.relative_to(root).with_suffix("")
    return f"{_MODULE_PREFIX}.{'.'.join(relative.parts)}"


def _load_module(path: Path, module_name: str) -> ModuleType:
    # Always execute from disk so edited plugins take effect on reload.
    sys.modules.pop(module_name, None)
    spec = importlib.util.spec_from_file_location(module_name, str(path))
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Unable to import command module: {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def _coerce_category(value: Any, default: CommandCategory) -> CommandCategory:
    if isinstance(value, CommandCategory):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in CATEGORY_DIRS:
            return CATEGORY_DIRS[lowered]
        try:
            return CommandCategory(lowered)
        except ValueError:
            pass
    return default


def _descriptor(name: str, definition: Mapping[str, Any], default: CommandCategory, prefix: str) -> CommandDescriptor:
    execute = definition.get("execute")
    if not callable(execute):
        raise ValueError(f"Command {name!r} has no callable execute")
    return CommandDescriptor(
        name=name,
        execute=execute,
        description=str(definition.get("description") or "No description"),
        usage=str(definition.get("usage") or f"{prefix}{name}"),
        category=_coerce_category(definition.get("category"), default),
    )


def _category_source(path: Path, root: Path, category: CommandCategory, prefix: str) -> CommandSource:
    def load() -> list[CommandDescriptor]:
        module = _load_module(path, _module_name(path, root))
        definition = {
            "execute": getattr(module, "execute", None),
            "description": getattr(module, "DESCRIPTION", None),
            "usage": getattr(module, "USAGE", None),
            "category": getattr(module, "CATEGORY", None),
        }
        return [_descriptor(path.stem, definition, category, prefix)]

    return CommandSource(name=f"{path.parent.name}/{path.stem}", load=load)


def _flat_source(path: Path, root: Path, prefix: str) -> CommandSource:
    def load() -> list[CommandDescriptor]:
        module = _load_module(path, _module_name(path, root))
        exported = getattr(module, "COMMANDS", None)
        if not isinstance(exported, Mapping):
            return []
        return [
            _descriptor(name, definition, CommandCategory.GENERAL, prefix)
            for name, definition in exported.items()
            if isinstance(definition, Mapping) and callable(definition.get("execute"))
        ]

    return CommandSource(name=path.name, load=load)


def discover_sources(commands_dir: Path, prefix: str = "!") -> list[CommandSource]:
    """Return one source per plugin file: category folders first, then flat modules."""

    if not commands_dir.exists():
        return []
    importlib.invalidate_caches()

    sources: list[CommandSource] = []
    for folder, category in CATEGORY_DIRS.items():
        category_path = commands_dir / folder
        if not category_path.is_dir():
            continue
        for path in sorted(category_path.glob("*.py")):
            if path.name.startswith("_"):
                continue
            sources.append(_category_source(path, commands_dir, category, prefix))

    for path in sorted(commands_dir.glob("*.py")):
        if path.name.startswith("_"):
            continue
        sources.append(_flat_source(path, commands_dir, prefix))
    return sources
