import sys
from textwrap import dedent
from unittest.mock import MagicMock

import pytest

from chatkeeper.commands.loader import discover_sources
from chatkeeper.commands.registry import CommandRegistry
from chatkeeper.models import CommandCategory

from fakes import text_message


@pytest.fixture(autouse=True)
def _no_bytecode(monkeypatch):
    # Plugins are rewritten within the same second; keep stale .pyc files out of the way.
    monkeypatch.setattr(sys, "dont_write_bytecode", True)


def _write(path, body: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(body))


def _registry(commands_dir) -> CommandRegistry:
    registry = CommandRegistry(MagicMock(), prefix="!", sources=lambda: discover_sources(commands_dir))
    registry.load()
    return registry


def test_missing_directory_yields_no_sources(tmp_path):
    assert discover_sources(tmp_path / "nope") == []


def test_category_module_takes_name_from_file_and_category_from_folder(tmp_path):
    _write(
        tmp_path / "group" / "welcome.py",
        """
        DESCRIPTION = "Greet new members"

        def execute(ctx):
            return "welcome!"
        """,
    )

    registry = _registry(tmp_path)
    descriptor = registry.get("welcome")

    assert descriptor is not None
    assert descriptor.category is CommandCategory.GROUP
    assert descriptor.description == "Greet new members"
    assert descriptor.usage == "!welcome"


def test_flat_module_exports_several_commands(tmp_path):
    _write(
        tmp_path / "extras.py",
        """
        def _roll(ctx):
            return "4"

        COMMANDS = {
            "roll": {"execute": _roll, "description": "Roll a die"},
            "ban": {"execute": _roll, "category": "owner"},
            "broken": {"description": "no execute"},
        }
        """,
    )

    registry = _registry(tmp_path)

    assert registry.get("roll").description == "Roll a die"
    assert registry.get("ban").category is CommandCategory.OWNER
    assert "broken" not in registry


def test_flat_module_loads_after_category_modules(tmp_path):
    _write(tmp_path / "general" / "hello.py", "def execute(ctx):\n    return 'category'\n")
    _write(tmp_path / "zz_override.py", "COMMANDS = {'hello': {'execute': lambda ctx: 'flat'}}\n")

    registry = _registry(tmp_path)

    assert registry.get("hello").execute(None) == "flat"


def test_underscore_files_are_skipped(tmp_path):
    _write(tmp_path / "general" / "_helpers.py", "def execute(ctx):\n    return 'x'\n")

    assert discover_sources(tmp_path) == []


def test_broken_plugin_does_not_block_the_others(tmp_path):
    _write(tmp_path / "general" / "bad.py", "def execute(ctx)\n    return 1\n")
    _write(tmp_path / "general" / "good.py", "def execute(ctx):\n    return 'ok'\n")

    registry = _registry(tmp_path)

    assert "good" in registry
    assert "bad" not in registry


@pytest.mark.asyncio
async def test_reload_picks_up_edits_additions_and_removals(tmp_path):
    _write(tmp_path / "general" / "greet.py", "def execute(ctx):\n    return 'v1'\n")
    _write(tmp_path / "general" / "gone.py", "def execute(ctx):\n    return 'bye'\n")
    registry = _registry(tmp_path)
    assert (await registry.handle_command("greet", text_message("!greet"))).message == "v1"

    _write(tmp_path / "general" / "greet.py", "def execute(ctx):\n    return 'version two'\n")
    _write(tmp_path / "owner" / "fresh.py", "def execute(ctx):\n    return 'new'\n")
    (tmp_path / "general" / "gone.py").unlink()
    registry.reload()

    assert (await registry.handle_command("greet", text_message("!greet"))).message == "version two"
    assert registry.get("fresh").category is CommandCategory.OWNER
    unknown = await registry.handle_command("gone", text_message("!gone"))
    assert unknown.success is False
