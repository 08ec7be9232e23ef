import pytest

from chatkeeper.commands.builtin import builtin_commands
from chatkeeper.models import CommandCategory

from fakes import OWNER_ID, connect, make_orchestrator, text_message

GROUP_ID = "120363000000000009@g.us"
ADMIN_ID = "15553334444@s.whatsapp.net"
MEMBER_ID = "15551112222@s.whatsapp.net"


def _group_metadata():
    return {
        "id": GROUP_ID,
        "subject": "Book Club",
        "participants": [
            {"id": ADMIN_ID, "admin": "admin"},
            {"id": MEMBER_ID, "admin": None},
        ],
    }


async def _run(orchestrator, text, sender_id=MEMBER_ID, in_group=False):
    message = text_message(
        text,
        chat_id=GROUP_ID if in_group else sender_id,
        sender_id=sender_id if in_group else None,
        is_group=in_group,
    )
    return await orchestrator.registry.handle_command(text.lstrip("!"), message)


def test_builtins_cover_every_category():
    categories = {descriptor.category for descriptor in builtin_commands()}
    assert categories == set(CommandCategory)


@pytest.mark.asyncio
async def test_menu_lists_builtins(tmp_path):
    orchestrator = make_orchestrator(tmp_path)

    result = await _run(orchestrator, "!menu")

    assert result.success
    assert "• !ping" in result.message
    assert "• !kick" in result.message
    assert f"Total: {len(orchestrator.registry)} commands" in result.message


@pytest.mark.asyncio
async def test_stats_reports_runtime_and_cache(tmp_path):
    orchestrator = make_orchestrator(tmp_path)
    connection = await connect(orchestrator)
    await orchestrator.router.handle_message(text_message("!ping"))

    result = await _run(orchestrator, "!stats")

    assert "Connection: connected" in result.message
    assert "Messages: 1" in result.message
    assert "Commands: 1" in result.message
    assert "Cached messages: 1 in 1 chats" in result.message
    assert connection.sent[-1][1] == "pong"
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_chatbot_toggle_for_user(tmp_path):
    orchestrator = make_orchestrator(tmp_path)

    off = await _run(orchestrator, "!chatbot off")
    status = await _run(orchestrator, "!chatbot")

    assert "disabled" in off.message
    assert orchestrator.db.get_user_settings(MEMBER_ID)["chatbot_enabled"] is False
    assert "off for you" in status.message


@pytest.mark.asyncio
async def test_chatbot_group_toggle_requires_group(tmp_path):
    orchestrator = make_orchestrator(tmp_path)

    in_dm = await _run(orchestrator, "!chatbot group off")
    in_group = await _run(orchestrator, "!chatbot group off", in_group=True)

    assert in_dm.success is False
    assert in_group.success is True
    assert orchestrator.db.get_group_settings(GROUP_ID)["chatbot_enabled"] is False


@pytest.mark.asyncio
async def test_chatbot_provider_must_be_known(tmp_path):
    orchestrator = make_orchestrator(tmp_path)

    rejected = await _run(orchestrator, "!chatbot provider nonsense")
    reset = await _run(orchestrator, "!chatbot provider default")

    assert rejected.success is False
    assert "nonsense" in rejected.message
    assert reset.success is True
    assert orchestrator.db.get_user_settings(MEMBER_ID)["ai_provider"] is None


@pytest.mark.asyncio
async def test_reload_is_owner_only(tmp_path):
    orchestrator = make_orchestrator(tmp_path)

    denied = await _run(orchestrator, "!reload")
    allowed = await _run(orchestrator, "!reload", sender_id=OWNER_ID)

    assert denied.success is False
    assert "owner" in denied.message
    assert allowed.success is True
    assert f"Reloaded {len(orchestrator.registry)} commands" in allowed.message


@pytest.mark.asyncio
async def test_recover_shows_cached_message_to_owner(tmp_path):
    orchestrator = make_orchestrator(tmp_path)
    orchestrator.cache.add_message(text_message("keep this", message_id="K1", chat_id=OWNER_ID))

    result = await _run(orchestrator, "!recover K1", sender_id=OWNER_ID)
    missing = await _run(orchestrator, "!recover NOPE", sender_id=OWNER_ID)

    assert "Text: keep this" in result.message
    assert "Type: text" in result.message
    assert missing.message == "Message not found in cache."


@pytest.mark.asyncio
async def test_kick_requires_group_admin(tmp_path):
    orchestrator = make_orchestrator(tmp_path)
    connection = await connect(orchestrator)
    connection.group_metadata[GROUP_ID] = _group_metadata()

    denied = await _run(orchestrator, f"!kick {MEMBER_ID}", sender_id=MEMBER_ID, in_group=True)
    allowed = await _run(orchestrator, f"!kick {MEMBER_ID}", sender_id=ADMIN_ID, in_group=True)

    assert denied.success is False
    assert "admins" in denied.message
    assert allowed.success is True
    assert connection.participant_updates == [(GROUP_ID, [MEMBER_ID], "remove")]
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_admin_check_falls_back_to_cached_metadata(tmp_path):
    orchestrator = make_orchestrator(tmp_path)
    connection = await connect(orchestrator)
    orchestrator.db.upsert_group(GROUP_ID, name="Book Club", metadata=_group_metadata())

    result = await _run(orchestrator, f"!promote {MEMBER_ID}", sender_id=ADMIN_ID, in_group=True)

    assert result.success is True
    assert connection.participant_updates == [(GROUP_ID, [MEMBER_ID], "promote")]
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_link_returns_invite_code(tmp_path):
    orchestrator = make_orchestrator(tmp_path)
    connection = await connect(orchestrator)
    connection.group_metadata[GROUP_ID] = _group_metadata()

    result = await _run(orchestrator, "!link", sender_id=ADMIN_ID, in_group=True)

    assert result.message == "🔗 Invite code: INVITE123"
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_group_commands_fail_when_offline(tmp_path):
    orchestrator = make_orchestrator(tmp_path)

    result = await _run(orchestrator, f"!add {MEMBER_ID}", sender_id=OWNER_ID, in_group=True)

    assert result.success is False
    assert "not connected" in result.message
