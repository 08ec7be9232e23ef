from datetime import datetime, timedelta, timezone

import pytest

from chatkeeper.message_cache import MessageCache
from chatkeeper.models import InboundMessage, MessageKind


def _cache(tmp_path) -> MessageCache:
    cache = MessageCache(tmp_path / "messages.db")
    cache.initialize()
    return cache


def _message(content, message_id="ABC", chat_id="chat-1", timestamp=None, **kwargs) -> InboundMessage:
    return InboundMessage(
        id=message_id,
        chat_id=chat_id,
        sender_id=kwargs.pop("sender_id", "user-1"),
        push_name=kwargs.pop("push_name", "Alice"),
        timestamp=timestamp,
        content=content,
        **kwargs,
    )


@pytest.mark.parametrize(
    ("content", "kind", "text"),
    [
        ({"conversation": "hi there"}, MessageKind.TEXT, "hi there"),
        ({"extended_text": {"text": "quoted reply"}}, MessageKind.TEXT, "quoted reply"),
        ({"image": {"caption": "hello"}}, MessageKind.IMAGE, "hello"),
        ({"video": {"caption": "clip"}}, MessageKind.VIDEO, "clip"),
        ({"audio": {"seconds": 4}}, MessageKind.AUDIO, ""),
        ({"document": {"caption": "report", "title": "q3.pdf"}}, MessageKind.DOCUMENT, "report"),
        ({"sticker": {"animated": False}}, MessageKind.STICKER, ""),
        ({"poll": {"name": "lunch?"}}, MessageKind.UNKNOWN, ""),
    ],
)
def test_add_then_get_derives_kind_and_text(tmp_path, content, kind, text):
    cache = _cache(tmp_path)
    cache.add_message(_message(content))

    cached = cache.get_message("ABC", "chat-1")

    assert cached is not None
    assert cached.kind is kind
    assert cached.text == text
    assert cached.sender_name == "Alice"
    assert cached.payload["content"] == content


def test_conversation_text_wins_over_caption_and_extended_text(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(
        _message({"conversation": "plain", "image": {"caption": "cap"}, "extended_text": {"text": "ext"}})
    )
    assert cache.get_message("ABC").text == "plain"


def test_caption_wins_over_extended_text(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"video": {"caption": "cap"}, "extended_text": {"text": "ext"}}))
    assert cache.get_message("ABC").text == "cap"


def test_message_without_payload_is_a_noop(tmp_path):
    cache = _cache(tmp_path)

    assert cache.add_message(_message(None)) is None
    assert cache.get_message("ABC") is None
    assert cache.get_stats().total_messages == 0


def test_rewrite_replaces_record_and_still_counts(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "first"}))
    cache.add_message(_message({"conversation": "second"}))

    cached = cache.get_message("ABC", "chat-1")
    stats = cache.get_stats()

    assert cached.text == "second"
    assert stats.total_messages == 2
    assert stats.cache_size == 1


def test_chat_id_mismatch_is_not_found(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "hi"}))

    assert cache.get_message("ABC", "other-chat") is None
    assert cache.get_message("ABC") is not None


def test_same_id_in_two_chats_are_separate_records(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "one"}, chat_id="chat-1"))
    cache.add_message(_message({"conversation": "two"}, chat_id="chat-2"))

    assert cache.get_message("ABC", "chat-1").text == "one"
    assert cache.get_message("ABC", "chat-2").text == "two"


def test_view_once_flag(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"image": {"caption": "secret", "view_once": True}}, message_id="V1"))
    cache.add_message(_message({"view_once": {"inner": "video"}}, message_id="V2"))
    cache.add_message(_message({"conversation": "normal"}, message_id="N1"))

    assert cache.get_message("V1").is_view_once
    assert cache.get_message("V2").is_view_once
    assert not cache.get_message("N1").is_view_once
    assert cache.get_stats().view_once_messages == 2


def test_delete_removes_record(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "bye"}))

    assert cache.delete_message("ABC") is True
    assert cache.get_message("ABC") is None


def test_recover_counts_only_successful_lookups(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "oops"}))

    assert cache.recover_message("ABC", "chat-1").text == "oops"
    assert cache.recover_message("missing", "chat-1") is None
    assert cache.get_stats().deleted_recovered == 1


def test_cleanup_removes_only_records_older_than_retention(tmp_path):
    cache = _cache(tmp_path)
    now = datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc)
    boundary = now - timedelta(hours=24)
    cache.add_message(_message({"conversation": "old"}, message_id="OLD", timestamp=int(boundary.timestamp()) - 1))
    cache.add_message(_message({"conversation": "edge"}, message_id="EDGE", timestamp=int(boundary.timestamp())))
    cache.add_message(_message({"conversation": "new"}, message_id="NEW", timestamp=int(now.timestamp())))

    removed = cache.cleanup_old_messages(now=now)

    assert removed == 1
    assert cache.get_message("OLD") is None
    assert cache.get_message("EDGE") is not None
    assert cache.get_message("NEW") is not None


def test_fresh_message_survives_sweep_and_expires_after_window(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"image": {"caption": "hello"}}))

    assert cache.cleanup_old_messages() == 0
    assert cache.get_message("ABC").text == "hello"

    later = datetime.now(timezone.utc) + timedelta(hours=25)
    assert cache.cleanup_old_messages(now=later) == 1
    assert cache.get_message("ABC") is None


def test_cleanup_updates_last_sweep_even_when_nothing_removed(tmp_path):
    cache = _cache(tmp_path)
    before = cache.get_stats().last_cleanup

    cache.cleanup_old_messages()

    assert cache.get_stats().last_cleanup >= before


def test_stats_default_to_zero_before_initialize(tmp_path):
    cache = MessageCache(tmp_path / "messages.db")

    stats = cache.get_stats()

    assert stats.cache_size == 0
    assert stats.unique_chats == 0
    assert stats.view_once_messages == 0
    assert cache.add_message(_message({"conversation": "hi"})) is None
    assert cache.get_message("ABC") is None


def test_stats_count_distinct_chats(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "a"}, message_id="1", chat_id="chat-1"))
    cache.add_message(_message({"conversation": "b"}, message_id="2", chat_id="chat-1"))
    cache.add_message(_message({"conversation": "c"}, message_id="3", chat_id="chat-2"))

    stats = cache.get_stats()

    assert stats.cache_size == 3
    assert stats.unique_chats == 2


def test_messages_and_counters_survive_restart(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "persist me"}))
    cache.recover_message("ABC")
    cache.flush_stats()

    reopened = _cache(tmp_path)

    assert reopened.get_message("ABC").text == "persist me"
    stats = reopened.get_stats()
    assert stats.total_messages == 1
    assert stats.deleted_recovered == 1


def test_timestamp_is_stored_in_milliseconds(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "t"}, timestamp=1_700_000_000))

    assert cache.get_message("ABC").timestamp == 1_700_000_000_000


def test_binary_payload_values_are_cached(tmp_path):
    cache = _cache(tmp_path)
    content = {"image": {"caption": "holiday", "jpeg_thumbnail": b"\xff\xd8\xff", "media_key": bytearray(b"\x01\x02")}}

    cached = cache.add_message(_message(content, message_id="IMG1"))

    assert cached is not None
    stored = cache.get_message("IMG1", "chat-1")
    assert stored.text == "holiday"
    assert stored.payload["content"]["image"]["jpeg_thumbnail"] == {"__bytes__": "/9j/"}
    assert cache.get_stats().total_messages == 1


def test_failed_write_returns_none_without_raising(tmp_path):
    cache = _cache(tmp_path)
    cache.add_message(_message({"conversation": "before"}, message_id="A"))
    (tmp_path / "messages.db").unlink()
    (tmp_path / "messages.db").mkdir()

    assert cache.add_message(_message({"conversation": "after"}, message_id="B")) is None
    assert cache.get_stats().total_messages == 1
