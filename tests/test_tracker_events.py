import asyncio
from datetime import timedelta

from conftest import START
from scanner_bot.forum.models import MessagePosted, ThreadCreated
from scanner_bot.forum.tracker import INTAKE_CARD


def _posted(tracker, gateway, author, content, **kwargs):
    message = gateway.post("t1", author, content, **kwargs)
    asyncio.run(tracker.dispatch(MessagePosted(thread=gateway.threads["t1"], message=message)))
    return message


def test_blank_opening_post_gets_intake_card(tracker, gateway, clock):
    thread = gateway.add_thread("t1", owner_id="111")
    gateway.post("t1", "111", "   ")

    asyncio.run(tracker.dispatch(ThreadCreated(thread=thread)))

    assert clock.now() == START + timedelta(seconds=1)
    assert gateway.sent[0]["card"] == INTAKE_CARD
    assert gateway.threads["t1"].tags == ("waiting",)


def test_opening_post_with_text_only_gets_waiting_tag(tracker, gateway):
    thread = gateway.add_thread("t1", owner_id="111")
    gateway.post("t1", "111", "My printer is on fire, what do I do?")

    asyncio.run(tracker.dispatch(ThreadCreated(thread=thread)))

    assert gateway.sent == []
    assert gateway.threads["t1"].tags == ("waiting",)


def test_threads_outside_the_forum_are_ignored(tracker, gateway):
    thread = gateway.add_thread("t1", parent_id="general")
    gateway.post("t1", "owner", "")

    asyncio.run(tracker.dispatch(ThreadCreated(thread=thread)))
    _posted(tracker, gateway, "owner", "thanks!")

    assert gateway.sent == []
    assert gateway.tag_writes == []


def test_waiting_tag_follows_who_spoke_last(tracker, gateway):
    gateway.add_thread("t1", owner_id="111", tags=("bug", "waiting"))

    _posted(tracker, gateway, "222", "Have you tried unplugging it?")
    assert gateway.threads["t1"].tags == ("bug",)

    _posted(tracker, gateway, "111", "It's still burning")
    assert gateway.threads["t1"].tags == ("bug", "waiting")

    _posted(tracker, gateway, "111", "Anyone?")
    assert len(gateway.tag_writes) == 2


def test_own_messages_clear_waiting_tag(tracker, gateway):
    gateway.add_thread("t1", owner_id="111", tags=("waiting",))
    _posted(tracker, gateway, "999", "beep", bot=True)
    assert gateway.threads["t1"].tags == ()
    assert gateway.sent == []


def test_owner_never_waits_on_solved_thread(tracker, gateway):
    gateway.add_thread("t1", owner_id="111", tags=("solved",))
    _posted(tracker, gateway, "111", "one more thing")
    assert gateway.tag_writes == []


def test_owner_thanks_gets_command_suggestion(tracker, gateway):
    gateway.add_thread("t1", owner_id="111")
    message = _posted(tracker, gateway, "111", "ty! that fixed it")

    suggestion = gateway.sent[-1]
    assert suggestion["content"] == "-# Command suggestion: /solved"
    assert suggestion["reply_to"] == message.id


def test_no_suggestion_for_helpers_or_solved_threads(tracker, gateway):
    gateway.add_thread("t1", owner_id="111")
    _posted(tracker, gateway, "222", "thanks for the logs")
    assert gateway.sent == []

    gateway.add_thread("t1", owner_id="111", tags=("solved",))
    _posted(tracker, gateway, "111", "thanks again")
    assert gateway.sent == []


def test_failing_tag_write_is_not_fatal(tracker, gateway):
    gateway.add_thread("t1", owner_id="111")
    gateway.fail_on.add("set_tags")
    _posted(tracker, gateway, "111", "thx")

    assert gateway.sent[-1]["content"] == "-# Command suggestion: /solved"
    assert gateway.replies == []


def test_config_from_settings():
    from types import SimpleNamespace

    from scanner_bot.forum.tracker import TrackerConfig

    settings = SimpleNamespace(
        FORUM_CHANNEL_ID="10",
        SOLVED_TAG_ID="20",
        WAITING_REPLY_TAG_ID="30",
        MODERATOR_ROLE_ID="40",
        SOLVED_COMMAND_MENTION="</solved:1>",
        UNSOLVED_COMMAND_MENTION="</unsolved:2>",
    )
    config = TrackerConfig.from_settings(settings)
    assert (config.forum_id, config.solved_tag_id, config.waiting_tag_id) == ("10", "20", "30")
    assert config.moderator_role_id == "40"
    assert config.solved_command == "</solved:1>"
    assert config.close_delay == 3600
