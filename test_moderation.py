import pytest

from wagroupbot.commands import dispatch
from wagroupbot.events import IncomingMessage
from wagroupbot.moderation import BASE_TOXIC_WORDS, TOXIC_WARNING_MSG, check_toxic, default_toxic_words

GROUP = "120363000000000001@g.us"


def test_check_toxic_is_case_insensitive_substring():
    assert check_toxic("Dasar BANGSAT kamu", BASE_TOXIC_WORDS) == ["bangsat"]
    assert check_toxic("anjing dan babi", ["babi", "anjing"]) == ["babi", "anjing"]
    assert check_toxic("selamat pagi semua", BASE_TOXIC_WORDS) == []
    assert check_toxic("", BASE_TOXIC_WORDS) == []
    assert check_toxic(None, BASE_TOXIC_WORDS) == []


def test_default_words_include_builtin_list():
    assert set(BASE_TOXIC_WORDS) <= set(default_toxic_words())


@pytest.mark.asyncio
async def test_toxic_message_in_group_gets_warning(bot, waha):
    bot.toxic_words = list(BASE_TOXIC_WORDS)
    message = IncomingMessage(chat_id=GROUP, sender="628222@c.us", text="kamu tolol", message_id="m7")
    assert await dispatch(bot, message) == "toxic message blocked"
    assert waha.sent == [{
        "session": "default",
        "chatId": GROUP,
        "text": TOXIC_WARNING_MSG,
        "reply_to": "m7",
        "mentions": [],
    }]


@pytest.mark.asyncio
async def test_toxic_command_is_not_run(bot, waha):
    bot.toxic_words = ["keparat"]
    message = IncomingMessage(chat_id=GROUP, sender="628222@c.us", text="/help keparat")
    assert await dispatch(bot, message) == "toxic message blocked"
    assert waha.texts() == [TOXIC_WARNING_MSG]


@pytest.mark.asyncio
async def test_private_chats_and_own_messages_are_not_filtered(bot, waha):
    bot.toxic_words = ["goblok"]
    private = IncomingMessage(chat_id="628222@c.us", sender="628222@c.us", text="goblok")
    own = IncomingMessage(chat_id=GROUP, sender="628000@c.us", text="goblok", from_me=True)
    assert await dispatch(bot, private) is None
    assert await dispatch(bot, own) is None
    assert waha.sent == []


@pytest.mark.asyncio
async def test_empty_word_list_disables_filter(bot, waha):
    bot.toxic_words = []
    message = IncomingMessage(chat_id=GROUP, sender="628222@c.us", text="goblok")
    assert await dispatch(bot, message) is None
    assert waha.sent == []
