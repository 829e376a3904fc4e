"""Tests for rolling-summary compaction."""

from fakes import FakeProvider, seed_user

from chatrelay.chat.compactor import (
    SUMMARIZER_INSTRUCTION,
    MemoryCompactor,
    build_summary_request,
)
from chatrelay.errors import UpstreamError
from chatrelay.models import ROLE_AI, ROLE_USER, Conversation, Message, make_id
from chatrelay.store import ChatStore


async def _conversation_with(store: ChatStore, n: int, summary: str | None = None) -> str:
    _, profile = await seed_user(store)
    conv = await store.create_conversation(
        Conversation(id=make_id(), profile_id=profile.id, summary=summary)
    )
    for i in range(n):
        await store.add_message(conv.id, ROLE_USER if i % 2 == 0 else ROLE_AI, f"m{i}")
    return conv.id


def _compactor(store: ChatStore, provider: FakeProvider) -> MemoryCompactor:
    return MemoryCompactor(
        store, provider, threshold=8, retain_window=5, model="summarizer", max_tokens=128
    )


def test_build_summary_request():
    batch = [
        Message(id="1", conversation_id="c", role=ROLE_USER, response="hi"),
        Message(id="2", conversation_id="c", role=ROLE_AI, response="hello"),
    ]
    request = build_summary_request(None, batch)
    assert request[0] == {"role": "system", "content": SUMMARIZER_INSTRUCTION}
    assert "Existing summary:\nNone" in request[1]["content"]
    assert "New messages:\nuser: hi\nai: hello" in request[1]["content"]

    merged = build_summary_request("earlier stuff", batch)
    assert "Existing summary:\nearlier stuff" in merged[1]["content"]


async def test_below_threshold_is_noop(store: ChatStore):
    provider = FakeProvider()
    conv_id = await _conversation_with(store, 7)

    result = await _compactor(store, provider).compact(conv_id, "k")

    assert result.compacted is False
    assert provider.completions == []
    assert await store.count_messages(conv_id) == 7


async def test_compacts_oldest_excess(store: ChatStore):
    provider = FakeProvider(summary="merged summary")
    conv_id = await _conversation_with(store, 10, summary="old summary")

    result = await _compactor(store, provider).compact(conv_id, "sk-turn")

    assert result.compacted is True
    assert result.summarized == 5
    remaining = await store.list_messages(conv_id)
    assert [m.response for m in remaining] == ["m5", "m6", "m7", "m8", "m9"]
    assert (await store.get_conversation(conv_id)).summary == "merged summary"

    call = provider.completions[0]
    assert call["model"] == "summarizer"
    assert call["api_key"] == "sk-turn"
    assert "old summary" in call["messages"][1]["content"]
    assert "user: m0" in call["messages"][1]["content"]
    assert "m5" not in call["messages"][1]["content"]


async def test_second_run_is_noop(store: ChatStore):
    provider = FakeProvider(summary="s1")
    conv_id = await _conversation_with(store, 9)
    compactor = _compactor(store, provider)

    await compactor.compact(conv_id, "k")
    before = ([m.id for m in await store.list_messages(conv_id)],
              (await store.get_conversation(conv_id)).summary)

    provider.summary = "s2"
    result = await compactor.compact(conv_id, "k")
    after = ([m.id for m in await store.list_messages(conv_id)],
             (await store.get_conversation(conv_id)).summary)

    assert result.compacted is False
    assert before == after
    assert len(provider.completions) == 1


async def test_summarizer_failure_leaves_state(store: ChatStore):
    provider = FakeProvider(summary_error=UpstreamError("rate limited"))
    conv_id = await _conversation_with(store, 10, summary="keep")

    result = await _compactor(store, provider).compact(conv_id, "k")

    assert result.compacted is False
    assert await store.count_messages(conv_id) == 10
    assert (await store.get_conversation(conv_id)).summary == "keep"


async def test_empty_summary_leaves_state(store: ChatStore):
    provider = FakeProvider(summary="")
    conv_id = await _conversation_with(store, 10)

    result = await _compactor(store, provider).compact(conv_id, "k")

    assert result.compacted is False
    assert await store.count_messages(conv_id) == 10
    assert (await store.get_conversation(conv_id)).summary is None


async def test_threshold_below_retain_window_selects_nothing(store: ChatStore):
    provider = FakeProvider()
    conv_id = await _conversation_with(store, 4)
    compactor = MemoryCompactor(store, provider, threshold=3, retain_window=5, model="m")

    result = await compactor.compact(conv_id, "k")

    assert result.compacted is False
    assert provider.completions == []
