from __future__ import annotations

from parley.conversation.aggregator import (
    NO_TRANSCRIPT_PLACEHOLDER,
    VOICE_MESSAGE_PLACEHOLDER,
    ConversationAggregator,
    ResponseAccumulator,
)


def test_final_transcript_already_streamed_is_not_appended() -> None:
    acc = ResponseAccumulator(text="Hello there")
    acc.merge_final("Hello there")
    assert acc.text == "Hello there"
    acc.merge_final("there")
    assert acc.text == "Hello there"


def test_final_transcript_extends_partial_text() -> None:
    acc = ResponseAccumulator(text="Hello")
    acc.merge_final("Hello there")
    assert acc.text == "Hello there"


def test_final_transcript_overlap_is_merged_once() -> None:
    acc = ResponseAccumulator(text="The weather is")
    acc.merge_final("is sunny today")
    assert acc.text == "The weather is sunny today"


def test_user_items_get_placeholder_and_backfill_in_place() -> None:
    agg = ConversationAggregator()
    agg.add_user_item("item_1", None)
    agg.add_user_item("item_2", "typed text")
    assert [item.content for item in agg.items] == [VOICE_MESSAGE_PLACEHOLDER, "typed text"]

    updated = agg.backfill_user_transcript("item_1", " what's the time? ")
    assert updated is not None
    assert [item.content for item in agg.items] == ["what's the time?", "typed text"]
    assert agg.backfill_user_transcript("item_2", "other") is None


def test_response_cycle_appends_one_assistant_item() -> None:
    agg = ConversationAggregator()
    agg.begin_response("resp_1")
    for delta in ("Hel", "lo", " world"):
        agg.append_delta(delta)
    assert agg.current_text == "Hello world"
    assert agg.items == ()

    agg.merge_final("Hello world")
    item = agg.complete_response("resp_1")
    assert (item.id, item.role, item.content) == ("resp_1", "assistant", "Hello world")
    assert agg.accumulator is None
    assert agg.current_text == ""


def test_empty_response_uses_placeholder() -> None:
    agg = ConversationAggregator()
    agg.begin_response("resp_2")
    item = agg.complete_response(None)
    assert item.content == NO_TRANSCRIPT_PLACEHOLDER
    assert item.id == "resp_2"


def test_response_id_generated_when_missing() -> None:
    agg = ConversationAggregator()
    agg.append_delta("ok")
    item = agg.complete_response(None)
    assert item.id.startswith("resp_")
    assert item.content == "ok"


def test_new_response_discards_abandoned_text() -> None:
    agg = ConversationAggregator()
    agg.begin_response("resp_1")
    agg.append_delta("stale")
    agg.begin_response("resp_2")
    assert agg.current_text == ""
    agg.discard_response()
    assert agg.accumulator is None


def test_partial_word_completed_by_final_transcript() -> None:
    agg = ConversationAggregator()
    agg.begin_response("resp_1")
    agg.append_delta("hello wor")
    agg.merge_final("hello world")
    assert agg.complete_response().content == "hello world"
