from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4

from parley.conversation.state import ConversationItem
from parley.telemetry.logging import get_logger

VOICE_MESSAGE_PLACEHOLDER = "Voice message"
NO_TRANSCRIPT_PLACEHOLDER = "Audio response (no transcript available)"


def _find_overlap(text: str, tail: str) -> int:
    """Length of the longest suffix of ``text`` that is a prefix of ``tail``."""
    max_len = min(len(text), len(tail))
    for size in range(max_len, 0, -1):
        if text.endswith(tail[:size]):
            return size
    return 0


@dataclass(slots=True)
class ResponseAccumulator:
    response_id: str | None = None
    text: str = ""

    def append(self, delta: str) -> None:
        self.text += delta

    def merge_final(self, final: str) -> None:
        """Fold a complete transcript into the streamed text without double counting."""
        if not final or final in self.text:
            return
        if self.text in final:
            self.text = final
            return
        self.text += final[_find_overlap(self.text, final) :]


class ConversationAggregator:
    """Append-only transcript plus the in-flight assistant response."""

    def __init__(self) -> None:
        self._items: list[ConversationItem] = []
        self._accumulator: ResponseAccumulator | None = None
        self._logger = get_logger(__name__)

    @property
    def items(self) -> tuple[ConversationItem, ...]:
        return tuple(self._items)

    @property
    def accumulator(self) -> ResponseAccumulator | None:
        return self._accumulator

    @property
    def current_text(self) -> str:
        return self._accumulator.text if self._accumulator else ""

    def add_user_item(self, item_id: str | None, content: str | None) -> ConversationItem:
        item = ConversationItem(
            id=item_id or f"item_{uuid4().hex}",
            role="user",
            content=content or VOICE_MESSAGE_PLACEHOLDER,
        )
        self._items.append(item)
        return item

    def backfill_user_transcript(self, item_id: str | None, transcript: str) -> ConversationItem | None:
        """Replace a voice placeholder with its input transcription, keeping the item's position."""
        text = transcript.strip()
        if not item_id or not text:
            return None
        for index, item in enumerate(self._items):
            if item.id == item_id and item.role == "user" and item.content == VOICE_MESSAGE_PLACEHOLDER:
                updated = ConversationItem(id=item.id, role="user", content=text, created_at=item.created_at)
                self._items[index] = updated
                return updated
        return None

    def begin_response(self, response_id: str | None) -> None:
        if self._accumulator is not None and self._accumulator.text:
            self._logger.warning(
                "conversation.response.discarded",
                response_id=self._accumulator.response_id,
                chars=len(self._accumulator.text),
            )
        self._accumulator = ResponseAccumulator(response_id=response_id)

    def _active(self, response_id: str | None) -> ResponseAccumulator:
        if self._accumulator is None:
            self._logger.debug("conversation.response.implicit_open", response_id=response_id)
            self._accumulator = ResponseAccumulator(response_id=response_id)
        return self._accumulator

    def append_delta(self, delta: str, response_id: str | None = None) -> None:
        if delta:
            self._active(response_id).append(delta)

    def merge_final(self, transcript: str, response_id: str | None = None) -> None:
        if transcript:
            self._active(response_id).merge_final(transcript)

    def complete_response(self, response_id: str | None = None) -> ConversationItem:
        accumulator = self._accumulator or ResponseAccumulator()
        item = ConversationItem(
            id=response_id or accumulator.response_id or f"resp_{uuid4().hex}",
            role="assistant",
            content=accumulator.text.strip() or NO_TRANSCRIPT_PLACEHOLDER,
        )
        self._items.append(item)
        self._accumulator = None
        return item

    def discard_response(self) -> None:
        self._accumulator = None


__all__ = [
    "ConversationAggregator",
    "NO_TRANSCRIPT_PLACEHOLDER",
    "ResponseAccumulator",
    "VOICE_MESSAGE_PLACEHOLDER",
]
