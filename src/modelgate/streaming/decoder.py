"""Incremental decoder for the "**Thinking:** ... **Answer:** ..." stream format."""

from __future__ import annotations

from dataclasses import dataclass

THINKING_MARKER = "**Thinking:**"
ANSWER_MARKER = "**Answer:**"


@dataclass(slots=True, frozen=True)
class Segments:
    thinking: str = ""
    answer: str = ""
    answer_started: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "thinking": self.thinking,
            "answer": self.answer,
            "answer_started": self.answer_started,
        }


def _partial_marker_len(text: str, marker: str) -> int:
    """Length of the longest proper prefix of ``marker`` that ``text`` ends with."""
    for size in range(min(len(marker) - 1, len(text)), 0, -1):
        if text.endswith(marker[:size]):
            return size
    return 0


def _held_back(text: str, thinking_seen: bool) -> int:
    held = _partial_marker_len(text, ANSWER_MARKER)
    if not thinking_seen:
        held = max(held, _partial_marker_len(text, THINKING_MARKER))
    return held


def _resolve(buffer: str, thinking_at: int, answer_at: int, final: bool) -> Segments:
    if answer_at >= 0:
        start = thinking_at + len(THINKING_MARKER) if 0 <= thinking_at < answer_at else 0
        return Segments(
            thinking=buffer[start:answer_at].strip(),
            answer=buffer[answer_at + len(ANSWER_MARKER):].strip(),
            answer_started=True,
        )
    if thinking_at < 0:
        if final:
            return Segments(answer=buffer.strip())
        body = buffer
    else:
        body = buffer[thinking_at + len(THINKING_MARKER):]
    if not final:
        held = _held_back(body, thinking_at >= 0)
        if held:
            body = body[:-held]
    return Segments(thinking=body.strip())


def split_segments(buffer: str, *, final: bool = False) -> Segments:
    """Split a complete or partial buffer into thinking and answer text.

    While streaming (``final=False``) text before the answer marker is
    reported as thinking, minus any trailing fragment that could still
    grow into a marker. Once the stream completes without any marker the
    whole buffer is the answer.
    """
    return _resolve(buffer, buffer.find(THINKING_MARKER), buffer.find(ANSWER_MARKER), final)


class StreamDecoder:
    """Accumulates deltas for one streamed response.

    Marker searches resume just before the previous end of the buffer, so
    each delta costs time proportional to its own length plus the marker
    size. ``feed`` returns the same segments ``split_segments`` would for
    the whole buffer.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._thinking_at = -1
        self._answer_at = -1
        self._segments = Segments()
        self.completed = False

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def thinking(self) -> str:
        return self._segments.thinking

    @property
    def answer(self) -> str:
        return self._segments.answer

    @property
    def segments(self) -> Segments:
        return self._segments

    def _scan(self, marker: str, previous_len: int) -> int:
        start = max(0, previous_len - len(marker) + 1)
        return self._buffer.find(marker, start)

    def feed(self, delta: str) -> Segments:
        if self.completed:
            raise RuntimeError("decoder already completed")
        if not delta:
            return self._segments
        previous_len = len(self._buffer)
        self._buffer += delta
        if self._answer_at < 0:
            if self._thinking_at < 0:
                self._thinking_at = self._scan(THINKING_MARKER, previous_len)
            self._answer_at = self._scan(ANSWER_MARKER, previous_len)
        self._segments = _resolve(self._buffer, self._thinking_at, self._answer_at, False)
        return self._segments

    def finish(self) -> Segments:
        if not self.completed:
            self.completed = True
            self._segments = _resolve(self._buffer, self._thinking_at, self._answer_at, True)
        return self._segments
