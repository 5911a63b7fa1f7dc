import enum
import json
import logging
from typing import AsyncGenerator, AsyncIterable, List, Optional

import httpx

from models import StreamDelta

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"
LINE_SEPARATOR = b"\n"


class SpliceState(enum.Enum):
    IDLE = "idle"
    IN_REASONING = "in_reasoning"  # an opening tag was emitted and not yet closed


class StreamTranslator:
    """
    Re-frames a NIM SSE byte stream into OpenAI chat.completion.chunk events.

    Bytes are buffered until a full line is available, so chunk boundaries may
    fall anywhere (inside a JSON token, a multi-byte character, or the line
    separator itself). Each complete `data: ` line is parsed, its delta's
    reasoning_content is folded into content (or dropped when reasoning display
    is off) and the event is written back out as `data: <json>\\n\\n`.

    One instance serves exactly one streamed response.
    """

    def __init__(
        self,
        show_reasoning: bool = False,
        open_tag: str = "<think>\n",
        close_tag: str = "</think>\n\n",
    ):
        self.show_reasoning = show_reasoning
        self.open_tag = open_tag
        self.close_tag = close_tag
        self.state = SpliceState.IDLE
        self._buffer = b""

    @classmethod
    def from_settings(cls, settings) -> "StreamTranslator":
        return cls(
            show_reasoning=settings.SHOW_REASONING,
            open_tag=settings.REASONING_OPEN_TAG,
            close_tag=settings.REASONING_CLOSE_TAG,
        )

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet part of a complete line."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(LINE_SEPARATOR)

        events = []
        for raw_line in lines:
            line = raw_line.decode("utf-8", errors="replace").rstrip("\r")
            event = self.translate_line(line)
            if event is not None:
                events.append(event)
        return events

    def finish(self) -> List[str]:
        if self._buffer:
            # An unterminated line at end of stream cannot be a complete event
            logger.debug(f"Discarding {len(self._buffer)} trailing bytes at end of stream")
        self._buffer = b""
        return []

    def translate_line(self, line: str) -> Optional[str]:
        if not line.startswith(DATA_PREFIX):
            return None

        body = line[len(DATA_PREFIX):]
        if body.strip() == DONE_MARKER:
            return f"{DATA_PREFIX}{DONE_MARKER}\n\n"

        try:
            data = json.loads(body)
            if isinstance(data, dict):
                self._splice_event(data)
            else:
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Forwarding malformed stream line verbatim: {e}")
            return f"{line}\n\n"

        return f"{DATA_PREFIX}{json.dumps(data)}\n\n"

    def _splice_event(self, data: dict) -> None:
        choices = data.get("choices")
        if not isinstance(choices, list):
            return

        # Only the first choice is spliced; reasoning_content is stripped from all of them.
        for position, choice in enumerate(choices):
            if not isinstance(choice, dict) or not isinstance(choice.get("delta"), dict):
                continue
            delta = StreamDelta.model_validate(choice["delta"])
            if position == 0:
                delta.content = self.combine(delta.reasoning_content, delta.content)
            else:
                delta.content = delta.content or ""
            choice["delta"] = delta.model_dump(exclude={"reasoning_content"})

    def combine(self, reasoning: Optional[str], content: Optional[str]) -> str:
        """Content text for one event's delta; advances the splice state."""
        if not self.show_reasoning:
            return content or ""

        combined = ""
        if reasoning:
            if self.state is SpliceState.IDLE:
                combined = self.open_tag + reasoning
                self.state = SpliceState.IN_REASONING
            else:
                combined = reasoning
        if content:
            if self.state is SpliceState.IN_REASONING:
                combined += self.close_tag + content
                self.state = SpliceState.IDLE
            else:
                combined += content
        return combined


async def translate_stream(
    translator: StreamTranslator, chunks: AsyncIterable[bytes]
) -> AsyncGenerator[str, None]:
    """
    Yields client events for an async iterator of backend byte chunks.

    Each chunk is fully translated before the next one is awaited. A transport
    error ends the stream; events already yielded stay delivered.
    """
    chunk_count = 0
    try:
        async for chunk in chunks:
            chunk_count += 1
            for event in translator.feed(chunk):
                yield event
        logger.info(f"[STREAM] Completed. Chunks received: {chunk_count}")
    except (httpx.RequestError, httpx.StreamError) as e:
        logger.error(f"[STREAM ERROR] after {chunk_count} chunks: {e!r}")
    finally:
        translator.finish()
