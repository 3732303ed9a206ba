"""
Line-oriented decoder for render service responses.
The body is newline-delimited JSON; earlier lines are progress noise and the last
non-blank line is the authoritative result.
"""

import json
from typing import Any, Iterable, Optional

from renderer.errors import ParseFailure


class LastLineDecoder:
    """Accumulates text chunks; lines may be split across chunks."""

    def __init__(self):
        self._pending = ""
        self._last: Optional[str] = None
        self.lines_seen = 0

    def feed(self, chunk: str) -> None:
        if not chunk:
            return
        self._pending += chunk
        *complete, self._pending = self._pending.split("\n")
        for line in complete:
            self._accept(line)

    def feed_all(self, chunks: Iterable[str]) -> "LastLineDecoder":
        for chunk in chunks:
            self.feed(chunk)
        return self

    def _accept(self, line: str) -> None:
        if line.strip():
            self._last = line.strip()
            self.lines_seen += 1

    def result(self) -> Any:
        """Parse the last non-blank line. Raises ParseFailure when absent or malformed."""
        if self._pending:
            self._accept(self._pending)
            self._pending = ""
        if self._last is None:
            raise ParseFailure("Empty response from render service", payload="")
        try:
            return json.loads(self._last)
        except ValueError as e:
            raise ParseFailure(f"Malformed render result: {e}", payload=self._last) from e


def decode_last_line(text: str) -> Any:
    decoder = LastLineDecoder()
    decoder.feed(text)
    return decoder.result()
