"""
Chunker for btmon output.

Reassembles the continuous line stream of the monitor into one chunk per
logical protocol event. A header line (HCI event/command, MGMT event, ACL
data, system note) opens a chunk; indented lines that follow are its body.

Example:
> HCI Event: Extended Inquiry Result (0x2f) plen 255     #12 [hci0] 12.345
        Num responses: 1
        Address: 00:11:22:33:44:55 (OUI 00-11-22)
        RSSI: -60 dBm (0xc4)
        Name (complete): Test Device
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from .constants import (
    CHUNK_HEADER_PREFIXES,
    CHUNK_KIND_ACL,
    CHUNK_KIND_COMMAND,
    CHUNK_KIND_CONNECT,
    CHUNK_KIND_DEVICE_FOUND,
    CHUNK_KIND_EXTENDED_INQUIRY,
    CHUNK_KIND_INQUIRY,
    CHUNK_KIND_LE_META,
    CHUNK_KIND_NOTE,
    CHUNK_KIND_OTHER,
    CHUNK_KIND_REMOTE_NAME,
    MAX_CHUNK_LINES,
    MAX_LINE_LENGTH,
)
from .models import Chunk, RawLine

logger = logging.getLogger('btrecon.chunker')

# Header substring -> chunk kind, checked in order
_HEADER_KINDS = (
    ('Extended Inquiry Result', CHUNK_KIND_EXTENDED_INQUIRY),
    ('Inquiry Result', CHUNK_KIND_INQUIRY),
    ('Remote Name Req Complete', CHUNK_KIND_REMOTE_NAME),
    ('Connect Complete', CHUNK_KIND_CONNECT),
    ('LE Meta Event', CHUNK_KIND_LE_META),
    ('Device Found', CHUNK_KIND_DEVICE_FOUND),
)


def is_header(text: str) -> bool:
    """Return True if the line opens a new protocol event."""
    return text.startswith(CHUNK_HEADER_PREFIXES)


def classify_header(text: str) -> str:
    """Map a header line to the chunk discriminator."""
    for marker, kind in _HEADER_KINDS:
        if marker in text:
            return kind
    if text.startswith(('< HCI Command:', '@ MGMT Command:')):
        return CHUNK_KIND_COMMAND
    if 'ACL Data' in text:
        return CHUNK_KIND_ACL
    if text.startswith('= '):
        return CHUNK_KIND_NOTE
    return CHUNK_KIND_OTHER


class Chunker:
    """
    Splits monitor output into chunks.

    Lines arriving while no chunk is open are dropped and counted. A chunk
    that grows past ``max_lines``, or receives a line longer than
    ``max_line_length``, is force-closed and marked incomplete.
    """

    def __init__(
        self,
        max_lines: int = MAX_CHUNK_LINES,
        max_line_length: int = MAX_LINE_LENGTH,
        mirror: Optional[logging.Logger] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the chunker.

        Args:
            max_lines: Maximum lines in one chunk, header included.
            max_line_length: Maximum characters kept from a single line.
            mirror: Diagnostic logger receiving every emitted chunk.
            log: Logger for chunker diagnostics.
        """
        self._max_lines = max_lines
        self._max_line_length = max_line_length
        self._mirror = mirror
        self._log = log or logger
        self._current: Optional[Chunk] = None
        self._seq = 0
        self._stats = {
            'lines_seen': 0,
            'orphan_lines': 0,
            'chunks_emitted': 0,
            'forced_closes': 0,
            'truncated_lines': 0,
        }

    @property
    def stats(self) -> dict:
        """Get chunker counters."""
        return self._stats.copy()

    @property
    def has_pending(self) -> bool:
        return self._current is not None

    def feed(
        self,
        line: Union[str, RawLine],
        received_at: Optional[datetime] = None,
    ) -> list[Chunk]:
        """
        Feed one line of monitor output.

        Args:
            line: Raw text (trailing newline allowed) or a RawLine.
            received_at: Arrival time for raw text (defaults to now).

        Returns:
            Chunks completed by this line, oldest first.
        """
        raw = self._to_raw_line(line, received_at)
        if raw is None:
            return []

        self._stats['lines_seen'] += 1
        completed: list[Chunk] = []

        overlong = len(raw.text) > self._max_line_length
        if overlong:
            self._stats['truncated_lines'] += 1
            raw = RawLine(
                seq=raw.seq,
                text=raw.text[:self._max_line_length],
                received_at=raw.received_at,
            )

        if is_header(raw.text):
            if self._current is not None:
                completed.append(self._close(complete=True))
            self._current = Chunk(kind=classify_header(raw.text), lines=[raw])
        elif self._current is None:
            self._stats['orphan_lines'] += 1
            self._log.debug(f"Dropping orphan line #{raw.seq}")
            return completed
        elif len(self._current) >= self._max_lines:
            self._stats['orphan_lines'] += 1
            self._stats['forced_closes'] += 1
            completed.append(self._close(complete=False))
            return completed
        else:
            self._current.lines.append(raw)

        if overlong:
            self._stats['forced_closes'] += 1
            completed.append(self._close(complete=False))

        return completed

    def flush(self) -> Optional[Chunk]:
        """Close and return the pending chunk at end of stream, if any."""
        if self._current is None:
            return None
        return self._close(complete=False)

    def _to_raw_line(
        self,
        line: Union[str, RawLine],
        received_at: Optional[datetime],
    ) -> Optional[RawLine]:
        if isinstance(line, RawLine):
            text = line.text.rstrip('\r\n')
            received = line.received_at
        else:
            text = line.rstrip('\r\n')
            received = received_at or datetime.now()

        if not text.strip():
            return None

        self._seq += 1
        return RawLine(seq=self._seq, text=text, received_at=received)

    def _close(self, complete: bool) -> Chunk:
        chunk = self._current
        self._current = None
        chunk.complete = complete
        self._stats['chunks_emitted'] += 1
        self._mirror_chunk(chunk)
        return chunk

    def _mirror_chunk(self, chunk: Chunk) -> None:
        if self._mirror is None:
            return
        try:
            self._mirror.debug('\n'.join(chunk.text_lines))
        except Exception as e:
            self._log.debug(f"Chunk mirror failed: {e}")
