"""
Streaming CSV reader for the CEA flat-file extracts.

The source files run to hundreds of thousands of rows and routinely contain
malformed trailing lines, so rows are read one line at a time and short rows
are skipped and counted instead of raising.

Usage:
    stream = CsvRowStream(path, min_fields=9)
    for fields in stream:
        ...
    print(stream.skipped_rows)
"""

import logging
from pathlib import Path
from typing import Iterator, List, TextIO, Union

logger = logging.getLogger(__name__)

CsvSource = Union[str, Path, TextIO]


def split_csv_line(line: str) -> List[str]:
    """
    Split one CSV line into trimmed fields.

    Double quotes toggle quoted mode and are dropped; separators inside a
    quoted section are kept as literal characters.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    fields.append("".join(current).strip())

    return fields


class CsvRowStream:
    """
    Lazy, single forward pass over a CSV file.

    The first line is always the header and is discarded. Iterating a path
    source again re-opens the file; an already-open stream can only be
    consumed once.
    """

    def __init__(self, source: CsvSource, min_fields: int):
        self.source = source
        self.min_fields = min_fields
        self.lines_read = 0
        self.rows_yielded = 0
        self.skipped_rows = 0

    def __iter__(self) -> Iterator[List[str]]:
        self.lines_read = 0
        self.rows_yielded = 0
        self.skipped_rows = 0

        if hasattr(self.source, "read"):
            yield from self._iter_lines(self.source)
            return

        path = Path(self.source)
        if not path.exists():
            raise FileNotFoundError(f"CSV not found at {path}")

        # utf-8-sig drops the BOM the CEA exports sometimes carry
        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            yield from self._iter_lines(handle)

    def _iter_lines(self, handle: TextIO) -> Iterator[List[str]]:
        for line in handle:
            self.lines_read += 1
            if self.lines_read == 1:
                continue

            fields = split_csv_line(line.rstrip("\r\n"))
            if len(fields) < self.min_fields:
                self.skipped_rows += 1
                continue

            self.rows_yielded += 1
            yield fields
