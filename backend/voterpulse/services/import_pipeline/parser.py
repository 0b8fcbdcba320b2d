"""
Streaming parser for comma- and tab-delimited voter files

The parser is line oriented: it buffers decoded text until a newline, then
tokenizes the complete line. Quoted fields may contain the delimiter and doubled
quotes (``""`` -> ``"``) but not embedded newlines. The delimiter is chosen once
per file from the header line.
"""
import codecs
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Union

from voterpulse.services.shared.exceptions import MalformedRowError

logger = logging.getLogger(__name__)

COMMA = ","
TAB = "\t"
QUOTE = '"'
BOM = "\ufeff"
# Inserted by the decoder for bytes that are not valid in the file's encoding
REPLACEMENT_CHAR = "\ufffd"


def detect_delimiter(header_line: str) -> str:
    """Tab if the header line contains one, comma otherwise"""
    return TAB if TAB in header_line else COMMA


def parse_line(line: str, delimiter: str = COMMA) -> List[str]:
    """
    Split one line into trimmed fields.

    Args:
        line: A single logical line without its terminator
        delimiter: Field delimiter

    Returns:
        List of field values

    Raises:
        MalformedRowError: If a quoted field is never closed
    """
    result: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(line)

    while i < length:
        char = line[i]
        if char == QUOTE:
            if in_quotes and i + 1 < length and line[i + 1] == QUOTE:
                current.append(QUOTE)
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            result.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    if in_quotes:
        raise MalformedRowError("Unterminated quoted field")

    result.append("".join(current).strip())
    return result


def rows_to_record(headers: List[str], values: List[str]) -> Dict[str, str]:
    """Zip headers with values; missing trailing values become ''"""
    return {
        header: values[i] if i < len(values) else ""
        for i, header in enumerate(headers)
    }


@dataclass
class ParsedRow:
    """One data line: either values or the error raised while tokenizing it"""
    line_number: int
    values: Optional[List[str]] = None
    error: Optional[MalformedRowError] = None
    # True when undecodable bytes on this line were replaced
    replaced_characters: bool = False


@dataclass
class DelimitedRecordParser:
    """
    Incremental tokenizer fed with raw byte (or text) chunks.

    ``feed`` returns the data rows completed by the chunk; ``flush`` returns the
    trailing line when the stream ends without a newline. The first non-blank
    line is taken as the header row and is exposed through ``headers``.
    """
    encoding: str = "utf-8"
    delimiter: Optional[str] = None
    headers: List[str] = field(default_factory=list)
    line_number: int = 0

    def __post_init__(self):
        self._decoder = codecs.getincrementaldecoder(self.encoding)(errors="replace")
        self._buffer = ""

    @property
    def has_headers(self) -> bool:
        return bool(self.headers)

    def feed(self, chunk: Union[bytes, str]) -> List[ParsedRow]:
        """Consume a chunk and return every row it completed"""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        rows: List[ParsedRow] = []
        for line in lines:
            row = self._consume_line(line)
            if row is not None:
                rows.append(row)
        return rows

    def flush(self) -> List[ParsedRow]:
        """Flush decoder state and the final unterminated line"""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        rows: List[ParsedRow] = []
        for line in tail.split("\n"):
            row = self._consume_line(line)
            if row is not None:
                rows.append(row)
        return rows

    def _consume_line(self, line: str) -> Optional[ParsedRow]:
        line = line.rstrip("\r")
        if not self.headers and line.startswith(BOM):
            line = line[len(BOM):]
        if not line.strip():
            return None

        if not self.headers:
            if self.delimiter is None:
                self.delimiter = detect_delimiter(line)
            # A broken header row is fatal to the import
            self.headers = parse_line(line, self.delimiter)
            return None

        self.line_number += 1
        replaced = REPLACEMENT_CHAR in line
        try:
            values = parse_line(line, self.delimiter)
        except MalformedRowError as e:
            e.row = self.line_number
            return ParsedRow(line_number=self.line_number, error=e, replaced_characters=replaced)
        return ParsedRow(line_number=self.line_number, values=values, replaced_characters=replaced)


async def iter_rows(
    chunks: AsyncIterator[Union[bytes, str]],
    parser: Optional[DelimitedRecordParser] = None,
) -> AsyncIterator[ParsedRow]:
    """
    Lazily yield parsed data rows from an async chunk source.

    The next chunk is only requested once the consumer has taken every row
    produced by the previous one, so a consumer that awaits a database write
    between rows holds back further reads.
    """
    parser = parser or DelimitedRecordParser()
    async for chunk in chunks:
        for row in parser.feed(chunk):
            yield row
    for row in parser.flush():
        yield row


@dataclass
class PreviewResult:
    headers: List[str]
    sample_rows: List[List[str]]


def preview(
    data: Union[bytes, str],
    max_rows: int = 5,
    complete: bool = False,
    encoding: str = "utf-8",
) -> PreviewResult:
    """
    Parse the head of a file for the mapping UI.

    Args:
        data: Leading bytes of the file
        max_rows: Maximum sample rows to return
        complete: True when ``data`` is the whole file; otherwise the last,
            probably truncated, line is only used if it is the header
        encoding: Character encoding of the file

    Returns:
        Headers and up to ``max_rows`` sample rows (malformed lines skipped)
    """
    parser = DelimitedRecordParser(encoding=encoding)
    rows = parser.feed(data)
    if complete or not parser.has_headers:
        rows.extend(parser.flush())

    sample_rows = [row.values for row in rows if row.values is not None][:max_rows]
    return PreviewResult(headers=parser.headers, sample_rows=sample_rows)


def normalize_encoding(name: str) -> str:
    """
    Canonical codec name for a user-supplied encoding.

    Raises:
        LookupError: Python has no codec of that name
    """
    return codecs.lookup(name.strip()).name
