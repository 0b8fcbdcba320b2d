"""
Unit tests for the delimited-record parser
"""
import pytest

from voterpulse.services.import_pipeline.parser import (
    DelimitedRecordParser,
    detect_delimiter,
    iter_rows,
    normalize_encoding,
    parse_line,
    preview,
    rows_to_record,
)
from voterpulse.services.shared.exceptions import MalformedRowError


def _values(rows):
    return [row.values for row in rows]


def test_parse_line_quoted_delimiter_and_doubled_quotes():
    """Quoted fields keep the delimiter and collapse doubled quotes"""
    assert parse_line('"Smith, ""Bob""",555-1234') == ['Smith, "Bob"', "555-1234"]


def test_parse_line_trims_and_keeps_empty_fields():
    assert parse_line(" a , ,c,") == ["a", "", "c", ""]


def test_parse_line_tab_delimiter():
    assert parse_line("V1\tAnn\t\"Lee, Jr\"", "\t") == ["V1", "Ann", "Lee, Jr"]


def test_parse_line_unterminated_quote_raises():
    with pytest.raises(MalformedRowError):
        parse_line('V1,"Ann,Lee')


def test_detect_delimiter():
    assert detect_delimiter("VoterId\tFirstName") == "\t"
    assert detect_delimiter("VoterId,FirstName") == ","


def test_rows_to_record_pads_missing_values():
    assert rows_to_record(["A", "B", "C"], ["1"]) == {"A": "1", "B": "", "C": ""}


def test_header_row_is_consumed_and_bom_stripped():
    """BOM and CRLF terminators do not leak into headers or values"""
    parser = DelimitedRecordParser()
    rows = parser.feed("\ufeffVoterId,FirstName\r\nV1,Ann\r\n".encode("utf-8"))
    assert parser.headers == ["VoterId", "FirstName"]
    assert parser.delimiter == ","
    assert _values(rows) == [["V1", "Ann"]]
    assert rows[0].line_number == 1


def test_tab_delimited_file():
    parser = DelimitedRecordParser()
    rows = parser.feed(b"VoterId\tCity\nV1\tSt. Paul, MN\n")
    assert parser.delimiter == "\t"
    assert _values(rows) == [["V1", "St. Paul, MN"]]


def test_line_split_across_chunks():
    parser = DelimitedRecordParser()
    assert parser.feed(b"VoterId,LastName\nV1,Le") == []
    rows = parser.feed(b"e\nV2,Ng\n")
    assert _values(rows) == [["V1", "Lee"], ["V2", "Ng"]]


def test_multibyte_character_split_across_chunks():
    """A UTF-8 sequence cut between chunks is decoded intact"""
    data = "VoterId,FirstName\nV1,Zoë\n".encode("utf-8")
    cut = data.index(b"\xc3") + 1
    parser = DelimitedRecordParser()
    rows = parser.feed(data[:cut]) + parser.feed(data[cut:])
    assert _values(rows) == [["V1", "Zoë"]]


def test_trailing_line_without_newline_is_flushed():
    parser = DelimitedRecordParser()
    rows = parser.feed(b"VoterId,LastName\nV1,Lee\nV2,Ng")
    assert _values(rows) == [["V1", "Lee"]]
    tail = parser.flush()
    assert _values(tail) == [["V2", "Ng"]]
    assert tail[0].line_number == 2


def test_blank_lines_are_ignored():
    parser = DelimitedRecordParser()
    rows = parser.feed(b"VoterId\n\nV1\n   \nV2\n")
    assert _values(rows) == [["V1"], ["V2"]]
    assert [row.line_number for row in rows] == [1, 2]


def test_malformed_row_is_reported_and_parsing_continues():
    parser = DelimitedRecordParser()
    rows = parser.feed(b'VoterId,LastName\nV1,"Lee\nV2,Ng\n')
    assert rows[0].values is None
    assert isinstance(rows[0].error, MalformedRowError)
    assert rows[0].error.row == 1
    assert rows[1].values == ["V2", "Ng"]


@pytest.mark.asyncio
async def test_iter_rows_over_async_chunks():
    async def chunks():
        yield b"VoterId,FirstName\nV1,"
        yield b"Ann\nV2,Bo"

    parser = DelimitedRecordParser()
    rows = [row async for row in iter_rows(chunks(), parser)]
    assert parser.headers == ["VoterId", "FirstName"]
    assert _values(rows) == [["V1", "Ann"], ["V2", "Bo"]]


def test_preview_drops_truncated_last_line():
    result = preview(b"VoterId,LastName\nV1,Lee\nV2,Ng\nV3,Tr", max_rows=5)
    assert result.headers == ["VoterId", "LastName"]
    assert result.sample_rows == [["V1", "Lee"], ["V2", "Ng"]]


def test_preview_complete_file_and_row_limit():
    data = b"VoterId\nV1\nV2\nV3"
    assert preview(data, max_rows=5, complete=True).sample_rows == [["V1"], ["V2"], ["V3"]]
    assert preview(data, max_rows=2, complete=True).sample_rows == [["V1"], ["V2"]]


def test_preview_header_only():
    result = preview(b"VoterId,FirstName")
    assert result.headers == ["VoterId", "FirstName"]
    assert result.sample_rows == []


def test_undecodable_bytes_are_flagged():
    parser = DelimitedRecordParser()
    rows = parser.feed(b"VoterId,FirstName\nV1,Jos\xe9\nV2,Ann\n")
    assert rows[0].values == ["V1", "Jos\ufffd"]
    assert rows[0].replaced_characters is True
    assert rows[1].replaced_characters is False


def test_parser_decodes_declared_encoding():
    parser = DelimitedRecordParser(encoding="cp1252")
    rows = parser.feed(b"VoterId,FirstName\nV1,Jos\xe9\n")
    assert rows[0].values == ["V1", "José"]
    assert rows[0].replaced_characters is False


def test_preview_with_encoding():
    result = preview(b"VoterId,City\nV1,M\xfcnster\n", encoding="latin-1")
    assert result.sample_rows == [["V1", "Münster"]]


def test_normalize_encoding():
    assert normalize_encoding(" UTF8 ") == "utf-8"
    assert normalize_encoding("latin1") == "iso8859-1"
    with pytest.raises(LookupError):
        normalize_encoding("not-a-codec")
