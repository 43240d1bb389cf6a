"""Tests for the response materializer.

Each declared response type yields its own value: text, parsed JSON, an
lxml document, exactly-sized bytes or a Blob.
"""

import struct

import pytest

from tests.mock_server import FLOAT_FIXTURE, generate_cases_html
from xmlhttprequest.common.materializer import (
    concat,
    materialize_buffer,
    materialize_stream,
    parse_document,
    parse_json,
)
from xmlhttprequest.data_types import Blob, ResponseType


class TestConcat:
    """Tests for concat."""

    def test_exact_size(self):
        """The result shall be exactly the summed chunk length."""
        chunks = [b"abc", b"", b"defgh", bytearray(b"ij")]
        result = concat(chunks)
        assert result == b"abcdefghij"
        assert len(result) == 10
        assert isinstance(result, bytes)

    def test_empty(self):
        """No chunks shall yield empty bytes."""
        assert concat([]) == b""


class TestParsers:
    """Tests for parse_json and parse_document."""

    def test_parse_json(self):
        """Valid JSON shall be parsed."""
        assert parse_json('{"docket": "BCC-2024-001"}') == {
            "docket": "BCC-2024-001"
        }

    def test_parse_invalid_json_returns_none(self, caplog):
        """Invalid JSON shall yield None and log a warning."""
        with caplog.at_level("WARNING"):
            assert parse_json("not json") is None
        assert "not valid JSON" in caplog.text

    def test_parse_xml_document(self):
        """Well-formed XML shall be parsed by the XML parser."""
        root = parse_document("<cases><case docket='1'/></cases>")
        assert root.tag == "cases"
        assert root.find("case").get("docket") == "1"

    def test_parse_html_fallback(self):
        """Markup that is not well-formed XML shall fall back to HTML."""
        root = parse_document(generate_cases_html())
        assert root.tag == "html"
        assert root.xpath("//h1/text()") == ["Bug Civil Court"]
        assert len(root.xpath("//td[@class='docket']")) == 3

    def test_parse_empty_document(self):
        """Blank text shall yield None."""
        assert parse_document("   ") is None


class TestMaterializeBuffer:
    """Tests for materialize_buffer."""

    def test_text(self):
        """Text types shall decode the body as UTF-8."""
        result = materialize_buffer(ResponseType.TEXT, "Café".encode())
        assert result.response == "Café"
        assert result.response_text == "Café"
        assert result.response_xml is None

    def test_default_is_text(self):
        """The default type shall behave like text."""
        result = materialize_buffer(ResponseType.DEFAULT, b"hello")
        assert result.response == "hello"

    def test_json(self):
        """JSON shall be parsed; response_text stays empty."""
        result = materialize_buffer(ResponseType.JSON, b'[1, 2, 3]')
        assert result.response == [1, 2, 3]
        assert result.response_text == ""

    def test_document(self):
        """Documents shall populate response_xml."""
        result = materialize_buffer(ResponseType.DOCUMENT, b"<a><b/></a>")
        assert result.response_xml.tag == "a"
        assert result.response == b""

    def test_arraybuffer_exact_bytes(self):
        """Array buffers shall hold exactly the payload bytes."""
        result = materialize_buffer(ResponseType.ARRAYBUFFER, FLOAT_FIXTURE)
        assert result.response == FLOAT_FIXTURE
        assert len(result.response) == 16
        assert struct.unpack("<4f", result.response) == (1.0, 5.0, 6.0, 7.0)

    def test_blob(self):
        """Blobs shall wrap the bytes with the content type."""
        result = materialize_buffer(
            ResponseType.BLOB, b"\x00\x01", "application/octet-stream"
        )
        assert result.response == Blob(b"\x00\x01", "application/octet-stream")
        assert result.response.size == 2


class TestMaterializeStream:
    """Tests for materialize_stream."""

    def test_text_uses_accumulated_text(self):
        """Text types shall use the incrementally decoded text."""
        result = materialize_stream(ResponseType.TEXT, "streamed", [])
        assert result.response == "streamed"

    def test_binary_concatenates_chunks(self):
        """Binary types shall concatenate the collected chunks."""
        chunks = [FLOAT_FIXTURE[:5], FLOAT_FIXTURE[5:11], FLOAT_FIXTURE[11:]]
        result = materialize_stream(ResponseType.ARRAYBUFFER, "", chunks)
        assert result.response == FLOAT_FIXTURE

    @pytest.mark.parametrize(
        "response_type", [ResponseType.ARRAYBUFFER, ResponseType.BLOB]
    )
    def test_binary_types_have_no_text(self, response_type):
        """Binary types shall leave response_text empty."""
        result = materialize_stream(response_type, "", [b"x"])
        assert result.response_text == ""
