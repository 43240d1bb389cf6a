"""Build the typed response value for a declared response type.

Two entry points mirror the two ways a body arrives:

- ``materialize_stream`` for an asynchronous network transfer, where
  text-like types were decoded incrementally and binary types were kept as
  a list of chunks.
- ``materialize_buffer`` for a local file or a synchronous transfer, where
  the whole body is one buffer.

Binary responses are always exactly the size of the payload.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from lxml import etree
from lxml import html as lxml_html
from typing_extensions import assert_never

from xmlhttprequest.data_types import Blob, ResponseType

logger = logging.getLogger(__name__)


@dataclass
class MaterializedResponse:
    """The response fields of a request at DONE.

    Attributes:
        response: The typed value (str, parsed JSON, bytes, Blob).
        response_text: Decoded text for text types, empty otherwise.
        response_xml: Parsed document for ``document``, otherwise None.
    """

    response: Any = b""
    response_text: str = ""
    response_xml: Any = None


def concat(chunks: Sequence[bytes]) -> bytes:
    """Concatenate chunks into a buffer sized to their total length.

    The target is allocated once at the exact payload size and each chunk
    is copied into it, so transport buffers with slack capacity never leak
    into the result.
    """
    length = sum(len(chunk) for chunk in chunks)
    result = bytearray(length)
    offset = 0
    for chunk in chunks:
        result[offset : offset + len(chunk)] = chunk
        offset += len(chunk)
    return bytes(result)


def parse_json(text: str) -> Any:
    """Parse JSON text, returning None when it is invalid."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Response is not valid JSON: {e}")
        return None


def parse_document(text: str) -> Any:
    """Parse text into an lxml document.

    XML is tried first; markup that is not well-formed XML falls back to
    the HTML parser.

    Returns:
        The root element, or None when the text cannot be parsed.
    """
    if not text.strip():
        return None
    data = text.encode("utf-8")
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError:
        pass
    try:
        return lxml_html.document_fromstring(data)
    except (etree.ParserError, ValueError) as e:
        logger.warning(f"Response could not be parsed as a document: {e}")
        return None


def _binary(
    response_type: ResponseType, data: bytes, content_type: str
) -> MaterializedResponse:
    if response_type is ResponseType.BLOB:
        return MaterializedResponse(response=Blob(data, content_type))
    return MaterializedResponse(response=data)


def _from_text(response_type: ResponseType, text: str) -> MaterializedResponse:
    match response_type:
        case ResponseType.DEFAULT | ResponseType.TEXT:
            return MaterializedResponse(response=text, response_text=text)
        case ResponseType.JSON:
            return MaterializedResponse(response=parse_json(text))
        case ResponseType.DOCUMENT:
            return MaterializedResponse(
                response=b"", response_xml=parse_document(text)
            )
        case ResponseType.ARRAYBUFFER | ResponseType.BLOB:
            raise ValueError(f"{response_type.value} is not a text type")
        case _:
            assert_never(response_type)


def materialize_stream(
    response_type: ResponseType,
    text: str,
    chunks: Sequence[bytes],
    content_type: str = "",
) -> MaterializedResponse:
    """Materialize a body collected during an asynchronous transfer.

    Args:
        response_type: The declared response type.
        text: Accumulated decoded text (text-like types).
        chunks: Collected raw chunks (binary types).
        content_type: Response Content-Type, used for blobs.
    """
    if response_type.is_text:
        return _from_text(response_type, text)
    return _binary(response_type, concat(chunks), content_type)


def materialize_buffer(
    response_type: ResponseType,
    data: bytes,
    content_type: str = "",
) -> MaterializedResponse:
    """Materialize a body delivered as one complete buffer.

    Args:
        response_type: The declared response type.
        data: The full body.
        content_type: Response Content-Type, used for blobs.
    """
    if response_type.is_text:
        return _from_text(
            response_type, data.decode("utf-8", errors="replace")
        )
    return _binary(response_type, concat([data]), content_type)
