"""Files exchanged between the process bridge and its worker.

The request file carries the connection parameters and TLS materials. The
content file carries either a result envelope::

    {"err": null, "data": {"statusCode": 200, "reason": "OK",
                           "headers": {...}, "url": "...", "data": "..."}}

or ``ERROR_MARKER`` followed by a JSON failure description. Bodies travel
as text with one character per byte (latin-1), so binary payloads come back
byte for byte.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from xmlhttprequest.data_types import (
    ConnectionParams,
    RawResponse,
    TransportOptions,
)

ERROR_MARKER = "XMLHTTPREQUEST-ERROR:"

BODY_ENCODING = "latin-1"


class TLSMaterials(BaseModel):
    """TLS and transfer settings forwarded to the worker."""

    pfx: str | None = None
    cert: str | None = None
    key: str | None = None
    passphrase: str | None = None
    ca: str | None = None
    ciphers: str | None = None
    reject_unauthorized: bool = True
    auto_unref: bool = False
    max_redirects: int = 20


class BridgeRequest(BaseModel):
    """The request a worker performs."""

    scheme: str
    host: str
    port: int
    path: str
    method: str
    headers: dict[str, str]
    body: str | None = None
    tls: TLSMaterials = Field(default_factory=TLSMaterials)

    @classmethod
    def from_params(
        cls, params: ConnectionParams, options: TransportOptions
    ) -> BridgeRequest:
        return cls(
            scheme=params.scheme,
            host=params.host,
            port=params.port,
            path=params.path,
            method=params.method,
            headers=params.headers,
            body=params.body.decode(BODY_ENCODING)
            if params.body is not None
            else None,
            tls=TLSMaterials(**options.tls_payload()),
        )

    def to_params(self) -> ConnectionParams:
        return ConnectionParams(
            scheme=self.scheme,
            host=self.host,
            port=self.port,
            path=self.path,
            method=self.method,
            headers=dict(self.headers),
            body=self.body.encode(BODY_ENCODING)
            if self.body is not None
            else None,
        )

    def to_options(self) -> TransportOptions:
        return TransportOptions(**self.tls.model_dump())


class BridgeResponse(BaseModel):
    """A completed response as written by the worker."""

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(alias="statusCode")
    reason: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    url: str = ""
    data: str = ""

    @classmethod
    def from_raw(cls, raw: RawResponse) -> BridgeResponse:
        return cls(
            status_code=raw.status_code,
            reason=raw.reason,
            headers=raw.headers,
            url=raw.url,
            data=raw.body.decode(BODY_ENCODING),
        )

    def to_raw(self) -> RawResponse:
        return RawResponse(
            status_code=self.status_code,
            reason=self.reason,
            headers=dict(self.headers),
            body=self.data.encode(BODY_ENCODING),
            url=self.url,
        )


class BridgeResult(BaseModel):
    """Success envelope."""

    err: None = None
    data: BridgeResponse


class BridgeFailure(BaseModel):
    """Failure description following ``ERROR_MARKER``."""

    kind: str
    message: str
    url: str | None = None
