from __future__ import annotations

import base64
from typing import Any

import pytest
import requests

from acctmap.core.match import Memcmp
from acctmap.core.transport import (
    FetchedAccount,
    FiltersUnsupported,
    RpcTransport,
    TransportError,
)

from conftest import PROGRAM_ID


class _Response:
    def __init__(self, body: Any, status: int = 200) -> None:
        self._body = body
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self) -> Any:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _Session:
    def __init__(self, response: _Response | Exception) -> None:
        self.response = response
        self.posts: list[dict[str, Any]] = []
        self.closed = False

    def post(self, url: str, json: Any = None, timeout: float | None = None) -> _Response:
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    def close(self) -> None:
        self.closed = True


def _entry(pubkey: str, data: bytes) -> dict[str, Any]:
    return {
        "pubkey": pubkey,
        "account": {
            "data": [base64.b64encode(data).decode("ascii"), "base64"],
            "lamports": 1,
            "owner": PROGRAM_ID,
            "executable": False,
        },
    }


def test_request_shape_and_decoding() -> None:
    session = _Session(_Response({"jsonrpc": "2.0", "id": 1, "result": [_entry("A", b"\x01\x02")]}))
    transport = RpcTransport("http://node", timeout=5, session=session)  # type: ignore[arg-type]
    out = transport.fetch_program_accounts(PROGRAM_ID, [Memcmp(0, b"\xff" * 8), Memcmp(72, b"\x01")])
    assert out == [FetchedAccount("A", b"\x01\x02")]

    sent = session.posts[0]
    assert sent["url"] == "http://node" and sent["timeout"] == 5
    assert sent["json"]["method"] == "getProgramAccounts"
    program, config = sent["json"]["params"]
    assert program == PROGRAM_ID
    assert config["encoding"] == "base64"
    assert config["filters"][1] == {
        "memcmp": {"offset": 72, "bytes": base64.b64encode(b"\x01").decode(), "encoding": "base64"}
    }


def test_no_filters_key_when_unfiltered() -> None:
    session = _Session(_Response({"result": []}))
    RpcTransport("http://node", session=session).fetch_program_accounts(PROGRAM_ID, [])  # type: ignore[arg-type]
    assert "filters" not in session.posts[0]["json"]["params"][1]


def test_with_context_result() -> None:
    body = {"result": {"context": {"slot": 1}, "value": [_entry("B", b"\x00")]}}
    transport = RpcTransport("http://node", session=_Session(_Response(body)))  # type: ignore[arg-type]
    assert transport.fetch_program_accounts(PROGRAM_ID, []) == [FetchedAccount("B", b"\x00")]


def test_rpc_error() -> None:
    body = {"error": {"code": -32010, "message": "excluded from account secondary indexes"}}
    transport = RpcTransport("http://node", session=_Session(_Response(body)))  # type: ignore[arg-type]
    with pytest.raises(TransportError) as ei:
        transport.fetch_program_accounts(PROGRAM_ID, [])
    assert not isinstance(ei.value, FiltersUnsupported)


def test_filter_error() -> None:
    body = {"error": {"code": -32602, "message": "Invalid param: too many filters provided"}}
    transport = RpcTransport("http://node", session=_Session(_Response(body)))  # type: ignore[arg-type]
    with pytest.raises(FiltersUnsupported):
        transport.fetch_program_accounts(PROGRAM_ID, [Memcmp(0, b"x")])


def test_http_and_connection_errors() -> None:
    bad_status = RpcTransport("http://node", session=_Session(_Response({}, status=503)))  # type: ignore[arg-type]
    with pytest.raises(TransportError):
        bad_status.fetch_program_accounts(PROGRAM_ID, [])
    down = RpcTransport("http://node", session=_Session(requests.ConnectionError("refused")))  # type: ignore[arg-type]
    with pytest.raises(TransportError):
        down.fetch_program_accounts(PROGRAM_ID, [])


def test_malformed_entries() -> None:
    transport = RpcTransport("http://node", session=_Session(_Response({"result": [{"pubkey": "A"}]})))  # type: ignore[arg-type]
    with pytest.raises(TransportError):
        transport.fetch_program_accounts(PROGRAM_ID, [])
    not_json = RpcTransport("http://node", session=_Session(_Response(ValueError("bad json"))))  # type: ignore[arg-type]
    with pytest.raises(TransportError):
        not_json.fetch_program_accounts(PROGRAM_ID, [])


def test_context_manager_closes_session() -> None:
    session = _Session(_Response({"result": []}))
    with RpcTransport("http://node", session=session):  # type: ignore[arg-type]
        pass
    assert session.closed
