"""getProgramAccounts over JSON-RPC."""

from __future__ import annotations

import base64
import itertools
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from acctmap.core.match import Memcmp

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised when the RPC node cannot be reached or returns an error."""


class FiltersUnsupported(TransportError):
    """Raised when the node refuses the requested remote filters."""


@dataclass(frozen=True)
class FetchedAccount:
    address: str
    data: bytes


class Transport(Protocol):
    def fetch_program_accounts(
        self, program_id: str, filters: Sequence[Memcmp]
    ) -> Sequence[FetchedAccount]: ...


def memcmp_param(f: Memcmp) -> dict[str, Any]:
    return {
        "memcmp": {
            "offset": f.offset,
            "bytes": base64.b64encode(f.data).decode("ascii"),
            "encoding": "base64",
        }
    }


class RpcTransport:
    """Blocking JSON-RPC client for a ledger node."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 60.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> RpcTransport:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            raise TransportError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise TransportError(f"{method}: response is not JSON") from e

        error = body.get("error") if isinstance(body, dict) else None
        if error is not None:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            if "filter" in message.lower():
                raise FiltersUnsupported(f"{method}: {message}")
            raise TransportError(f"{method}: {message}")
        if not isinstance(body, dict) or "result" not in body:
            raise TransportError(f"{method}: malformed response")
        return body["result"]

    def fetch_program_accounts(
        self, program_id: str, filters: Sequence[Memcmp]
    ) -> list[FetchedAccount]:
        config: dict[str, Any] = {"encoding": "base64"}
        if filters:
            config["filters"] = [memcmp_param(f) for f in filters]
        logger.info("getProgramAccounts %s with %d filter(s)", program_id, len(filters))
        result = self.call("getProgramAccounts", [program_id, config])
        if isinstance(result, dict) and "value" in result:
            # withContext responses wrap the list
            result = result["value"]
        if not isinstance(result, list):
            raise TransportError("getProgramAccounts: result is not a list")

        out: list[FetchedAccount] = []
        for item in result:
            try:
                data_field = item["account"]["data"]
                encoded = data_field[0] if isinstance(data_field, list) else data_field
                out.append(FetchedAccount(item["pubkey"], base64.b64decode(encoded)))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise TransportError(f"getProgramAccounts: malformed account entry: {e}") from e
        logger.debug("fetched %d account(s)", len(out))
        return out
