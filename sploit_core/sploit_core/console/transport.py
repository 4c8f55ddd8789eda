"""
msfrpcd client.

msfrpcd speaks MessagePack over HTTP POST: the body is a packed array
[method, token, *args] and the reply is a packed map. Failures come back as
{"error": true, "error_class": ..., "error_message": ...}.

Only the calls the daemon needs are wrapped: token bootstrap and the
console primitives (create/read/write/destroy).
"""

from __future__ import annotations
import logging
import socket
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import msgpack  # type: ignore
import requests

from ..errors import RpcAuthError, TransportError
from ..utils.retry import RPC_STARTUP_POLICY, RetryPolicy

logger = logging.getLogger('sploit.console.transport')


@dataclass
class ConsoleRead:
    text: str
    busy: bool
    prompt: str = ""


class ConsoleTransport(Protocol):
    def open(self) -> str: ...

    def read(self, session_id: str) -> ConsoleRead: ...

    def write(self, session_id: str, text: str) -> None: ...

    def destroy(self, session_id: str) -> None: ...


class MsfRpcClient:
    """One requests.Session shared by all jobs; the token is set once during bootstrap."""

    def __init__(self, url: str, timeout: float = 30.0, verify_ssl: bool = False,
                 session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.token: Optional[str] = None
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "binary/message-pack"})

    def call(self, method: str, *args: Any, auth: bool = True) -> Dict[str, Any]:
        params: List[Any] = [method]
        if auth:
            if not self.token:
                raise TransportError(f"{method}: no auth token, call login first")
            params.append(self.token)
        params.extend(args)
        try:
            resp = self._http.post(
                self.url,
                data=msgpack.packb(params, use_bin_type=True),
                timeout=self.timeout,
                verify=self.verify_ssl,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method}: request failed: {e}") from e
        try:
            body = msgpack.unpackb(resp.content, raw=False, unicode_errors="replace")
        except (ValueError, msgpack.ExtraData, msgpack.FormatError, msgpack.StackError) as e:
            raise TransportError(f"{method}: undecodable reply (HTTP {resp.status_code}): {e}") from e
        if not isinstance(body, dict):
            raise TransportError(f"{method}: unexpected reply {body!r}")
        if body.get("error"):
            raise TransportError(
                f"{method}: {body.get('error_class', 'Error')}: {body.get('error_message', '')}".rstrip()
            )
        if resp.status_code != 200:
            raise TransportError(f"{method}: HTTP {resp.status_code}")
        return body

    # Token handling

    def login(self, user: str, password: str) -> str:
        body = self.call("auth.login", user, password, auth=False)
        if body.get("result") != "success" or not body.get("token"):
            raise RpcAuthError(f"auth.login rejected for user {user}")
        self.token = str(body["token"])
        return self.token

    def token_add(self, token: str) -> None:
        self.call("auth.token_add", token)

    def token_remove(self, token: str) -> None:
        self.call("auth.token_remove", token)

    def token_list(self) -> List[str]:
        return list(self.call("auth.token_list").get("tokens", []))

    # ConsoleTransport

    def open(self) -> str:
        body = self.call("console.create")
        if "id" not in body:
            raise TransportError(f"console.create: no console id in {body!r}")
        return str(body["id"])

    def read(self, session_id: str) -> ConsoleRead:
        body = self.call("console.read", session_id)
        return ConsoleRead(
            text=body.get("data") or "",
            busy=bool(body.get("busy")),
            prompt=body.get("prompt") or "",
        )

    def write(self, session_id: str, text: str) -> None:
        self.call("console.write", session_id, text)

    def destroy(self, session_id: str) -> None:
        body = self.call("console.destroy", session_id)
        if body.get("result") not in (None, "success"):
            raise TransportError(f"console.destroy {session_id}: {body!r}")


def wait_for_listener(host: str, port: int, policy: RetryPolicy = RPC_STARTUP_POLICY) -> None:
    """Block until something accepts TCP connections on host:port."""

    @policy.retry()
    def _connect() -> None:
        with socket.create_connection((host, port), timeout=3):
            pass

    try:
        _connect()
    except OSError as e:
        raise TransportError(f"msfrpcd never came up on {host}:{port}: {e}") from e
    logger.debug(f"msfrpcd is listening on {host}:{port}")


def bootstrap_token(client: MsfRpcClient, user: str, password: str) -> str:
    """
    Trade the temporary login token for a permanent one.

    auth.login hands out a TEMP token that expires; a PERM token is added,
    made current, and the TEMP one is removed.
    """
    try:
        temp = client.login(user, password)
        logger.debug(f"Logged into the MSF API, got temporary auth token {temp}")
        perm = temp.replace("TEMP", "PERM")
        client.token_add(perm)
        client.token = perm
        logger.debug(f"Added permanent auth token {perm}")
        client.token_remove(temp)
        logger.debug(f"Removed temporary auth token {temp}")
        logger.debug(f"Current token list: {client.token_list()}")
    except RpcAuthError:
        raise
    except TransportError as e:
        raise RpcAuthError(f"token bootstrap failed: {e}") from e
    return perm
