"""
HTTP client for a KHM server.
"""
import logging
import socket
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from khm.core.exceptions import KHMError
from khm.schemas import (
    BulkResponse,
    DeleteResponse,
    FlowStatistics,
    LifecycleResponse,
    SshKeyEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ApiClientError(KHMError):
    """A request to the server failed or was answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class SubmitResult:
    """Server's answer to a key submission."""
    keys: List[SshKeyEntry]
    total: Optional[int] = None
    inserted: Optional[int] = None
    unchanged: Optional[int] = None
    ignored_deprecated: Optional[int] = None


def parse_basic_auth(auth_string: str) -> Optional[Tuple[str, str]]:
    """Split ``user:password``. Empty input means no authentication."""
    if not auth_string:
        return None
    username, sep, password = auth_string.partition(":")
    if not sep:
        raise ValueError("Invalid auth string format. Expected 'username:password'")
    return username, password


def _int_header(response: httpx.Response, name: str) -> Optional[int]:
    value = response.headers.get(name)
    return int(value) if value is not None and value.isdigit() else None


class KhmApiClient:
    """
    Thin wrapper over the server's HTTP API.

    Every request carries a bounded timeout and an ``X-Client-Hostname`` header.
    Transport failures and non-2xx responses raise ``ApiClientError``.
    """

    def __init__(
        self,
        base_url: str,
        basic_auth: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        auth = parse_basic_auth(basic_auth)
        headers = {"X-Client-Hostname": socket.gethostname()}

        if client is None:
            client = httpx.Client(base_url=self.base_url, timeout=timeout, auth=auth, headers=headers)
        else:
            client.headers.update(headers)
            if auth:
                client.auth = auth
        self._client = client

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ApiClientError(f"Network error: {e}") from e

        if response.is_error:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            logger.error(f"{method} {path} returned {response.status_code}: {detail}")
            raise ApiClientError(
                f"Server returned {response.status_code}: {detail}",
                status_code=response.status_code
            )
        return response

    def _keys_path(self, flow: str, *parts: str) -> str:
        segments = [quote(flow, safe=""), "keys"] + [quote(part, safe="") for part in parts]
        return "/" + "/".join(segments)

    def list_flows(self) -> List[str]:
        return self._request("GET", "/api/flows").json()

    def version(self) -> str:
        return self._request("GET", "/api/version").json()["version"]

    def get_keys(self, flow: str, include_deprecated: bool = False) -> List[SshKeyEntry]:
        params = {"include_deprecated": "true"} if include_deprecated else None
        response = self._request("GET", self._keys_path(flow), params=params)
        keys = [SshKeyEntry.model_validate(item) for item in response.json()]
        logger.info(f"Received {len(keys)} keys from server for flow '{flow}'")
        return keys

    def submit_keys(self, flow: str, entries: Sequence[SshKeyEntry]) -> SubmitResult:
        """Send the full key set of this machine to ``flow``."""
        response = self._request(
            "POST",
            self._keys_path(flow),
            json=[entry.model_dump() for entry in entries]
        )
        result = SubmitResult(
            keys=[SshKeyEntry.model_validate(item) for item in response.json()],
            total=_int_header(response, "X-Keys-Total"),
            inserted=_int_header(response, "X-Keys-New"),
            unchanged=_int_header(response, "X-Keys-Unchanged"),
            ignored_deprecated=_int_header(response, "X-Keys-Ignored-Deprecated"),
        )
        logger.info(
            f"Keys successfully sent to server: total={result.total}, "
            f"new={result.inserted}, unchanged={result.unchanged}"
        )
        return result

    def deprecate(self, flow: str, server: str) -> LifecycleResponse:
        response = self._request("DELETE", self._keys_path(flow, server))
        return LifecycleResponse.model_validate(response.json())

    def restore(self, flow: str, server: str) -> LifecycleResponse:
        response = self._request("POST", self._keys_path(flow, server, "restore"))
        return LifecycleResponse.model_validate(response.json())

    def delete(self, flow: str, server: str) -> DeleteResponse:
        response = self._request("DELETE", self._keys_path(flow, server, "delete"))
        return DeleteResponse.model_validate(response.json())

    def bulk_deprecate(self, flow: str, servers: Sequence[str]) -> BulkResponse:
        response = self._request(
            "POST", f"/{quote(flow, safe='')}/bulk-deprecate", json={"servers": list(servers)}
        )
        return BulkResponse.model_validate(response.json())

    def bulk_restore(self, flow: str, servers: Sequence[str]) -> BulkResponse:
        response = self._request(
            "POST", f"/{quote(flow, safe='')}/bulk-restore", json={"servers": list(servers)}
        )
        return BulkResponse.model_validate(response.json())

    def statistics(self, flow: str) -> FlowStatistics:
        response = self._request("GET", f"/{quote(flow, safe='')}/statistics")
        return FlowStatistics.model_validate(response.json())
