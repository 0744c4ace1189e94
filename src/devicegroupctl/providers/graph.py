"""Microsoft Graph client for the inventory and identity directories."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, cast
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import DeviceGroupError, DirectoryError

LOGGER = logging.getLogger(__name__)

MANAGED_DEVICE_FIELDS = (
    "id",
    "managedDeviceName",
    "deviceName",
    "manufacturer",
    "azureADDeviceId",
    "userPrincipalName",
    "userId",
)
DEVICE_FIELDS = ("id", "deviceId", "displayName")
GROUP_FIELDS = (
    "id",
    "displayName",
    "description",
    "groupTypes",
    "mailEnabled",
    "securityEnabled",
)
_REDACTED_HEADERS = {"authorization"}

TokenSource = Callable[[], str]


def escape_odata_literal(value: str) -> str:
    """Return *value* safe to embed inside a single-quoted OData literal."""
    return value.replace("'", "''")


class DirectoryClient(Protocol):
    """Read/write surface the workflow components depend on."""

    def list_managed_devices(self, odata_filter: str) -> list[dict[str, Any]]: ...

    def get_managed_device(self, device_id: str) -> dict[str, Any] | None: ...

    def list_devices(self, odata_filter: str) -> list[dict[str, Any]]: ...

    def list_groups(self, odata_filter: str) -> list[dict[str, Any]]: ...

    def add_group_member(self, group_id: str, directory_object_id: str) -> None: ...


@dataclass(slots=True)
class GraphClient:
    """Thin wrapper around the Graph REST endpoints used by the workflow.

    Reads page through ``@odata.nextLink``; transient failures (429/5xx) on
    reads are retried by the mounted ``urllib3`` policy. The single write,
    :meth:`add_group_member`, is never retried.
    """

    token_source: TokenSource
    base_url: str = "https://graph.microsoft.com/v1.0"
    timeout: float = 30.0
    retries: int = 3
    page_size: int = 100
    session: requests.Session = field(default_factory=requests.Session)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        retry = Retry(
            total=self.retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            respect_retry_after_header=True,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update({"Accept": "application/json"})

    # ------------------------------------------------------------------
    # Inventory directory
    # ------------------------------------------------------------------
    def list_managed_devices(self, odata_filter: str) -> list[dict[str, Any]]:
        """Return managed devices matching *odata_filter*."""
        return self._paginate(
            "deviceManagement/managedDevices",
            {"$filter": odata_filter, "$select": ",".join(MANAGED_DEVICE_FIELDS)},
        )

    def get_managed_device(self, device_id: str) -> dict[str, Any] | None:
        """Return one managed device by inventory identifier, or ``None`` on 404."""
        path = f"deviceManagement/managedDevices/{quote(device_id, safe='')}"
        response = self._request(
            "GET",
            path,
            params={"$select": ",".join(MANAGED_DEVICE_FIELDS)},
            allow_not_found=True,
        )
        if response is None:
            return None
        return self._json(response, path)

    # ------------------------------------------------------------------
    # Identity directory
    # ------------------------------------------------------------------
    def list_devices(self, odata_filter: str) -> list[dict[str, Any]]:
        """Return identity-directory device objects matching *odata_filter*."""
        return self._paginate(
            "devices",
            {"$filter": odata_filter, "$select": ",".join(DEVICE_FIELDS)},
        )

    def list_groups(self, odata_filter: str) -> list[dict[str, Any]]:
        """Return groups matching *odata_filter*."""
        return self._paginate(
            "groups",
            {"$filter": odata_filter, "$select": ",".join(GROUP_FIELDS)},
        )

    def add_group_member(self, group_id: str, directory_object_id: str) -> None:
        """Add *directory_object_id* to *group_id* via a ``members/$ref`` reference."""
        path = f"groups/{quote(group_id, safe='')}/members/$ref"
        body = {"@odata.id": f"{self.base_url}/directoryObjects/{directory_object_id}"}
        self._request("POST", path, json_body=body)

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    # ------------------------------------------------------------------
    def _paginate(self, path: str, params: Mapping[str, str]) -> list[dict[str, Any]]:
        query = dict(params)
        query["$top"] = str(self.page_size)
        items: list[dict[str, Any]] = []
        url: str | None = self._url(path)
        while url is not None:
            response = cast(requests.Response, self._request("GET", url, params=query))
            payload = self._json(response, path)
            value = payload.get("value", [])
            if not isinstance(value, list):
                raise DirectoryError(f"Unexpected payload for {path}: 'value' is not a list.")
            items.extend(item for item in value if isinstance(item, dict))
            next_link = payload.get("@odata.nextLink")
            url = next_link if isinstance(next_link, str) and next_link else None
            # nextLink already carries the original query.
            query = {}
        return items

    def _url(self, path: str) -> str:
        if path.startswith(("https://", "http://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        allow_not_found: bool = False,
    ) -> requests.Response | None:
        url = self._url(path)
        try:
            token = self.token_source()
        except DeviceGroupError as exc:
            raise DirectoryError(
                f"Graph request {method} {path} failed: no access token.",
                detail=str(exc),
            ) from exc
        headers = {"Authorization": f"Bearer {token}"}
        if method == "GET":
            # Required for contains() and for filters on directory device/group properties.
            headers["ConsistencyLevel"] = "eventual"
        safe_headers = {
            key: ("***REDACTED***" if key.lower() in _REDACTED_HEADERS else value)
            for key, value in headers.items()
        }
        LOGGER.debug("Graph %s %s params=%s headers=%s", method, url, params, safe_headers)
        try:
            response = self.session.request(
                method,
                url,
                params=dict(params) if params else None,
                json=json_body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DirectoryError(f"Graph request {method} {path} failed: {exc}") from exc

        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise _directory_error(method, path, response)
        return response

    @staticmethod
    def _json(response: requests.Response, path: str) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise DirectoryError(f"Graph returned invalid JSON for {path}.") from exc
        if not isinstance(payload, dict):
            raise DirectoryError(f"Graph returned an unexpected payload for {path}.")
        return payload


def _directory_error(method: str, path: str, response: requests.Response) -> DirectoryError:
    code: str | None = None
    detail: str | None = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            raw_code = error.get("code")
            raw_message = error.get("message")
            code = str(raw_code) if raw_code else None
            detail = str(raw_message) if raw_message else None
    if detail is None:
        detail = (response.text or "").strip()[:500] or None
    LOGGER.debug("Graph error %s %s -> %s: %s", method, path, response.status_code, detail)
    return DirectoryError(
        f"Graph request {method} {path} failed.",
        status_code=response.status_code,
        code=code,
        detail=detail,
    )


__all__ = ["DirectoryClient", "GraphClient", "TokenSource", "escape_odata_literal"]
