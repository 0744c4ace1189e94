"""Authenticated Graph session lifecycle."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from ..config import GraphConfig
from ..errors import DependencyError
from .graph import GraphClient

LOGGER = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"

AppFactory = Callable[[GraphConfig], Any]


def _msal_app(config: GraphConfig) -> Any:
    try:
        import msal
    except ImportError as exc:
        raise DependencyError(
            "The 'msal' package is required to authenticate against Microsoft Graph. "
            "Install with `pip install devicegroupctl`."
        ) from exc
    return msal.ConfidentialClientApplication(
        config.client_id,
        authority=config.authority,
        client_credential=config.client_secret,
    )


@dataclass(slots=True)
class GraphSession:
    """Open and close an app-only Graph session.

    ``connect`` validates credentials and acquires a first token so that
    authentication problems surface before any directory query. Tokens are
    cached by MSAL and refreshed transparently on later requests.
    """

    config: GraphConfig
    app_factory: AppFactory = _msal_app
    client_factory: Callable[..., GraphClient] = GraphClient
    _app: Any = field(default=None, init=False)
    _client: GraphClient | None = field(default=None, init=False)

    def connect(self) -> GraphClient:
        """Authenticate and return a ready :class:`GraphClient`."""
        if self._client is not None:
            return self._client
        missing = self.config.missing_credentials()
        if missing:
            raise DependencyError(
                "Graph credentials are not configured: " + ", ".join(missing) + "."
            )
        self._app = self.app_factory(self.config)
        self.access_token()
        self._client = self.client_factory(
            token_source=self.access_token,
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            retries=self.config.retries,
            page_size=self.config.page_size,
        )
        LOGGER.debug("Graph session established for tenant %s", self.config.tenant_id)
        return self._client

    def access_token(self) -> str:
        """Return a bearer token for the Graph scope."""
        if self._app is None:
            raise DependencyError("Graph session is not connected.")
        try:
            result = self._app.acquire_token_for_client(scopes=[GRAPH_SCOPE])
        except Exception as exc:  # noqa: BLE001
            raise DependencyError(f"Failed to acquire a Graph access token: {exc}") from exc
        token = result.get("access_token") if isinstance(result, dict) else None
        if not token:
            description = ""
            if isinstance(result, dict):
                description = str(result.get("error_description") or result.get("error") or "")
            raise DependencyError(
                f"Failed to acquire a Graph access token: {description or 'no token returned'}"
            )
        return str(token)

    def close(self) -> None:
        """Release the session; failures are logged and never raised."""
        client, self._client = self._client, None
        self._app = None
        if client is None:
            return
        try:
            client.close()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Graph session teardown failed: %s", exc)

    def __enter__(self) -> GraphClient:
        return self.connect()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["GRAPH_SCOPE", "GraphSession"]
