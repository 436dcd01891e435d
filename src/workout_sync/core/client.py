import logging
import threading
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import requests

from ..config import Config
from ..sync.errors import RemoteTransportError

logger = logging.getLogger(__name__)

# Hosted document stores cap a single batched write at 500 operations.
MAX_BATCH_SIZE = 500


def _name(collection: Any) -> str:
    return getattr(collection, "value", collection)


class DocumentStoreClient:
    """HTTP client for the remote document store.

    Endpoints (relative to ``config.remote_url``)::

        GET  /collections/{collection}/documents?owner=&since=&pageToken=
        POST /collections/{collection}/documents:batchWrite

    Every request carries ``Authorization: Bearer <token>``.  Transport,
    HTTP and decoding failures are raised as ``RemoteTransportError``.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.remote_url.rstrip("/")
        self.batch_size = min(config.batch_size, MAX_BATCH_SIZE)

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Authorization"] = f"Bearer {self.config.api_token}"
        session.headers["Accept"] = "application/json"
        session.verify = not self.config.insecure
        return session

    def _collection_url(self, collection: Any) -> str:
        return f"{self.base_url}/collections/{_name(collection)}/documents"

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded JSON body."""
        session = self._get_session()
        try:
            response = session.request(
                method,
                url,
                timeout=(10, self.config.timeout_seconds),
                **kwargs,
            )
        except requests.RequestException as exc:
            raise RemoteTransportError(
                f"{method} {url} failed: {exc}"
            ) from exc

        if response.status_code in (401, 403):
            raise RemoteTransportError(
                f"{method} {url}: authentication rejected "
                f"(HTTP {response.status_code})"
            )
        if response.status_code == 429:
            raise RemoteTransportError(
                f"{method} {url}: quota exceeded (HTTP 429)"
            )
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise RemoteTransportError(f"{method} {url}: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteTransportError(
                f"{method} {url}: invalid JSON response"
            ) from exc

    def download(
        self,
        collection: Any,
        owner_id: str | None,
        since: datetime | None,
    ) -> list[dict[str, Any]]:
        """
        Fetch all documents of a collection, following page tokens.

        ``owner_id=None`` fetches an ownerless (global) collection.  With
        ``since``, only documents modified strictly after it are returned.
        """
        url = self._collection_url(collection)
        params: dict[str, str] = {}
        if owner_id is not None:
            params["owner"] = owner_id
        if since is not None:
            params["since"] = since.isoformat()

        documents: list[dict[str, Any]] = []
        while True:
            body = self._request("GET", url, params=params) or {}
            if not isinstance(body, dict):
                raise RemoteTransportError(
                    f"GET {url}: unexpected response shape"
                )
            documents.extend(body.get("documents", []))
            page_token = body.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.debug(
            "Fetched %d %s document(s) (since=%s)",
            len(documents),
            _name(collection),
            since.isoformat() if since else None,
        )
        return documents

    def upload(
        self,
        collection: Any,
        owner_id: str,
        documents: Sequence[dict[str, Any]],
    ) -> None:
        """
        Write documents in batches of at most ``batch_size``.

        Batches are sent in order; a failing batch aborts the rest.
        """
        url = f"{self._collection_url(collection)}:batchWrite"
        for start in range(0, len(documents), self.batch_size):
            chunk = list(documents[start : start + self.batch_size])
            self._request(
                "POST", url, json={"owner": owner_id, "documents": chunk}
            )
            logger.debug(
                "Wrote %d %s document(s)", len(chunk), _name(collection)
            )
