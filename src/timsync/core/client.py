import logging
import threading
from enum import Enum
from typing import Any

import requests
from requests.cookies import RequestsCookieJar
from pydantic import BaseModel

from ..config import Target
from ..errors import ItemNotFound, RemoteOperationError

logger = logging.getLogger(__name__)

XSRF_COOKIE = "XSRF-TOKEN"


class ItemType(str, Enum):
    """TIM item type."""

    FOLDER = "folder"
    DOCUMENT = "document"


class RemoteNode(BaseModel):
    """One item of the remote TIM tree.

    Attributes:
        id: Server-assigned item id.
        kind: Folder or document.
        path: Full remote path, e.g. ``kurssit/tie/kurssi/intro``.
        title: Human-readable title.
        settings: Persisted document settings (empty for folders).
    """

    id: int
    kind: ItemType
    path: str
    title: str
    settings: dict[str, Any] = {}

    model_config = {"frozen": True}


class TimClient:
    """Blocking TIM API client on top of ``requests``.

    Each worker thread gets its own ``requests.Session``; all sessions share
    one cookie jar, so a single :meth:`login` authenticates every thread.
    """

    def __init__(self, target: Target):
        self.target = target
        self.base_url = target.host.rstrip("/")
        self._thread_local = threading.local()
        self._cookies = RequestsCookieJar()
        self._xsrf_token = ""

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.cookies = self._cookies
        session.verify = not self.target.insecure
        session.headers["Referer"] = self.base_url
        return session

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint}"

    def _request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        target: str,
        **kwargs: Any,
    ) -> requests.Response:
        """Send a request to a TIM endpoint.

        Transport errors and non-2xx responses are raised as
        ``RemoteOperationError``; a 404 is raised as ``ItemNotFound``.
        """
        headers = kwargs.pop("headers", {})
        if self._xsrf_token:
            headers["X-XSRF-TOKEN"] = self._xsrf_token
        session = self._get_session()
        try:
            response = session.request(
                method,
                self._url(endpoint),
                headers=headers,
                timeout=(10, 60),
                **kwargs,
            )
        except requests.RequestException as exc:
            raise RemoteOperationError(operation, target, str(exc)) from exc

        if response.status_code == 404:
            raise ItemNotFound(target, "HTTP 404", operation)
        if not response.ok:
            raise RemoteOperationError(
                operation,
                target,
                f"HTTP {response.status_code}: {response.text[:200]}",
            )
        return response

    @staticmethod
    def _json(response: requests.Response, operation: str, target: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteOperationError(
                operation, target, "response is not valid JSON"
            ) from exc

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def refresh_xsrf_token(self) -> str:
        """Fetch the XSRF token cookie the API expects on mutating calls."""
        self._request("GET", "", "refresh_xsrf_token", self.base_url)
        token = self._cookies.get(XSRF_COOKIE)
        if not token:
            raise RemoteOperationError(
                "refresh_xsrf_token", self.base_url, "no XSRF token cookie"
            )
        self._xsrf_token = token
        return token

    def login(self) -> None:
        """Log in with the target's username and TIM password."""
        if not self._xsrf_token:
            self.refresh_xsrf_token()
        try:
            self._request(
                "POST",
                "emailLogin",
                "login",
                self.target.username,
                data={
                    "email": self.target.username,
                    "password": self.target.password,
                    "add_user": "false",
                },
            )
        except ItemNotFound as exc:
            raise RemoteOperationError(
                "login", self.target.username, exc.reason
            ) from exc
        logger.info(
            "Logged in to %s as %s", self.base_url, self.target.username
        )

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def get_item_info(self, path: str) -> RemoteNode:
        """
        Get information about a document or folder.

        Raises:
            ItemNotFound: If no item exists at ``path``.
        """
        response = self._request(
            "GET", f"itemInfo/{path}", "get_item_info", path
        )
        data = self._json(response, "get_item_info", path)
        return _node_from_item(data)

    def list_tree(self, root: str) -> list[RemoteNode]:
        """
        List every item below ``root`` recursively, with document settings.

        Raises:
            ItemNotFound: If ``root`` does not exist.
        """
        response = self._request(
            "GET",
            "getItems",
            "list_tree",
            root,
            params={"folder": root, "recursive": "true", "settings": "true"},
        )
        items = self._json(response, "list_tree", root)
        if not isinstance(items, list):
            raise RemoteOperationError(
                "list_tree", root, "expected a list of items"
            )
        return [_node_from_item(item) for item in items]

    def create_item(self, kind: ItemType, path: str, title: str) -> RemoteNode:
        """
        Create a document or folder and return its item info.
        """
        self._request(
            "POST",
            "createItem",
            "create_item",
            path,
            data={
                "item_path": path,
                "item_title": title,
                "item_type": ItemType(kind).value,
            },
        )
        logger.debug("Created %s %s", ItemType(kind).value, path)
        return self.get_item_info(path)

    def update_settings(self, doc_id: int, settings: dict[str, Any]) -> None:
        """
        Merge ``settings`` into the document's persisted settings.
        """
        self._request(
            "PUT",
            f"docSettings/{doc_id}",
            "update_settings",
            str(doc_id),
            json={"settings": settings},
        )

    def set_title(self, item_id: int, title: str) -> None:
        self._request(
            "PUT",
            f"changeTitle/{item_id}",
            "set_title",
            str(item_id),
            json={"new_title": title},
        )

    def move_item(self, item_id: int, path: str, title: str) -> None:
        """
        Move/rename an item to ``path`` and set its title.
        """
        self._request(
            "PUT",
            f"rename/{item_id}",
            "move_item",
            path,
            json={"new_name": path},
        )
        self.set_title(item_id, title)

    def delete_item(self, item_id: int) -> None:
        self._request(
            "DELETE", f"documents/{item_id}", "delete_item", str(item_id)
        )

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def download_markdown(self, doc_id: int) -> str:
        """
        Download the full markdown of a document.
        """
        response = self._request(
            "GET", f"download/{doc_id}", "download_markdown", str(doc_id)
        )
        return response.text

    def upload_markdown(self, doc_id: int, text: str, original: str) -> None:
        """
        Replace the document's markdown.

        Args:
            doc_id: Target document id.
            text: New full markdown.
            original: Markdown the replacement was computed against.
        """
        self._request(
            "POST",
            f"update/{doc_id}",
            "upload_markdown",
            str(doc_id),
            json={"fulltext": text, "original": original},
        )


def _node_from_item(data: dict[str, Any]) -> RemoteNode:
    """Build a ``RemoteNode`` from an ``itemInfo``/``getItems`` entry.

    Accepts both the ``location`` + ``short_name`` and the ``path`` shape.
    """
    if "path" in data:
        path = data["path"]
    else:
        location = data.get("location", "")
        path = f"{location}/{data['short_name']}" if location else data["short_name"]

    if "type" in data:
        kind = ItemType(data["type"])
    else:
        kind = ItemType.FOLDER if data.get("isFolder") else ItemType.DOCUMENT

    return RemoteNode(
        id=int(data["id"]),
        kind=kind,
        path=path.strip("/"),
        title=data.get("title", ""),
        settings=data.get("settings") or {},
    )
