"""Concrete implementations for content catalogs."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings
from .errors import CatalogError
from .models import ContentRef

logger = logging.getLogger(__name__)

STATIC_APP_MODES = ("jupyter-static", "quarto-static", "rmd-static", "static")

TOKEN_EXCHANGE_FORM = {
    "grant_type": "urn:ietf:params:oauth:grant-type:token-exchange",
    "subject_token_type": "urn:posit:connect:user-session-token",
    "requested_token_type": "urn:posit:connect:api-key",
}


def is_chattable(item: Dict[str, Any]) -> bool:
    """Static, rendered content the caller can view and that is not a pin."""
    return (
        item.get("app_mode") in STATIC_APP_MODES
        and item.get("app_role") != "none"
        and item.get("content_category") != "pin"
    )


def parse_content(item: Dict[str, Any]) -> ContentRef:
    owner = item.get("owner") or {}
    return ContentRef(
        guid=item["guid"],
        name=item.get("name") or "",
        title=item.get("title") or None,
        owner=owner.get("username", ""),
        last_deployed_time=item.get("last_deployed_time"),
        content_url=item.get("content_url"),
        app_mode=item.get("app_mode"),
    )


class Catalog(ABC):
    """Interface for listing and resolving selectable content."""

    @abstractmethod
    def list_content(self) -> List[ContentRef]:
        """Lists the content items a user may chat with."""
        pass

    @abstractmethod
    def get_content(self, guid: str) -> ContentRef:
        """Fetches a single content item by its identifier."""
        pass

    def resolve_url(self, ref: ContentRef) -> str:
        """Returns the URL the viewer should load for ``ref``."""
        url = ref.content_url or self.get_content(ref.guid).content_url
        if not url:
            raise CatalogError(f"Content {ref.guid} has no URL")
        return url

    def close(self) -> None:
        """Releases any connections held by the catalog."""
        pass


class Connect(Catalog):
    """Reads content from a Posit Connect server's v1 API."""

    def __init__(
        self,
        server: str,
        api_key: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not server or not api_key:
            raise CatalogError("A Connect server URL and API key are required")
        self.server = server.rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.server}/__api__",
            headers={"Authorization": f"Key {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "Connect":
        return cls(
            settings.connect_server,
            settings.connect_api_key,
            timeout=settings.request_timeout,
            **kwargs,
        )

    @classmethod
    def for_visitor(
        cls, settings: Settings, session_token: str, **kwargs
    ) -> "Connect":
        """Builds a catalog that acts as the viewing user.

        Exchanges the Connect user-session token for a visitor API key using
        the publisher's key from ``settings``.
        """
        publisher = cls.from_settings(settings, **kwargs)
        try:
            data = publisher._request(
                "POST",
                "/v1/oauth/integrations/credentials",
                data={**TOKEN_EXCHANGE_FORM, "subject_token": session_token},
            )
        finally:
            publisher.close()
        visitor_key = data.get("access_token")
        if not visitor_key:
            raise CatalogError("Connect did not issue a visitor API key")
        return cls(
            settings.connect_server,
            visitor_key,
            timeout=settings.request_timeout,
            **kwargs,
        )

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CatalogError(
                f"HTTP {e.response.status_code}: {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise CatalogError(f"HTTP error: {e}") from e
        return response.json()

    def list_content(self) -> List[ContentRef]:
        items = self._request("GET", "/v1/content", params={"include": "owner"})
        refs = [parse_content(item) for item in items if is_chattable(item)]
        logger.info("Catalog lists %d of %d items as chattable", len(refs), len(items))
        return sorted(
            refs,
            key=lambda ref: ref.last_deployed_time.timestamp()
            if ref.last_deployed_time
            else float("-inf"),
            reverse=True,
        )

    def get_content(self, guid: str) -> ContentRef:
        item = self._request("GET", f"/v1/content/{guid}", params={"include": "owner"})
        return parse_content(item)

    def close(self) -> None:
        self.client.close()
