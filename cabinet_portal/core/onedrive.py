"""
Microsoft Graph client for the firm's OneDrive.
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from cabinet_portal.config import get_settings
from cabinet_portal.core.provider_client import (
    ProviderAPIError,
    ProviderClient,
    TokenProvider,
)

logger = logging.getLogger(__name__)

# Graph accepts simple PUT uploads up to 4 MB
SMALL_UPLOAD_LIMIT = 4 * 1024 * 1024
# Upload session chunks must be multiples of 320 KiB
UPLOAD_CHUNK_SIZE = 10 * 320 * 1024


class DriveItem(BaseModel):
    """A file or folder as returned by Graph."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    size: Optional[int] = None
    web_url: Optional[str] = Field(default=None, alias="webUrl")
    download_url: Optional[str] = Field(
        default=None, alias="@microsoft.graph.downloadUrl"
    )
    folder: Optional[dict] = None
    file: Optional[dict] = None
    last_modified: Optional[datetime] = Field(
        default=None, alias="lastModifiedDateTime"
    )

    @property
    def is_folder(self) -> bool:
        return self.folder is not None

    @property
    def mime_type(self) -> Optional[str]:
        return (self.file or {}).get("mimeType")


class DriveQuota(BaseModel):
    total: int = 0
    used: int = 0
    remaining: int = 0
    state: Optional[str] = None

    @property
    def used_percentage(self) -> float:
        if not self.total:
            return 0.0
        return round(self.used / self.total * 100, 2)


def encode_path(path: str) -> str:
    """Percent-encode a drive path for the root:{path} addressing syntax."""
    return quote("/" + path.strip("/"), safe="/")


class OneDriveClient(ProviderClient):
    """
    Client for the signed-in account's drive (/me/drive).

    Folder lookups by name are case-insensitive, as OneDrive itself is.
    """

    provider_name = "OneDrive"

    def __init__(
        self,
        token_provider: Optional[TokenProvider] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(
            base_url or get_settings().graph_api_base,
            token_provider=token_provider,
            **kwargs,
        )

    # ============== Drive ==============

    async def get_quota(self) -> DriveQuota:
        data = await self._request("GET", "/me/drive", params={"$select": "quota"})
        return DriveQuota.model_validate(data.get("quota") or {})

    # ============== Items ==============

    async def get_item(self, item_id: str) -> Optional[DriveItem]:
        try:
            data = await self._request("GET", f"/me/drive/items/{item_id}")
        except ProviderAPIError as e:
            if e.is_not_found:
                return None
            raise
        return DriveItem.model_validate(data)

    async def download_file(self, item_id: str) -> bytes:
        """File bytes. Graph answers with a redirect to a pre-authenticated URL."""
        response = await self._request_raw(
            "GET", f"/me/drive/items/{item_id}/content", follow_redirects=True
        )
        return response.content

    async def get_item_by_path(self, path: str) -> Optional[DriveItem]:
        try:
            data = await self._request("GET", f"/me/drive/root:{encode_path(path)}")
        except ProviderAPIError as e:
            if e.is_not_found:
                return None
            raise
        return DriveItem.model_validate(data)

    async def list_children(self, folder_id: Optional[str] = None) -> list[DriveItem]:
        """List a folder's children, following @odata.nextLink pages."""
        if folder_id:
            url = f"/me/drive/items/{folder_id}/children"
        else:
            url = "/me/drive/root/children"

        items: list[DriveItem] = []
        params: Optional[dict] = {"$top": 200}
        while url:
            data = await self._request("GET", url, params=params)
            items.extend(DriveItem.model_validate(v) for v in data.get("value", []))
            url = data.get("@odata.nextLink")
            params = None  # nextLink already carries the query
        return items

    async def find_child(
        self,
        parent_id: Optional[str],
        name: str,
        folders_only: bool = True,
    ) -> Optional[DriveItem]:
        wanted = name.casefold()
        for item in await self.list_children(parent_id):
            if folders_only and not item.is_folder:
                continue
            if item.name.casefold() == wanted:
                return item
        return None

    # ============== Folders ==============

    async def create_folder(
        self,
        name: str,
        parent_id: Optional[str] = None,
        conflict_behavior: str = "fail",
    ) -> DriveItem:
        if parent_id:
            url = f"/me/drive/items/{parent_id}/children"
        else:
            url = "/me/drive/root/children"

        data = await self._request(
            "POST",
            url,
            json={
                "name": name,
                "folder": {},
                "@microsoft.graph.conflictBehavior": conflict_behavior,
            },
        )
        logger.info(f"Created OneDrive folder {name!r}")
        return DriveItem.model_validate(data)

    async def ensure_child_folder(
        self,
        parent_id: Optional[str],
        name: str,
    ) -> tuple[DriveItem, bool]:
        """Return (folder, created) for a direct child folder."""
        existing = await self.find_child(parent_id, name)
        if existing:
            return existing, False

        try:
            return await self.create_folder(name, parent_id), True
        except ProviderAPIError as e:
            # Created concurrently since the listing
            if e.status_code != 409:
                raise
            existing = await self.find_child(parent_id, name)
            if existing is None:
                raise
            return existing, False

    async def ensure_folder_path(self, path: str) -> tuple[DriveItem, bool]:
        """Locate a folder by absolute path, creating missing segments."""
        existing = await self.get_item_by_path(path)
        if existing and existing.is_folder:
            return existing, False

        parent_id: Optional[str] = None
        item: Optional[DriveItem] = None
        created_any = False
        for segment in [s for s in path.split("/") if s]:
            item, created = await self.ensure_child_folder(parent_id, segment)
            created_any = created_any or created
            parent_id = item.id

        if item is None:
            raise ValueError(f"Empty OneDrive path: {path!r}")
        return item, created_any

    # ============== Files ==============

    async def upload_file(
        self,
        parent_id: str,
        filename: str,
        content: bytes,
        mime_type: Optional[str] = None,
    ) -> DriveItem:
        if len(content) > SMALL_UPLOAD_LIMIT:
            return await self._upload_large(parent_id, filename, content)

        data = await self._request(
            "PUT",
            f"/me/drive/items/{parent_id}:/{quote(filename)}:/content",
            params={"@microsoft.graph.conflictBehavior": "rename"},
            content=content,
            headers={"Content-Type": mime_type or "application/octet-stream"},
        )
        return DriveItem.model_validate(data)

    async def _upload_large(
        self,
        parent_id: str,
        filename: str,
        content: bytes,
    ) -> DriveItem:
        session = await self._request(
            "POST",
            f"/me/drive/items/{parent_id}:/{quote(filename)}:/createUploadSession",
            json={"item": {"@microsoft.graph.conflictBehavior": "rename"}},
        )
        upload_url = session["uploadUrl"]
        total = len(content)

        data: dict = {}
        for start in range(0, total, UPLOAD_CHUNK_SIZE):
            chunk = content[start:start + UPLOAD_CHUNK_SIZE]
            end = start + len(chunk) - 1
            # The upload URL is pre-authenticated
            response = await self._request_raw(
                "PUT",
                upload_url,
                authenticated=False,
                content=chunk,
                headers={
                    "Content-Length": str(len(chunk)),
                    "Content-Range": f"bytes {start}-{end}/{total}",
                },
            )
            if response.status_code in (200, 201):
                data = response.json()

        if not data:
            raise ProviderAPIError(f"Upload session for {filename!r} did not complete")
        return DriveItem.model_validate(data)

    async def move_item(
        self,
        item_id: str,
        new_parent_id: str,
        new_name: Optional[str] = None,
    ) -> DriveItem:
        payload: dict = {"parentReference": {"id": new_parent_id}}
        if new_name:
            payload["name"] = new_name
        data = await self._request("PATCH", f"/me/drive/items/{item_id}", json=payload)
        return DriveItem.model_validate(data)

    async def rename_item(self, item_id: str, new_name: str) -> DriveItem:
        data = await self._request(
            "PATCH", f"/me/drive/items/{item_id}", json={"name": new_name}
        )
        return DriveItem.model_validate(data)

    async def delete_item(self, item_id: str) -> None:
        try:
            await self._request("DELETE", f"/me/drive/items/{item_id}")
        except ProviderAPIError as e:
            if not e.is_not_found:
                raise
