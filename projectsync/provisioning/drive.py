"""
ProjectSync Drive Client — the two folder calls provisioning needs, over httpx.

    POST {base_url}/files?fields=id                    create folder
    POST {base_url}/files/{folder_id}/permissions      grant access

Failures (network, non-2xx, malformed body) raise TransportError with
backend="drive" and the HTTP status when there was one. No retries.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from projectsync.engine.errors import TransportError

logger = logging.getLogger("projectsync.provisioning.drive")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


class DriveClient:
    """
    Usage:
        async with DriveClient(token="...") as drive:
            folder_id = await drive.create_folder("Website Redesign [P1]")
            await drive.grant_writer(folder_id, "owner@example.com")
    """

    def __init__(
        self,
        base_url: str = "https://www.googleapis.com/drive/v3",
        token: Optional[str] = None,
        timeout: float = 30.0,
        parent_folder_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._parent_folder_id = parent_folder_id
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=10.0),
            transport=transport,
        )

    async def __aenter__(self) -> "DriveClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=body, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"Drive request {path} failed: {e}", backend="drive") from e

        if response.status_code >= 400:
            raise TransportError(
                f"Drive request {path} returned {response.status_code}: {response.text[:200]}",
                backend="drive",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"Drive request {path} returned a non-JSON body",
                backend="drive", status_code=response.status_code,
            ) from e

    async def create_folder(self, name: str) -> str:
        """Create a folder and return its id."""
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if self._parent_folder_id:
            metadata["parents"] = [self._parent_folder_id]

        body = await self._post("/files", metadata, params={"fields": "id"})
        folder_id = body.get("id")
        if not folder_id:
            raise TransportError("Drive API did not return a folder ID.", backend="drive")
        logger.info(f"Created Drive folder {folder_id} ('{name}')")
        return folder_id

    async def grant_writer(self, folder_id: str, email: str) -> None:
        """Give ``email`` editor access to the folder."""
        await self._post(
            f"/files/{folder_id}/permissions",
            {"role": "writer", "type": "user", "emailAddress": email},
        )
        logger.info(f"Granted 'writer' on Drive folder {folder_id} to {email}")
