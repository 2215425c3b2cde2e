"""
Evidence storage
Object storage for case evidence files, reached over its REST API
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx
import structlog

from opsportal.core.config import Settings, get_settings
from opsportal.core.errors import EvidenceUploadFailed

logger = structlog.get_logger(__name__)


class EvidenceStorage(ABC):
    """Where evidence bytes live. Paths are never overwritten."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    async def signed_url(self, path: str, expires_in: int) -> str:
        ...

    @abstractmethod
    async def remove(self, path: str) -> None:
        ...


class HttpEvidenceStorage(EvidenceStorage):
    """Storage REST API client (bucket-scoped, service key)"""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.bucket = self.settings.STORAGE_BUCKET
        self.base_url = self.settings.STORAGE_URL.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, extra: Optional[dict] = None) -> dict:
        key = self.settings.IDENTITY_PROVIDER_SERVICE_KEY
        headers = {"apikey": key, "Authorization": f"Bearer {key}"}
        if extra:
            headers.update(extra)
        return headers

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        try:
            response = await self._client.post(
                f"/object/{self.bucket}/{path}",
                content=data,
                headers=self._headers({"Content-Type": content_type, "x-upsert": "false"}),
            )
        except httpx.HTTPError as e:
            logger.error("Evidence upload failed", path=path, error=type(e).__name__)
            raise EvidenceUploadFailed() from e

        if response.status_code >= 400:
            logger.error("Evidence upload rejected", path=path, status=response.status_code)
            raise EvidenceUploadFailed()

    async def signed_url(self, path: str, expires_in: int) -> str:
        try:
            response = await self._client.post(
                f"/object/sign/{self.bucket}/{path}",
                json={"expiresIn": expires_in},
                headers=self._headers(),
            )
            response.raise_for_status()
            signed = response.json().get("signedURL") or response.json().get("signedUrl")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Signed URL request failed", path=path, error=type(e).__name__)
            raise EvidenceUploadFailed("Evidence download link could not be created") from e

        if not signed:
            raise EvidenceUploadFailed("Evidence download link could not be created")
        return signed if signed.startswith("http") else f"{self.base_url}{signed}"

    async def remove(self, path: str) -> None:
        try:
            response = await self._client.request(
                "DELETE",
                f"/object/{self.bucket}",
                json={"prefixes": [path]},
                headers=self._headers(),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Evidence cleanup failed", path=path, error=type(e).__name__)
