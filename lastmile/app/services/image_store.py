"""
Proof image storage adapter.

Uploads base64 images to an object storage bucket over HTTP and returns
the public URL. Callers treat every failure as non-fatal.
"""

import base64
import binascii
import secrets
import time
from typing import Optional

import httpx

from lastmile.app.core.config import settings


class ImageUploadError(Exception):
    """Upload could not be completed."""


class ImageStore:
    """Interface for image persistence."""
    
    async def upload(self, data: str, destination_hint: str) -> Optional[str]:
        raise NotImplementedError


def decode_base64_image(data: str) -> bytes:
    """Decode a bare base64 string or a data URL."""
    if "," in data:
        data = data.split(",", 1)[1]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageUploadError(f"Invalid base64 image: {e}") from e


class HttpImageStore(ImageStore):
    """
    Object storage over HTTP (Supabase-style storage API).
    
    Objects land at {bucket}/{destination_hint}/{millis}-{random}.jpg.
    """
    
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        bucket: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.image_storage_url or "").rstrip("/")
        self.api_key = api_key or settings.image_storage_key
        self.bucket = bucket or settings.image_bucket
        self.timeout = timeout or settings.image_upload_timeout_seconds
        self.transport = transport
    
    def _object_name(self, destination_hint: str) -> str:
        return f"{destination_hint}/{int(time.time() * 1000)}-{secrets.token_hex(4)}.jpg"
    
    def public_url(self, object_name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{object_name}"
    
    async def upload(self, data: str, destination_hint: str = "delivery-status") -> Optional[str]:
        if not data:
            return None
        if not self.base_url:
            raise ImageUploadError("Image storage is not configured")
        
        payload = decode_base64_image(data)
        object_name = self._object_name(destination_hint)
        headers = {"Content-Type": "image/jpeg", "x-upsert": "false"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/storage/v1/object/{self.bucket}/{object_name}",
                    content=payload,
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageUploadError(f"Upload to {self.bucket} failed: {e}") from e
        
        return self.public_url(object_name)
