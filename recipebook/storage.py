"""
Image asset storage: S3-compatible bucket, Cloudinary CDN and in-memory testing.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol
from urllib.parse import unquote

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from recipebook.errors import StorageError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds


def _object_name(filename: Optional[str]) -> str:
    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", filename or "").strip("._")
    return f"{uuid.uuid4().hex}-{safe or 'image'}"


class AssetStore(Protocol):
    """Defines the operations the API needs from image storage."""

    def upload(self, data: bytes, filename: str, content_type: str) -> str:
        ...

    def owns(self, url: Optional[str]) -> bool:
        ...

    def delete(self, url: str) -> None:
        ...


@dataclass
class InMemoryAssetStore:
    """Test double for asset interactions."""

    base_url: str = "https://example.test/assets"
    stored_objects: dict = field(default_factory=dict)

    def upload(self, data: bytes, filename: str, content_type: str) -> str:
        key = _object_name(filename)
        self.stored_objects[key] = (data, content_type)
        return f"{self.base_url}/{key}"

    def owns(self, url: Optional[str]) -> bool:
        return bool(url) and url.startswith(self.base_url + "/")

    def delete(self, url: str) -> None:
        key = url[len(self.base_url) + 1 :]
        if self.stored_objects.pop(key, None) is None:
            logger.warning("Asset %s not found, skipping deletion", key)


@dataclass
class BucketAssetStore:
    """
    S3-compatible bucket holding uploaded images under a public base URL.
    """

    bucket: str
    public_base_url: str
    prefix: str = "recipes"
    endpoint: Optional[str] = None
    region: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    client: object = None

    def __post_init__(self):
        self.public_base_url = self.public_base_url.rstrip("/")
        if self.client is None:
            config = Config(signature_version="s3v4")
            self.client = boto3.client(
                "s3",
                endpoint_url=self.endpoint or None,
                region_name=self.region or None,
                aws_access_key_id=self.access_key_id or None,
                aws_secret_access_key=self.secret_access_key or None,
                config=config,
            )

    def upload(self, data: bytes, filename: str, content_type: str) -> str:
        key = f"{self.prefix}/{_object_name(filename)}" if self.prefix else _object_name(filename)
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Bucket upload failed for {key}") from exc
        url = f"{self.public_base_url}/{key}"
        logger.info("Uploaded image to bucket: %s", url)
        return url

    def owns(self, url: Optional[str]) -> bool:
        return bool(url) and url.startswith(self.public_base_url + "/")

    def delete(self, url: str) -> None:
        key = unquote(url[len(self.public_base_url) + 1 :].split("?", 1)[0])
        if not key:
            logger.warning("Could not extract object key from URL: %s", url)
            return
        try:
            try:
                self.client.head_object(Bucket=self.bucket, Key=key)
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code")
                if code in ("404", "NoSuchKey", "NotFound"):
                    logger.warning("Image %s not found in bucket, skipping deletion", key)
                    return
                raise
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Bucket deletion failed for {key}") from exc
        logger.info("Deleted image %s from bucket", key)


@dataclass
class CdnAssetStore:
    """
    Cloudinary image CDN accessed through its signed REST upload API.
    """

    cloud_name: str
    api_key: str
    api_secret: str
    folder: str = "recettes"
    session: requests.Session = field(default_factory=requests.Session)
    api_base: str = "https://api.cloudinary.com/v1_1"

    @property
    def delivery_prefix(self) -> str:
        return f"https://res.cloudinary.com/{self.cloud_name}/image/upload/"

    def _sign(self, params: dict) -> dict:
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
        signature = hashlib.sha1((to_sign + self.api_secret).encode("utf-8")).hexdigest()
        return {**params, "api_key": self.api_key, "signature": signature}

    def _post(self, action: str, params: dict, files: Optional[dict] = None) -> dict:
        url = f"{self.api_base}/{self.cloud_name}/image/{action}"
        try:
            response = self.session.post(
                url, data=self._sign(params), files=files, timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise StorageError(f"Cloudinary {action} failed") from exc

    def upload(self, data: bytes, filename: str, content_type: str) -> str:
        params = {"folder": self.folder, "timestamp": int(time.time())}
        result = self._post(
            "upload", params, files={"file": (filename or "image", data, content_type)}
        )
        url = result.get("secure_url")
        if not url:
            raise StorageError("Cloudinary upload returned no secure_url")
        logger.info("Uploaded image to Cloudinary: %s", url)
        return url

    def owns(self, url: Optional[str]) -> bool:
        return bool(url) and url.startswith(self.delivery_prefix)

    def public_id(self, url: str) -> Optional[str]:
        path = url[len(self.delivery_prefix) :].split("?", 1)[0]
        # Drop transformation and version segments (".../v1712345/folder/x.jpg").
        match = re.search(r"(?:^|/)v\d+/(.+)$", path)
        if match:
            path = match.group(1)
        public_id = path.rsplit(".", 1)[0] if "." in path.rsplit("/", 1)[-1] else path
        return unquote(public_id) or None

    def delete(self, url: str) -> None:
        public_id = self.public_id(url)
        if not public_id:
            logger.warning("Could not extract public id from URL: %s", url)
            return
        result = self._post(
            "destroy", {"public_id": public_id, "timestamp": int(time.time())}
        )
        if result.get("result") == "not found":
            logger.warning("Image %s not found on Cloudinary, skipping deletion", public_id)
            return
        logger.info("Deleted image %s from Cloudinary", public_id)
