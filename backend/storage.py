"""
Storage abstraction for user avatars on S3-compatible object storage, with an
in-memory implementation for tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config

AVATAR_CONTENT_TYPES = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


def avatar_path(user_id: str, content_type: str) -> str:
    return f"avatars/{user_id}.{AVATAR_CONTENT_TYPES[content_type]}"


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...

    def presign_put(
        self, path: str, content_type: str, expires_in: int = 3600
    ) -> str:
        ...

    def public_url(self, path: str) -> str:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    presigned: list = field(default_factory=list)

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def presign_put(
        self, path: str, content_type: str, expires_in: int = 3600
    ) -> str:
        self.presigned.append((path, content_type))
        return f"{self.base_url}/{path}?op=put&expires={expires_in}"

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )

    def presign_put(
        self, path: str, content_type: str, expires_in: int = 3600
    ) -> str:
        # The browser must send the same Content-Type header it was signed with.
        return self._client.generate_presigned_url(
            ClientMethod="put_object",
            Params={
                "Bucket": self.bucket,
                "Key": path,
                "ContentType": content_type,
            },
            ExpiresIn=expires_in,
        )

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.amazonaws.com/{path}"
