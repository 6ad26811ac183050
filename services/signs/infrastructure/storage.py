from __future__ import annotations

import asyncio
import logging
import mimetypes
from pathlib import Path

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from services.signs.application.errors import PublicationError
from services.signs.application.interfaces import PublicationSink
from services.signs.config import SignsConfig
from services.signs.domain.sign import PublishOptions, ResourceKind

logger = logging.getLogger(__name__)

_DEFAULT_CONTENT_TYPES = {
    ResourceKind.VIDEO: "video/mp4",
    ResourceKind.IMAGE: "image/jpeg",
}


def create_s3_client(config: SignsConfig):
    return boto3.client(
        "s3",
        endpoint_url=config.storage_endpoint_url,
        region_name=config.storage_region,
        aws_access_key_id=config.storage_access_key,
        aws_secret_access_key=config.storage_secret_key,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class S3PublicationSink(PublicationSink):
    def __init__(self, client, *, bucket: str, public_base_url: str) -> None:
        self._client = client
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/")

    def object_key(self, path: Path, options: PublishOptions) -> str:
        segments = [options.folder.strip("/"), f"{options.public_id}{path.suffix.lower()}"]
        return "/".join(segment for segment in segments if segment)

    def canonical_url(self, object_key: str) -> str:
        return f"{self._public_base_url}/{self._bucket}/{object_key}"

    async def publish(self, path: Path, options: PublishOptions) -> str:
        key = self.object_key(path, options)
        content_type = (
            mimetypes.guess_type(path.name)[0]
            or _DEFAULT_CONTENT_TYPES[options.resource_kind]
        )
        try:
            await asyncio.to_thread(
                self._client.upload_file,
                path.as_posix(),
                self._bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as exc:
            logger.error("Upload of %s to %s/%s failed: %s", path.name, self._bucket, key, exc)
            raise PublicationError(f"Could not publish {options.resource_kind.value}") from exc

        url = self.canonical_url(key)
        logger.info("Published %s -> %s", path.name, url)
        return url


def create_publication_sink(config: SignsConfig) -> PublicationSink:
    client = create_s3_client(config)
    return S3PublicationSink(
        client,
        bucket=config.storage_bucket,
        public_base_url=config.storage_public_url,
    )
