from __future__ import annotations

import logging
import os
from typing import Any, Optional, Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from backend.app.config import RelayConfig
from pipeline.io_types import ImageReference, UploadedImage


logger = logging.getLogger(__name__)


class StagingError(Exception):
    pass


class CleanupError(Exception):
    pass


class ImageStager(Protocol):
    backend: str

    def stage(self, image: UploadedImage, namespace: str) -> ImageReference: ...

    def release(self, ref: ImageReference) -> None: ...


MAX_STEM_BYTES = 100
MAX_EXT_BYTES = 16


def safe_filename(name: Optional[str]) -> str:
    name = (name or "upload.png").replace("/", "_").replace("\\", "_")
    stem, ext = os.path.splitext(name)
    if len(ext.encode("utf-8")) > MAX_EXT_BYTES:
        stem, ext = name, ""
    # keeps scratch names and object keys under filesystem name limits
    stem = stem.encode("utf-8")[:MAX_STEM_BYTES].decode("utf-8", "ignore")
    return (stem or "upload") + ext


class MemoryStager:
    """Keeps the upload inline; nothing to clean up."""

    backend = "memory"

    def stage(self, image: UploadedImage, namespace: str) -> ImageReference:
        return ImageReference(
            kind="bytes",
            locator=f"memory://{namespace}/{safe_filename(image.filename)}",
            content=image.content,
            content_type=image.content_type,
        )

    def release(self, ref: ImageReference) -> None:
        return None


class TempDirStager:
    backend = "tempdir"

    def __init__(self, scratch_dir: str) -> None:
        self.scratch_dir = scratch_dir

    def ensure_dir(self) -> None:
        try:
            os.makedirs(self.scratch_dir, exist_ok=True)
        except OSError as e:
            raise StagingError(f"Cannot create scratch directory {self.scratch_dir}: {e}") from e

    def stage(self, image: UploadedImage, namespace: str) -> ImageReference:
        self.ensure_dir()
        path = os.path.join(self.scratch_dir, f"{namespace}_{safe_filename(image.filename)}")
        try:
            # "x" refuses to reuse a path left behind by another request
            with open(path, "xb") as f:
                f.write(image.content)
        except FileExistsError as e:
            raise StagingError(f"Scratch file already exists: {os.path.basename(path)}") from e
        except OSError as e:
            try:
                os.remove(path)
            except OSError:
                pass
            raise StagingError(f"Cannot write scratch file {os.path.basename(path)}: {e.strerror or e}") from e
        logger.debug("Staged %s (%d bytes)", path, len(image.content))
        return ImageReference(kind="path", locator=path, content_type=image.content_type)

    def release(self, ref: ImageReference) -> None:
        try:
            os.remove(ref.locator)
        except FileNotFoundError:
            return
        except OSError as e:
            raise CleanupError(f"Cannot delete scratch file {ref.locator}: {e}") from e


def make_s3_client(cfg: RelayConfig) -> Any:
    session = boto3.session.Session()
    return session.client(
        "s3",
        region_name=cfg.s3_region,
        endpoint_url=cfg.s3_endpoint_url,
        aws_access_key_id=cfg.s3_access_key_id,
        aws_secret_access_key=cfg.s3_secret_access_key,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class S3Stager:
    backend = "s3"

    def __init__(self, client: Any, bucket: str, prefix: str = "uploads/", url_expiry: int = 3600) -> None:
        self.client = client
        self.bucket = bucket
        self.prefix = prefix
        self.url_expiry = url_expiry

    @classmethod
    def from_config(cls, cfg: RelayConfig) -> "S3Stager":
        return cls(make_s3_client(cfg), cfg.s3_bucket, cfg.s3_prefix, cfg.s3_url_expiry)

    def key_for(self, image: UploadedImage, namespace: str) -> str:
        base = self.prefix.rstrip("/") + "/" if self.prefix else ""
        return f"{base}{namespace}/{safe_filename(image.filename)}"

    def stage(self, image: UploadedImage, namespace: str) -> ImageReference:
        key = self.key_for(image, namespace)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=image.content,
                ContentType=image.content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StagingError(f"Upload of s3://{self.bucket}/{key} failed: {e}") from e
        try:
            url = self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_expiry,
            )
        except (BotoCoreError, ClientError) as e:
            self._delete_quietly(key)
            raise StagingError(f"Signing s3://{self.bucket}/{key} failed: {e}") from e
        return ImageReference(
            kind="url",
            locator=url,
            content_type=image.content_type,
            expires_in=self.url_expiry,
            key=key,
        )

    def release(self, ref: ImageReference) -> None:
        if not ref.key:
            return
        try:
            self.client.delete_object(Bucket=self.bucket, Key=ref.key)
        except (BotoCoreError, ClientError) as e:
            raise CleanupError(f"Cannot delete s3://{self.bucket}/{ref.key}: {e}") from e

    def _delete_quietly(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError):
            logger.warning("Could not remove orphaned object s3://%s/%s", self.bucket, key, exc_info=True)


def build_stager(cfg: RelayConfig) -> ImageStager:
    if cfg.staging_backend == "s3":
        return S3Stager.from_config(cfg)
    if cfg.staging_backend == "tempdir":
        return TempDirStager(cfg.scratch_dir)
    return MemoryStager()
