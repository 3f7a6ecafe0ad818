"""ArtifactStoreClient: read/write comparison artifacts in an S3-compatible bucket.

Architecture:
- Reads try the public CDN URL first (httpx, cacheable, no credentials), then
  fall back to an authenticated S3 GetObject
- Writes always go through authenticated S3 PutObject (the public path is read-only)
- Blocking boto3 calls run via asyncio.to_thread() so the event loop never stalls
- 404 from either read path -> ArtifactNotFoundError; any other failure on
  both paths -> TransientStoreError

The boto3 client and httpx client can be injected for tests.
"""

from __future__ import annotations

import asyncio
import datetime
import json
from dataclasses import dataclass

import boto3
import httpx
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from sinopulse.core.config import Settings
from sinopulse.core.exceptions import ArtifactNotFoundError, MalformedArtifactError, TransientStoreError
from sinopulse.schemas.comparison import ComparisonArtifact, Provenance

logger = structlog.get_logger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class ArchivedObject:
    """A row from a raw bucket listing."""

    key: str
    last_modified: datetime.datetime
    size: int


class ArtifactStoreClient:
    """Two-tier reader and authenticated writer for archived artifacts.

    Usage:
        store = ArtifactStoreClient.from_settings(get_settings())
        artifact = await store.read_artifact("sino-pulse/v1/en/gdp.json")
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        region: str = "auto",
        public_base_url: str = "",
        cache_max_age_seconds: int = 86400,
        timeout_seconds: float = 10.0,
        s3_client=None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._bucket = bucket
        self._endpoint_url = endpoint_url
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._region = region
        self._public_base_url = public_base_url.rstrip("/")
        self._cache_control = f"public, max-age={cache_max_age_seconds}"
        self._timeout_seconds = timeout_seconds
        self._s3 = s3_client
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> ArtifactStoreClient:
        return cls(
            bucket=settings.r2_bucket_name,
            endpoint_url=settings.r2_endpoint,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            region=settings.r2_region,
            public_base_url=settings.public_base_url,
            cache_max_age_seconds=settings.artifact_cache_max_age_seconds,
            timeout_seconds=settings.store_timeout_seconds,
        )

    @property
    def cache_control(self) -> str:
        return self._cache_control

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Raw primitives
    # ------------------------------------------------------------------

    async def read_raw(self, key: str) -> bytes:
        """Read object bytes: public CDN first, authenticated S3 second."""
        public_not_found = False
        if self._public_base_url:
            try:
                return await self._read_public(key)
            except ArtifactNotFoundError:
                public_not_found = True
            except TransientStoreError as exc:
                logger.info("public_read_fallback", key=key, reason=exc.reason)

        try:
            return await self.read_raw_authenticated(key)
        except TransientStoreError:
            if public_not_found:
                raise ArtifactNotFoundError(key)
            raise

    async def read_raw_authenticated(self, key: str) -> bytes:
        """Read object bytes through the authenticated S3 API only."""
        self._require_bucket(key)
        try:
            return await asyncio.to_thread(self._get_object, key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise ArtifactNotFoundError(key) from exc
            raise TransientStoreError(key, f"s3 error {code}") from exc
        except BotoCoreError as exc:
            raise TransientStoreError(key, type(exc).__name__) from exc

    async def write_raw(
        self,
        key: str,
        body: bytes,
        content_type: str = JSON_CONTENT_TYPE,
        cache_control: str | None = None,
    ) -> None:
        """Upload bytes via authenticated PutObject. Raises TransientStoreError on failure."""
        self._require_bucket(key)
        try:
            await asyncio.to_thread(self._put_object, key, body, content_type, cache_control or self._cache_control)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            raise TransientStoreError(key, f"s3 error {code}") from exc
        except BotoCoreError as exc:
            raise TransientStoreError(key, type(exc).__name__) from exc
        logger.info("store_object_written", key=key, size_bytes=len(body))

    async def list_objects(self, prefix: str) -> list[ArchivedObject]:
        """List every object under prefix (paginated ListObjectsV2)."""
        self._require_bucket(prefix)
        try:
            return await asyncio.to_thread(self._list_objects, prefix)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError(prefix, type(exc).__name__) from exc

    async def delete(self, key: str) -> None:
        """Delete one object. Administrative primitive; the subsystem never deletes on its own."""
        self._require_bucket(key)
        try:
            await asyncio.to_thread(self._delete_object, key)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStoreError(key, type(exc).__name__) from exc
        logger.info("store_object_deleted", key=key)

    # ------------------------------------------------------------------
    # Artifact-level API
    # ------------------------------------------------------------------

    async def read_artifact(self, key: str) -> ComparisonArtifact:
        """Read and validate an archived artifact.

        Raises:
            ArtifactNotFoundError: key does not exist
            TransientStoreError: both read paths failed
            MalformedArtifactError: stored body is not a valid artifact
        """
        raw = await self.read_raw(key)
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError(f"expected JSON object, got {type(payload).__name__}")
            return ComparisonArtifact.model_validate({**payload, "provenance": Provenance.ARCHIVED})
        except ValueError as exc:
            raise MalformedArtifactError(f"Stored artifact '{key}' is invalid: {exc}") from exc

    async def write_artifact(self, key: str, artifact: ComparisonArtifact) -> None:
        body = json.dumps(artifact.to_document(), ensure_ascii=False).encode("utf-8")
        await self.write_raw(key, body, content_type=JSON_CONTENT_TYPE)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_bucket(self, key: str) -> None:
        if not self._bucket:
            raise TransientStoreError(key, "artifact store is not configured")

    async def _read_public(self, key: str) -> bytes:
        url = f"{self._public_base_url}/{key}"
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as exc:
            raise TransientStoreError(key, f"public read failed: {type(exc).__name__}") from exc
        if response.status_code == 404:
            raise ArtifactNotFoundError(key)
        if not response.is_success:
            raise TransientStoreError(key, f"public read status {response.status_code}")
        return response.content

    def _client(self):
        """Build the boto3 client once. Runs inside asyncio.to_thread()."""
        if self._s3 is None:
            self._s3 = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url or None,
                aws_access_key_id=self._access_key_id or None,
                aws_secret_access_key=self._secret_access_key or None,
                region_name=self._region,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=self._timeout_seconds,
                    read_timeout=self._timeout_seconds,
                    retries={"max_attempts": 2},
                ),
            )
        return self._s3

    def _get_object(self, key: str) -> bytes:
        response = self._client().get_object(Bucket=self._bucket, Key=key)
        return response["Body"].read()

    def _put_object(self, key: str, body: bytes, content_type: str, cache_control: str) -> None:
        self._client().put_object(
            Bucket=self._bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            CacheControl=cache_control,
        )

    def _list_objects(self, prefix: str) -> list[ArchivedObject]:
        paginator = self._client().get_paginator("list_objects_v2")
        objects: list[ArchivedObject] = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                objects.append(
                    ArchivedObject(
                        key=item["Key"],
                        last_modified=item["LastModified"],
                        size=item.get("Size", 0),
                    )
                )
        return objects

    def _delete_object(self, key: str) -> None:
        self._client().delete_object(Bucket=self._bucket, Key=key)
