"""Shared test fixtures for all test groups."""

import datetime
import io
import json

import httpx
import pytest
from botocore.exceptions import ClientError

from sinopulse.generation.fake import GenerationFake
from sinopulse.services.comparison_service import ComparisonService
from sinopulse.storage.artifact_store import ArtifactStoreClient
from sinopulse.storage.library_index import LibraryIndexStore

TEST_BUCKET = "test-bucket"
INDEX_KEY = "sino-pulse/v1/library_index.json"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3:
    """Dict-backed stand-in for the boto3 S3 client calls ArtifactStoreClient makes.

    Failure switches:
        fail_gets / fail_lists: every call raises InternalError
        fail_put_keys: put_object raises InternalError for these keys
        fail_all_puts: every put_object raises InternalError
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict] = {}
        self.get_calls: list[str] = []
        self.put_calls: list[str] = []
        self.fail_gets = False
        self.fail_lists = False
        self.fail_all_puts = False
        self.fail_put_keys: set[str] = set()

    def seed(self, key: str, payload, last_modified: datetime.datetime | None = None) -> None:
        body = payload if isinstance(payload, bytes) else json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.objects[key] = {
            "Body": body,
            "ContentType": "application/json",
            "CacheControl": None,
            "LastModified": last_modified or datetime.datetime.now(datetime.UTC),
        }

    def json(self, key: str):
        return json.loads(self.objects[key]["Body"])

    def get_object(self, Bucket, Key):
        self.get_calls.append(Key)
        if self.fail_gets:
            raise _client_error("InternalError", "GetObject")
        obj = self.objects.get(Key)
        if obj is None:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(obj["Body"])}

    def put_object(self, Bucket, Key, Body, ContentType, CacheControl):
        self.put_calls.append(Key)
        if self.fail_all_puts or Key in self.fail_put_keys:
            raise _client_error("InternalError", "PutObject")
        self.objects[Key] = {
            "Body": Body,
            "ContentType": ContentType,
            "CacheControl": CacheControl,
            "LastModified": datetime.datetime.now(datetime.UTC),
        }

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        fake = self

        class _Paginator:
            def paginate(self, Bucket, Prefix):
                if fake.fail_lists:
                    raise _client_error("InternalError", "ListObjectsV2")
                yield {
                    "Contents": [
                        {"Key": key, "LastModified": obj["LastModified"], "Size": len(obj["Body"])}
                        for key, obj in fake.objects.items()
                        if key.startswith(Prefix)
                    ]
                }

        return _Paginator()


def sample_document(request_text: str = "GDP per capita", locale: str = "en") -> dict:
    """A valid stored artifact document (camelCase, no provenance)."""
    return GenerationFake._document(request_text, locale)


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def store(fake_s3):
    """Authenticated-only store (no public URL) backed by FakeS3."""
    return ArtifactStoreClient(
        bucket=TEST_BUCKET,
        s3_client=fake_s3,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404))),
    )


@pytest.fixture
def index_store(store):
    return LibraryIndexStore(store)


@pytest.fixture
def generation_fake():
    """Fresh GenerationFake with happy_path scenario (default)."""
    return GenerationFake(scenario="happy_path")


@pytest.fixture
def comparison_service(store, index_store, generation_fake):
    return ComparisonService(store, index_store, generation_fake)


@pytest.fixture
def artifact_document():
    return sample_document()
