"""Tests for statement storage: local keys, S3 keys and agent wiring."""

from types import SimpleNamespace
from typing import Any

import boto3
import pytest
from botocore.exceptions import ClientError

from app.agents import AgentRegistry, CategorizationAgent
from app.core.errors import StorageError
from app.core.settings import Settings
from app.services.file_service import FileService
from app.services.s3_file_service import S3FileService


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the service makes."""

    def __init__(self) -> None:
        self.buckets: set[str] = set()
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}

    def head_bucket(self, Bucket: str) -> None:  # noqa: N803
        if Bucket not in self.buckets:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")

    def create_bucket(self, Bucket: str) -> None:  # noqa: N803
        self.buckets.add(Bucket)

    def put_object(self, Bucket: str, Key: str, Body: bytes, **extra: Any) -> None:  # noqa: N803
        self.objects[Key] = Body
        self.content_types[Key] = extra.get("ContentType", "")

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:  # noqa: N803
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        body = self.objects[Key]
        return {"Body": SimpleNamespace(read=lambda: body)}

    def generate_presigned_url(self, _: str, Params: dict[str, str], ExpiresIn: int) -> str:  # noqa: N803
        return f"https://s3.example/{Params['Bucket']}/{Params['Key']}?expires={ExpiresIn}"


def test_local_storage_round_trip(settings: Settings) -> None:
    service = FileService(None, settings.local_storage_root)
    key = service.save_upload("../../etc/march.pdf", b"%PDF-1.4 data")
    if not key.startswith("local://bank-statements/") or not key.endswith("-march.pdf"):
        msg = f"Unexpected local key {key}"
        raise AssertionError(msg)
    if service.download_file(key) != b"%PDF-1.4 data" or service.download_url(key) is not None:
        msg = "Local files are read back directly and have no signed URL"
        raise AssertionError(msg)


def test_local_keys_cannot_escape_the_root(settings: Settings) -> None:
    service = FileService(None, settings.local_storage_root)
    with pytest.raises(StorageError):
        service.download_file("local://../../etc/passwd")
    with pytest.raises(StorageError):
        service.download_file("bank-statements/on-s3.pdf")


def test_s3_storage(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeS3Client()
    monkeypatch.setattr(boto3, "client", lambda *_, **__: fake)
    settings.s3_folder_prefix = "tenant-a/"
    service = FileService(S3FileService(settings), settings.local_storage_root)
    if settings.s3_bucket not in fake.buckets:
        msg = "The bucket should be created when it does not exist"
        raise AssertionError(msg)

    key = service.save_upload("march.csv", b"a,b\n", "text/csv")
    if not key.startswith("tenant-a/bank-statements/") or fake.content_types[key] != "text/csv":
        msg = f"Unexpected S3 key {key}"
        raise AssertionError(msg)
    if service.download_file(key) != b"a,b\n":
        msg = "Expected the uploaded bytes back"
        raise AssertionError(msg)
    if not (service.download_url(key) or "").startswith("https://s3.example/"):
        msg = "S3 keys are served through signed URLs"
        raise AssertionError(msg)
    with pytest.raises(StorageError):
        service.download_file("tenant-a/bank-statements/missing.csv")


def test_agent_registry_builds_registered_agents(settings: Settings) -> None:
    agent = AgentRegistry.build("categorization", object(), settings)
    if not isinstance(agent, CategorizationAgent):
        msg = f"Expected a CategorizationAgent, got {type(agent).__name__}"
        raise AssertionError(msg)
    if {"categorization", "extraction", "validation"} - set(AgentRegistry.names()):
        msg = f"Missing pipeline agents: {AgentRegistry.names()}"
        raise AssertionError(msg)
    with pytest.raises(KeyError):
        AgentRegistry.build("summarizer", object(), settings)
