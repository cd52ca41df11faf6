import io

import boto3
import pytest
from moto import mock_aws
from PIL import Image

from rib.config import settings
from rib.services.pipeline import UploadPipeline
from rib.services.storage import LocalObjectStore

# 1x1 transparent PNG
PNG_1X1 = bytes([
    0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,
    0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,
    0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01, 0x08, 0x06, 0x00, 0x00, 0x00, 0x1F, 0x15, 0xC4, 0x89,
    0x00, 0x00, 0x00, 0x0A, 0x49, 0x44, 0x41, 0x54, 0x78, 0x9C, 0x63, 0x00, 0x01, 0x00, 0x00, 0x05, 0x00, 0x01, 0x0D, 0x0A, 0x2D, 0xB4,
    0x00, 0x00, 0x00, 0x00, 0x49, 0x45, 0x4E, 0x44, 0xAE, 0x42, 0x60, 0x82,
])


def image_bytes(fmt: str, size=(16, 16)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color="red").save(buffer, format=fmt)
    return buffer.getvalue()


def stored_objects(store: LocalObjectStore) -> list:
    return [p for p in store.root.rglob("*") if p.is_file() and store.quarantine not in p.parents]


@pytest.fixture
def png_bytes():
    return PNG_1X1


@pytest.fixture
def local_store(tmp_path):
    return LocalObjectStore(tmp_path / "images")


@pytest.fixture
def pipeline(local_store):
    return UploadPipeline(local_store)


@pytest.fixture
def s3_client():
    """Provide a mocked S3 client with a test bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name=settings.S3_REGION)
        client.create_bucket(Bucket=settings.S3_BUCKET)
        yield client
