from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from app.storage.s3_compat import S3CompatStore


@pytest.fixture
def s3_client():
    client = MagicMock()
    with patch("app.storage.s3_compat.boto3.client", return_value=client):
        yield client


@pytest.fixture
def store(s3_client):
    return S3CompatStore(
        endpoint_url="http://minio:9000",
        region_name="auto",
        access_key_id="key",
        secret_access_key="secret",
        bucket="uploads",
    )


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "GetObject")


def test_s3_store_only_exposes_upload_store_methods(store):
    public = {name for name in vars(S3CompatStore) if not name.startswith("_")}
    assert public == {"put_bytes", "get_bytes", "delete"}


def test_s3_put_returns_key(store, s3_client):
    assert store.put_bytes("uploads/u/1.png", b"img", content_type="image/png") == "uploads/u/1.png"
    kwargs = s3_client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "uploads"
    assert kwargs["ContentType"] == "image/png"


def test_s3_missing_object_is_file_not_found(store, s3_client):
    s3_client.get_object.side_effect = _client_error("NoSuchKey")

    with pytest.raises(FileNotFoundError):
        store.get_bytes("uploads/u/gone.png")


def test_s3_delete_reports_failure(store, s3_client):
    assert store.delete("uploads/u/1.png") is True

    s3_client.delete_object.side_effect = _client_error("AccessDenied")
    assert store.delete("uploads/u/1.png") is False


def test_local_storage_rejects_escaping_keys(storage):
    with pytest.raises(ValueError):
        storage.put_bytes("../outside.png", b"x")
    assert storage.delete("/etc/passwd") is False
