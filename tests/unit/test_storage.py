import io
import shutil
import time

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

import storage as storage_module
from errors import StorageUnavailable
from storage import LocalDiskStorage, S3Storage, build_storage


class TestLocalDiskStorage:

    def test_put_get_delete(self, storage):
        storage.put("abc.txt", b"payload")

        assert storage.exists("abc.txt") is True
        assert storage.get("abc.txt") == b"payload"

        storage.delete("abc.txt")
        assert storage.exists("abc.txt") is False

    def test_missing_key_reads_as_none(self, storage):
        assert storage.get("never-written") is None

    def test_delete_missing_key_is_quiet(self, storage):
        storage.delete("never-written")

    def test_overwrite_replaces_content(self, storage):
        storage.put("k", b"first")
        storage.put("k", b"second")

        assert storage.get("k") == b"second"

    @pytest.mark.parametrize("key", ["../escape", "nested/key", "/etc/passwd"])
    def test_keys_cannot_leave_the_base_directory(self, storage, key):
        with pytest.raises(ValueError):
            storage.put(key, b"x")

    def test_no_temp_files_left_behind(self, storage, tmp_path):
        storage.put("k", b"data")

        assert sorted(p.name for p in (tmp_path / "uploads").iterdir()) == ["k"]

    def test_slow_write_times_out(self, tmp_path, monkeypatch):
        def slow_write(path, data):
            time.sleep(0.5)

        monkeypatch.setattr(LocalDiskStorage, "_write", staticmethod(slow_write))
        backend = LocalDiskStorage(base_dir=str(tmp_path / "slow"), timeout=0.05)
        try:
            with pytest.raises(StorageUnavailable):
                backend.put("k", b"data")
        finally:
            backend.close()

    def test_os_error_is_unavailable(self, tmp_path):
        backend = LocalDiskStorage(base_dir=str(tmp_path / "gone"), timeout=5)
        shutil.rmtree(tmp_path / "gone")
        try:
            with pytest.raises(StorageUnavailable):
                backend.put("k", b"data")
        finally:
            backend.close()

    def test_health(self, storage):
        assert storage.get_health() == {"status": "healthy", "backend": "LocalDisk"}


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


class TestS3Storage:

    def test_put_sends_encrypted_marker(self, s3_client):
        backend = S3Storage(client=s3_client, bucket="vault", ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "put_object",
                {},
                {
                    "Bucket": "vault",
                    "Key": "k.txt",
                    "Body": b"blob",
                    "ContentType": "text/plain",
                    "Metadata": {"encrypted": "AES-256-GCM"},
                },
            )
            backend.put("k.txt", b"blob", content_type="text/plain")
            stub.assert_no_pending_responses()

    def test_get_reads_body(self, s3_client):
        backend = S3Storage(client=s3_client, bucket="vault", ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "get_object",
                {"Body": StreamingBody(io.BytesIO(b"blob"), 4)},
                {"Bucket": "vault", "Key": "k"},
            )
            assert backend.get("k") == b"blob"

    def test_missing_object_reads_as_none(self, s3_client):
        backend = S3Storage(client=s3_client, bucket="vault", ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
            assert backend.get("k") is None

    def test_put_failure_is_unavailable(self, s3_client):
        backend = S3Storage(client=s3_client, bucket="vault", ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
            with pytest.raises(StorageUnavailable):
                backend.put("k", b"blob")

    def test_get_failure_is_unavailable(self, s3_client):
        backend = S3Storage(client=s3_client, bucket="vault", ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)
            with pytest.raises(StorageUnavailable):
                backend.get("k")

    def test_exists(self, s3_client):
        backend = S3Storage(client=s3_client, bucket="vault", ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_response("head_object", {}, {"Bucket": "vault", "Key": "here"})
            stub.add_client_error("head_object", service_error_code="404", http_status_code=404)
            assert backend.exists("here") is True
            assert backend.exists("gone") is False

    def test_missing_bucket_is_created(self, s3_client):
        with Stubber(s3_client) as stub:
            stub.add_client_error("head_bucket", service_error_code="404", http_status_code=404)
            stub.add_response("create_bucket", {}, {"Bucket": "vault"})
            S3Storage(client=s3_client, bucket="vault")
            stub.assert_no_pending_responses()


class TestBuildStorage:

    @pytest.fixture
    def unreachable_minio(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise EndpointConnectionError(endpoint_url="http://localhost:9000")

        monkeypatch.setattr(storage_module, "S3Storage", refuse)

    def test_local_disk_when_minio_disabled(self, tmp_path):
        backend = build_storage(use_minio=False, upload_dir=str(tmp_path / "local"))
        try:
            assert isinstance(backend, LocalDiskStorage)
        finally:
            backend.close()

    def test_unreachable_minio_is_fatal_by_default(self, tmp_path, unreachable_minio):
        with pytest.raises(StorageUnavailable):
            build_storage(use_minio=True, upload_dir=str(tmp_path / "local"), fallback_to_local=False)

        assert not (tmp_path / "local").exists()

    def test_unreachable_minio_falls_back_when_enabled(self, tmp_path, unreachable_minio):
        backend = build_storage(use_minio=True, upload_dir=str(tmp_path / "local"), fallback_to_local=True)
        try:
            assert isinstance(backend, LocalDiskStorage)
        finally:
            backend.close()
