import os
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.stub import Stubber

from backend.app.config import RelayConfig
from backend.app.storage import (
    CleanupError,
    MemoryStager,
    S3Stager,
    StagingError,
    TempDirStager,
    build_stager,
    make_s3_client,
    safe_filename,
)
from pipeline.io_types import UploadedImage


S3_CFG = RelayConfig(
    staging_backend="s3",
    s3_endpoint_url="http://localhost:9000",
    s3_region="us-east-1",
    s3_access_key_id="test-key",
    s3_secret_access_key="test-secret",
)


@pytest.fixture
def image(person_png):
    return UploadedImage(content=person_png, content_type="image/png", filename="photo.png")


def test_safe_filename_strips_separators():
    assert safe_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert safe_filename("a\\b.png") == "a_b.png"
    assert safe_filename(None) == "upload.png"


def test_safe_filename_caps_long_names():
    name = safe_filename("p" * 240 + ".png")
    assert name == "p" * 100 + ".png"
    assert safe_filename("\u00e9" * 200 + ".jpg").encode("utf-8") == ("\u00e9" * 50).encode("utf-8") + b".jpg"
    assert len(safe_filename("x" * 300).encode("utf-8")) == 100
    assert safe_filename(".png") == ".png"


def test_memory_stager_keeps_bytes(image):
    ref = MemoryStager().stage(image, namespace="req1_person")
    assert ref.kind == "bytes"
    assert ref.content == image.content
    assert ref.locator == "memory://req1_person/photo.png"
    MemoryStager().release(ref)


def test_tempdir_stage_and_release(tmp_path, image):
    scratch = tmp_path / "nested" / "scratch"
    stager = TempDirStager(str(scratch))
    ref = stager.stage(image, namespace="req1_person")
    assert ref.kind == "path"
    assert os.path.dirname(ref.locator) == str(scratch)
    with open(ref.locator, "rb") as f:
        assert f.read() == image.content
    stager.release(ref)
    assert not os.path.exists(ref.locator)
    # releasing twice is harmless
    stager.release(ref)


def test_tempdir_existing_directory_is_fine(tmp_path, image):
    stager = TempDirStager(str(tmp_path))
    stager.ensure_dir()
    stager.ensure_dir()
    assert stager.stage(image, namespace="n").kind == "path"


def test_tempdir_refuses_to_reuse_a_path(tmp_path, image):
    stager = TempDirStager(str(tmp_path))
    stager.stage(image, namespace="same")
    with pytest.raises(StagingError):
        stager.stage(image, namespace="same")


def test_tempdir_unusable_scratch_dir(tmp_path, image):
    blocker = tmp_path / "file"
    blocker.write_bytes(b"x")
    with pytest.raises(StagingError):
        TempDirStager(str(blocker / "scratch")).stage(image, namespace="n")


def test_tempdir_release_error_is_cleanup_error(tmp_path, image, monkeypatch):
    stager = TempDirStager(str(tmp_path))
    ref = stager.stage(image, namespace="n")

    def boom(path):
        raise PermissionError("denied")

    monkeypatch.setattr(os, "remove", boom)
    with pytest.raises(CleanupError):
        stager.release(ref)


def test_s3_client_uses_path_style_addressing():
    client = make_s3_client(S3_CFG)
    assert client.meta.config.s3["addressing_style"] == "path"
    assert client.meta.endpoint_url == "http://localhost:9000"


def test_s3_stage_uploads_and_signs(image):
    client = make_s3_client(S3_CFG)
    stager = S3Stager(client, bucket="ai-try-on")
    with Stubber(client) as stub:
        stub.add_response(
            "put_object",
            {},
            {"Bucket": "ai-try-on", "Key": "uploads/req1_person/photo.png", "Body": image.content, "ContentType": "image/png"},
        )
        ref = stager.stage(image, namespace="req1_person")
        stub.assert_no_pending_responses()

    assert ref.kind == "url"
    assert ref.key == "uploads/req1_person/photo.png"
    assert ref.expires_in == 3600
    url = urlparse(ref.locator)
    assert url.netloc == "localhost:9000"
    assert url.path == "/ai-try-on/uploads/req1_person/photo.png"
    assert parse_qs(url.query)["X-Amz-Expires"] == ["3600"]


def test_s3_keys_do_not_collide_across_requests(image):
    stager = S3Stager(client=None, bucket="ai-try-on")
    a = stager.key_for(image, "req-a_person")
    b = stager.key_for(image, "req-b_person")
    assert a != b
    assert a.endswith("/photo.png") and b.endswith("/photo.png")


def test_s3_upload_failure_is_staging_error(image):
    client = make_s3_client(S3_CFG)
    stager = S3Stager(client, bucket="ai-try-on")
    with Stubber(client) as stub:
        stub.add_client_error("put_object", service_error_code="InvalidAccessKeyId", http_status_code=403)
        with pytest.raises(StagingError) as ei:
            stager.stage(image, namespace="req1_person")
    assert "InvalidAccessKeyId" in str(ei.value)


def test_s3_release_deletes_object(image):
    client = make_s3_client(S3_CFG)
    stager = S3Stager(client, bucket="ai-try-on")
    with Stubber(client) as stub:
        stub.add_response("put_object", {})
        ref = stager.stage(image, namespace="r")
        stub.add_response("delete_object", {}, {"Bucket": "ai-try-on", "Key": ref.key})
        stager.release(ref)
        stub.assert_no_pending_responses()


def test_s3_release_failure_is_cleanup_error(image):
    client = make_s3_client(S3_CFG)
    stager = S3Stager(client, bucket="ai-try-on")
    with Stubber(client) as stub:
        stub.add_response("put_object", {})
        ref = stager.stage(image, namespace="r")
        stub.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(CleanupError):
            stager.release(ref)


@pytest.mark.parametrize(
    "backend, cls",
    [("memory", MemoryStager), ("tempdir", TempDirStager), ("s3", S3Stager)],
)
def test_build_stager_selects_strategy(tmp_path, backend, cls):
    cfg = RelayConfig(
        staging_backend=backend,
        scratch_dir=str(tmp_path),
        s3_endpoint_url="http://localhost:9000",
        s3_region="us-east-1",
        s3_access_key_id="k",
        s3_secret_access_key="s",
    )
    assert isinstance(build_stager(cfg), cls)


def test_s3_key_for_long_filename_is_bounded():
    stager = S3Stager(client=None, bucket="ai-try-on")
    key = stager.key_for(UploadedImage(content=b"x", filename="p" * 900 + ".png"), "req1_person")
    assert key == "uploads/req1_person/" + "p" * 100 + ".png"


def test_tempdir_write_error_does_not_leak_scratch_path(tmp_path, image, monkeypatch):
    stager = TempDirStager(str(tmp_path))
    real_open = open

    def failing_open(path, mode="r", *args, **kwargs):
        if "x" in mode:
            raise OSError(36, "File name too long", path)
        return real_open(path, mode, *args, **kwargs)

    monkeypatch.setattr("builtins.open", failing_open)
    with pytest.raises(StagingError) as ei:
        stager.stage(image, namespace="n")
    assert str(tmp_path) not in str(ei.value)
    assert "File name too long" in str(ei.value)
