import io
import os

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from backend.app.config import RelayConfig
from backend.app.main import create_app
from backend.app.storage import CleanupError, TempDirStager
from pipeline.io_types import PredictionResult


def png_bytes(color=(200, 30, 30), size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakePredictor:
    def __init__(self, url="https://example/out.png", error=None):
        self.url = url
        self.error = error
        self.requests = []
        self.paths_present = []

    def predict(self, request):
        self.requests.append(request)
        for ref in (request.person_layer, request.garment_layer):
            if ref.kind == "path":
                self.paths_present.append(os.path.exists(ref.locator))
        if self.error is not None:
            raise self.error
        return PredictionResult(result_image_url=self.url)


class RecordingStager:
    """Wraps a real stager and records what it staged and released."""

    def __init__(self, inner, fail_release=False):
        self.inner = inner
        self.backend = inner.backend
        self.fail_release = fail_release
        self.staged = []
        self.released = []

    def stage(self, image, namespace):
        ref = self.inner.stage(image, namespace)
        self.staged.append(ref)
        return ref

    def release(self, ref):
        self.released.append(ref)
        if self.fail_release:
            raise CleanupError(f"cannot delete {ref.locator}")
        self.inner.release(ref)


@pytest.fixture
def person_png():
    return png_bytes((200, 30, 30))


@pytest.fixture
def garment_png():
    return png_bytes((30, 30, 200))


@pytest.fixture
def scratch_dir(tmp_path):
    return str(tmp_path / "scratch")


@pytest.fixture
def predictor():
    return FakePredictor()


@pytest.fixture
def stager(scratch_dir):
    return RecordingStager(TempDirStager(scratch_dir))


@pytest.fixture
def relay_config(scratch_dir):
    return RelayConfig(staging_backend="tempdir", scratch_dir=scratch_dir, max_upload_mb=1)


@pytest.fixture
def client(relay_config, stager, predictor):
    app = create_app(relay_config, stager=stager, predictor=predictor)
    return TestClient(app)
