import logging
import time
import uuid
from typing import Optional

from pipeline.io_types import ImageReference, PredictionRequest, PredictionResult, UploadedImage
from providers.base import TryOnPredictor
from .metrics import images_staged, prediction_seconds, release_failures
from .storage import CleanupError, ImageStager


logger = logging.getLogger(__name__)


def release_all(stager: ImageStager, staged: list[ImageReference]) -> int:
    """Release every staged reference; returns how many releases failed."""
    failures = 0
    for ref in staged:
        try:
            stager.release(ref)
        except CleanupError:
            failures += 1
            release_failures.labels(backend=stager.backend).inc()
            logger.warning("Release of %s failed", ref.key or ref.locator, exc_info=True)
    return failures


def run_tryon_job(
    person: UploadedImage,
    garment: UploadedImage,
    stager: ImageStager,
    predictor: TryOnPredictor,
    request_id: Optional[str] = None,
) -> PredictionResult:
    request_id = request_id or uuid.uuid4().hex
    staged: list[ImageReference] = []
    try:
        for role, image in (("person", person), ("garment", garment)):
            staged.append(stager.stage(image, namespace=f"{request_id}_{role}"))
            images_staged.labels(backend=stager.backend).inc()

        request = PredictionRequest(person_layer=staged[0], garment_layer=staged[1])
        t0 = time.monotonic()
        try:
            return predictor.predict(request)
        finally:
            prediction_seconds.observe(time.monotonic() - t0)
    finally:
        release_all(stager, staged)
