from __future__ import annotations

from prometheus_client import Counter, Histogram

tryon_requests = Counter("tryon_requests_total", "Try-on relay requests by outcome", ["outcome"])
images_staged = Counter("tryon_images_staged_total", "Images staged for the predictor", ["backend"])
release_failures = Counter("tryon_release_failures_total", "Staged images that could not be released", ["backend"])
prediction_seconds = Histogram(
    "tryon_prediction_seconds",
    "Wall time of remote try-on predictions",
    buckets=(1, 5, 10, 20, 30, 45, 60, 90, 120, 180, 300),
)
