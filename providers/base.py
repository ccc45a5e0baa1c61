from __future__ import annotations

from typing import Protocol

from pipeline.io_types import PredictionRequest, PredictionResult


class TryOnPredictor(Protocol):
    def predict(self, request: PredictionRequest) -> PredictionResult: ...
