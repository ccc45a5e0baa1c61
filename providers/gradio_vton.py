from __future__ import annotations

import logging
import mimetypes
import os
import tempfile
import time
from collections.abc import Mapping
from typing import Any, Callable, Optional

from gradio_client import Client, handle_file

from pipeline.io_types import ImageReference, PredictionRequest, PredictionResult


logger = logging.getLogger(__name__)


class PredictionError(Exception):
    pass


def tryon_arguments(request: PredictionRequest, person: Any, garment: Any) -> tuple:
    """Positional arguments of the IDM-VTON ``/tryon`` endpoint."""
    return (
        {"background": person, "layers": [], "composite": None},
        garment,
        request.prompt,
        request.use_mask,
        request.auto_mask,
        request.denoising_steps,
        request.seed,
    )


def extract_result_url(result: Any) -> str:
    items = [result] if isinstance(result, Mapping) else result
    if not isinstance(items, (list, tuple)) or not items:
        raise PredictionError(f"Unexpected predictor response: {type(result).__name__}")
    first = items[0]
    url = first.get("url") if isinstance(first, Mapping) else None
    if not isinstance(url, str) or not url:
        raise PredictionError("Predictor response has no result URL")
    return url


class GradioTryOn:
    """
    Calls a hosted IDM-VTON Gradio space.
    - A new client session is opened for every prediction; nothing is pooled.
    - Outputs are not downloaded, so each output item carries a ``url``.
    - Never retries; callers decide whether to run the whole request again.
    """

    def __init__(
        self,
        space: str = "yisol/IDM-VTON",
        api_name: str = "/tryon",
        hf_token: Optional[str] = None,
        client_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.space = space
        self.api_name = api_name
        self.hf_token = hf_token
        self.client_factory = client_factory or Client

    @classmethod
    def from_config(cls, cfg) -> "GradioTryOn":
        return cls(space=cfg.predictor_space, api_name=cfg.predictor_api_name, hf_token=cfg.hf_token)

    def connect(self) -> Any:
        kwargs: dict[str, Any] = {"download_files": False, "verbose": False}
        if self.hf_token:
            kwargs["token"] = self.hf_token
        return self.client_factory(self.space, **kwargs)

    def _file_for(self, ref: ImageReference, spool_dir: str, name: str) -> Any:
        if ref.kind == "bytes":
            ext = mimetypes.guess_extension(ref.content_type or "") or ".png"
            path = os.path.join(spool_dir, name + ext)
            with open(path, "wb") as f:
                f.write(ref.content or b"")
            return handle_file(path)
        return handle_file(ref.locator)

    def predict(self, request: PredictionRequest) -> PredictionResult:
        t0 = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="tryon-") as spool:
            try:
                person = self._file_for(request.person_layer, spool, "person")
                garment = self._file_for(request.garment_layer, spool, "garment")
                client = self.connect()
                result = client.predict(*tryon_arguments(request, person, garment), api_name=self.api_name)
            except Exception as e:  # noqa: BLE001
                raise PredictionError(str(e) or e.__class__.__name__) from e
        url = extract_result_url(result)
        logger.info("Prediction from %s finished in %.1fs", self.space, time.monotonic() - t0)
        return PredictionResult(result_image_url=url)
