from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class UploadedImage:
    content: bytes
    content_type: str = "image/png"
    filename: str = "upload.png"


@dataclass(frozen=True)
class ImageReference:
    """Staged form of an upload, valid for a single predictor call.

    kind is one of "bytes" (content held inline), "path" (local file) or
    "url" (fetchable, possibly signed, URL).
    """

    kind: str
    locator: str
    content: Optional[bytes] = None
    content_type: str = "image/png"
    expires_in: Optional[int] = None
    key: Optional[str] = None


@dataclass(frozen=True)
class PredictionRequest:
    person_layer: ImageReference
    garment_layer: ImageReference
    prompt: str = "Processing image"
    use_mask: bool = True
    auto_mask: bool = True
    denoising_steps: int = 30
    seed: int = 42


@dataclass(frozen=True)
class PredictionResult:
    result_image_url: str
