from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request
from starlette.datastructures import FormData, UploadFile

from pipeline.io_types import UploadedImage


MISSING_IMAGES = "Both person and garment images are required"


class ValidationError(Exception):
    pass


def upload_size_guard(max_upload_mb: int):
    async def enforce_max_upload_size(request: Request) -> None:
        cl = request.headers.get("content-length")
        if not cl:
            return
        try:
            size = int(cl)
        except ValueError:
            return
        if size > max_upload_mb * 1024 * 1024:
            raise HTTPException(status_code=413, detail="Upload too large")

    return enforce_max_upload_size


def _file_field(form: FormData, name: str) -> Optional[UploadFile]:
    value = form.get(name)
    if not isinstance(value, UploadFile):
        return None
    return value


async def read_image_pair(form: FormData) -> tuple[UploadedImage, UploadedImage]:
    person = _file_field(form, "personImage")
    garment = _file_field(form, "garmentImage")
    if person is None or garment is None:
        raise ValidationError(MISSING_IMAGES)
    images = []
    for upload in (person, garment):
        content = await upload.read()
        if not content:
            raise ValidationError(MISSING_IMAGES)
        images.append(
            UploadedImage(
                content=content,
                content_type=upload.content_type or "image/png",
                filename=upload.filename or "upload.png",
            )
        )
    return images[0], images[1]
