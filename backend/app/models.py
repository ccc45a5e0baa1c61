from pydantic import BaseModel


class TryOnResponse(BaseModel):
    message: str = "Images processed successfully"
    resultImage: str


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None
