import mimetypes
import os
from typing import Optional

import requests
from tenacity import retry, retry_if_exception, retry_if_exception_type, stop_after_attempt, wait_exponential


class TryOnClientError(Exception):
    def __init__(self, status_code: int, error: str, details: Optional[str] = None) -> None:
        super().__init__(f"{status_code} {error}" + (f": {details}" if details else ""))
        self.status_code = status_code
        self.error = error
        self.details = details


def _is_server_error(exc: BaseException) -> bool:
    return isinstance(exc, TryOnClientError) and exc.status_code >= 500


class TryOnClient:
    def __init__(self, base_url: str = "http://127.0.0.1:8000", timeout: float = 300.0, retries: int = 1) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(1, retries)

    @staticmethod
    def _part(path: str):
        ctype = mimetypes.guess_type(path)[0] or "image/png"
        return (os.path.basename(path), open(path, "rb"), ctype)

    def _post_once(self, person_image_path: str, garment_image_path: str) -> str:
        files = {
            "personImage": self._part(person_image_path),
            "garmentImage": self._part(garment_image_path),
        }
        try:
            r = requests.post(f"{self.base_url}/api/try-on", files=files, timeout=self.timeout)
        finally:
            for _name, fh, _ctype in files.values():
                fh.close()
        if r.status_code != 200:
            try:
                body = r.json()
            except ValueError:
                body = {"error": r.text[:200]}
            raise TryOnClientError(r.status_code, body.get("error", "error"), body.get("details"))
        return r.json()["resultImage"]

    def try_on(self, person_image_path: str, garment_image_path: str) -> str:
        """Submit both images and return the result image URL.

        Server-side failures (5xx) and transport errors are retried as a whole
        request when ``retries`` > 1; bad requests never are.
        """
        call = retry(
            reraise=True,
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type(requests.RequestException) | retry_if_exception(_is_server_error),
        )(self._post_once)
        return call(person_image_path, garment_image_path)

    def health(self) -> dict:
        r = requests.get(f"{self.base_url}/health", timeout=30)
        r.raise_for_status()
        return r.json()

    def download_result(self, url: str) -> bytes:
        r = requests.get(url, timeout=self.timeout)
        r.raise_for_status()
        return r.content

    def download_result_to(self, url: str, out_path: str) -> str:
        data = self.download_result(url)
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        with open(out_path, "wb") as f:
            f.write(data)
        return out_path

