import os
import yaml
from dataclasses import dataclass, field
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()

CONFIG_PATH = os.environ.get("TRYON_CONFIG", "configs/relay.yaml")


class Settings:
    def __init__(self, path: Optional[str] = None) -> None:
        self._cfg: dict[str, Any] = {}
        path = path or CONFIG_PATH
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                self._cfg = yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        # Env wins over YAML
        env_key = key.upper().replace(".", "_")
        if env_key in os.environ:
            return os.environ[env_key]

        # Dot path lookup in YAML
        parts = key.split(".")
        cur: Any = self._cfg
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur


STAGING_BACKENDS = ("memory", "tempdir", "s3")


@dataclass(frozen=True)
class RelayConfig:
    """Read-only process configuration, built once at startup."""

    predictor_space: str = "yisol/IDM-VTON"
    predictor_api_name: str = "/tryon"
    hf_token: Optional[str] = None
    staging_backend: str = "memory"
    scratch_dir: str = "public/tmp"
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_bucket: str = "ai-try-on"
    s3_prefix: str = "uploads/"
    s3_url_expiry: int = 3600
    max_upload_mb: int = 10
    cors_origins: tuple[str, ...] = field(default_factory=lambda: ("*",))

    def __post_init__(self) -> None:
        if self.staging_backend not in STAGING_BACKENDS:
            raise ValueError(f"Unknown staging backend: {self.staging_backend!r}")

    @classmethod
    def from_settings(cls, s: Settings) -> "RelayConfig":
        origins = str(s.get("cors.origins", "*"))
        return cls(
            predictor_space=str(s.get("predictor.space", "yisol/IDM-VTON")),
            predictor_api_name=str(s.get("predictor.api_name", "/tryon")),
            hf_token=s.get("hf.token"),
            staging_backend=str(s.get("staging.backend", "memory")).lower(),
            scratch_dir=str(s.get("staging.scratch_dir", "public/tmp")),
            s3_endpoint_url=s.get("s3.endpoint_url"),
            s3_region=s.get("s3.region"),
            s3_access_key_id=s.get("s3.access_key_id"),
            s3_secret_access_key=s.get("s3.secret_access_key"),
            s3_bucket=str(s.get("s3.bucket", "ai-try-on")),
            s3_prefix=str(s.get("s3.prefix", "uploads/")),
            s3_url_expiry=int(s.get("s3.url_expiry", 3600)),
            max_upload_mb=int(s.get("upload.max_mb", 10)),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


settings = Settings()
