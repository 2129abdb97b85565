import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _csv(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


PORT = int(os.getenv("PORT", "3000"))
CORS_ORIGINS = _csv(os.getenv("CORS_ORIGINS", "*"))
# Coarse request ceiling; image data URLs travel inside the JSON body.
MAX_BODY_BYTES = int(os.getenv("MAX_BODY_BYTES", str(10 * 1024 * 1024)))
STATIC_DIR = os.getenv("STATIC_DIR") or os.path.join(os.getcwd(), "data")
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(STATIC_DIR, 'dev.sqlite')}"
USE_S3 = _flag("USE_S3")
S3_BUCKET = os.getenv("S3_BUCKET", "creations")
S3_ENDPOINT = os.getenv("S3_ENDPOINT")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
S3_REGION = os.getenv("S3_REGION", "auto")
BLOB_PUBLIC_BASE_URL = os.getenv("BLOB_PUBLIC_BASE_URL")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
FAL_KEY = os.getenv("FAL_KEY")
IMAGE_PROVIDERS = _csv(os.getenv("IMAGE_PROVIDERS", "openai,fal"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "180"))
UPLOAD_TIMEOUT_SECONDS = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "60"))
SHUTDOWN_GRACE_SECONDS = float(os.getenv("SHUTDOWN_GRACE_SECONDS", "30"))


@dataclass
class Settings:
    """Process-wide configuration, built once at startup and passed down."""

    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    max_body_bytes: int = 10 * 1024 * 1024
    static_dir: str = "data"
    database_url: str = "sqlite://"
    use_s3: bool = False
    s3_bucket: str = "creations"
    s3_endpoint: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_region: str = "auto"
    blob_public_base_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    fal_key: Optional[str] = None
    image_providers: List[str] = field(default_factory=lambda: ["openai", "fal"])
    provider_timeout_seconds: float = 180.0
    upload_timeout_seconds: float = 60.0
    shutdown_grace_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            cors_origins=CORS_ORIGINS,
            max_body_bytes=MAX_BODY_BYTES,
            static_dir=STATIC_DIR,
            database_url=DATABASE_URL,
            use_s3=USE_S3,
            s3_bucket=S3_BUCKET,
            s3_endpoint=S3_ENDPOINT,
            s3_access_key=S3_ACCESS_KEY,
            s3_secret_key=S3_SECRET_KEY,
            s3_region=S3_REGION,
            blob_public_base_url=BLOB_PUBLIC_BASE_URL,
            openai_api_key=OPENAI_API_KEY,
            openai_model=OPENAI_MODEL,
            fal_key=FAL_KEY,
            image_providers=IMAGE_PROVIDERS,
            provider_timeout_seconds=PROVIDER_TIMEOUT_SECONDS,
            upload_timeout_seconds=UPLOAD_TIMEOUT_SECONDS,
            shutdown_grace_seconds=SHUTDOWN_GRACE_SECONDS,
        )

    @property
    def s3_configured(self) -> bool:
        return bool(
            self.use_s3
            and self.s3_bucket
            and self.s3_access_key
            and self.s3_secret_key
            and self.s3_endpoint
        )
