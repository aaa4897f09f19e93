import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(dotenv_path=ENV_PATH)


def get_env(name: str, default: str) -> str:
    value = os.environ.get(name, "")
    return value if value else default


class Config:
    """Runtime settings read from the environment (and .env)."""

    APP_ENV: str = get_env("APP_ENV", "production")
    DEBUG: bool = APP_ENV == "development"
    PORT: int = int(get_env("PORT", "5001"))

    DATABASE_URL: str = get_env(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'data' / 'crimereport.db'}"
    )

    LOG_FILE = Path(get_env("LOG_FILE", str(BASE_DIR / "crimereport.log")))
    UPLOAD_DIR = Path(get_env("UPLOAD_DIR", str(BASE_DIR / "uploads")))
    # multipart payloads wait here until they are uploaded or rejected
    STAGING_DIR = Path(get_env("STAGING_DIR", str(Path(tempfile.gettempdir()) / "crimereport")))

    # 'local' keeps evidence under UPLOAD_DIR, 'cloudinary' pushes it to the CDN
    MEDIA_BACKEND: str = get_env("MEDIA_BACKEND", "local")
    CLOUDINARY_CLOUD_NAME: str = os.environ.get("CLOUDINARY_CLOUD_NAME", "")
    CLOUDINARY_API_KEY: str = os.environ.get("CLOUDINARY_API_KEY", "")
    CLOUDINARY_API_SECRET: str = os.environ.get("CLOUDINARY_API_SECRET", "")
    CLOUDINARY_FOLDER: str = get_env("CLOUDINARY_FOLDER", "ReportEvidence")

    MAX_EVIDENCE_FILES: int = int(get_env("MAX_EVIDENCE_FILES", "5"))
    TRACKING_NUMBER_ATTEMPTS: int = int(get_env("TRACKING_NUMBER_ATTEMPTS", "3"))
    DEFAULT_RADIUS_KM: float = float(get_env("DEFAULT_RADIUS_KM", "5"))

    @classmethod
    def validate(cls):
        if cls.MEDIA_BACKEND not in {"local", "cloudinary"}:
            raise ValueError(f"Unknown MEDIA_BACKEND: {cls.MEDIA_BACKEND}")
        if cls.MEDIA_BACKEND == "cloudinary":
            missing = [k for k, v in {
                "CLOUDINARY_CLOUD_NAME": cls.CLOUDINARY_CLOUD_NAME,
                "CLOUDINARY_API_KEY": cls.CLOUDINARY_API_KEY,
                "CLOUDINARY_API_SECRET": cls.CLOUDINARY_API_SECRET,
            }.items() if not v]
            if missing:
                raise EnvironmentError(f"Missing secrets in .env: {', '.join(missing)}")
