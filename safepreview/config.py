"""Application configuration loaded from environment variables."""

import os
from pathlib import Path
from typing import List, Optional
from functools import lru_cache

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

APP_DATA_DIR = Path.home() / ".safepreview"


class Settings:
    """Application settings loaded from environment variables."""

    # Core settings
    DEBUG: bool = os.getenv("SAFEPREVIEW_DEBUG", "false").lower() == "true"
    HOST: str = os.getenv("SAFEPREVIEW_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("SAFEPREVIEW_PORT", "8765"))

    # Logging
    LOG_LEVEL: str = os.getenv("SAFEPREVIEW_LOG_LEVEL", "INFO")
    LOG_TO_FILE: bool = os.getenv("SAFEPREVIEW_LOG_TO_FILE", "false").lower() == "true"
    LOG_DIR: str = os.getenv("SAFEPREVIEW_LOG_DIR", "logs")

    # Secret key
    SECRET_KEY_PATH: str = os.getenv(
        "SAFEPREVIEW_SECRET_KEY_PATH", str(APP_DATA_DIR / "secret.key")
    )

    # Link policy
    ALLOWED_DOMAINS_RAW: str = os.getenv("SAFEPREVIEW_ALLOWED_DOMAINS", "")
    MAX_REDIRECTS: int = int(os.getenv("SAFEPREVIEW_MAX_REDIRECTS", "3"))

    # Network
    REQUEST_TIMEOUT: float = float(os.getenv("SAFEPREVIEW_REQUEST_TIMEOUT", "10"))
    # WhatsApp user agent gets past anti-bot protection on image CDNs
    USER_AGENT: str = os.getenv("SAFEPREVIEW_USER_AGENT", "WhatsApp/2.21.5.17 i")
    MAX_IMAGE_SIZE: int = int(os.getenv("SAFEPREVIEW_MAX_IMAGE_SIZE", "2097152"))  # 2MB
    METADATA_MAX_BYTES: int = int(os.getenv("SAFEPREVIEW_METADATA_MAX_BYTES", "1048576"))  # 1MB

    # Encryption artifacts
    CHUNK_SIZE: int = int(os.getenv("SAFEPREVIEW_CHUNK_SIZE", "65536"))
    ENCRYPTED_DIR: str = os.getenv("SAFEPREVIEW_ENCRYPTED_DIR", str(APP_DATA_DIR / "encrypted"))
    BLOB_ARTIFACT_NAME: str = os.getenv("SAFEPREVIEW_BLOB_ARTIFACT_NAME", "encrypted.txt")
    BLOB_CONTENT_TYPE: str = os.getenv("SAFEPREVIEW_BLOB_CONTENT_TYPE", "image/jpeg")
    DECRYPT_CHUNK_MODE: str = os.getenv("SAFEPREVIEW_DECRYPT_CHUNK_MODE", "streaming")

    # CORS
    CORS_ORIGINS: str = os.getenv("SAFEPREVIEW_CORS_ORIGINS", "http://localhost:8765")

    @property
    def allowed_domains(self) -> List[str]:
        """Allow-listed hostnames; empty means every host is allowed."""
        return [
            domain.strip().lower()
            for domain in self.ALLOWED_DOMAINS_RAW.split(",")
            if domain.strip()
        ]

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    def encrypted_path(self, name: Optional[str] = None) -> Path:
        """Resolve an artifact name inside the encrypted artifact directory."""
        directory = Path(self.ENCRYPTED_DIR).expanduser()
        return directory / name if name else directory


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
