#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Configuration - Loads application settings from environment variables.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# Settings.cors_origins_list: Returns list of allowed CORS origins.
# Settings.firebase_enabled: True when Firebase service account is configured.
# Settings.firebase_credentials: Builds Firebase credentials dict.
# get_settings: Returns cached Settings instance.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# Settings: Configuration model matching environment variables.

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# pydantic_settings: Settings management.
# functools.lru_cache: Caching.
# typing: Type hints.

from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Literal


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Server
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000

    # Storage
    store_backend: Literal["mongo", "memory"] = "mongo"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "parley"
    store_retry_attempts: int = 3
    store_retry_delay_seconds: float = 0.2

    # Firebase Admin SDK
    firebase_project_id: str = ""
    firebase_service_account_client_email: str = ""
    firebase_service_account_private_key: str = ""
    firebase_service_account_private_key_id: str = ""

    # Matchmaking
    matchmaking_max_scan: int = 256  # Max compatibility checks per pairing attempt
    matchmaking_retry_interval_seconds: int = 5  # Periodic re-pairing of waiting tickets

    # Random chat sessions
    ended_session_retention_seconds: int = 300
    session_cleanup_interval_seconds: int = 60

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def firebase_enabled(self) -> bool:
        return bool(self.firebase_project_id and self.firebase_service_account_private_key)

    @property
    def firebase_credentials(self) -> dict:
        """Build Firebase credentials dict from env vars"""
        return {
            "type": "service_account",
            "project_id": self.firebase_project_id,
            "private_key_id": self.firebase_service_account_private_key_id,
            "private_key": self.firebase_service_account_private_key.replace("\\n", "\n"),
            "client_email": self.firebase_service_account_client_email,
            "client_id": "",
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
            "client_x509_cert_url": f"https://www.googleapis.com/robot/v1/metadata/x509/{self.firebase_service_account_client_email}"
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
