# modelhub/core/config.py
from typing import List
from pathlib import Path
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # repo root
DEFAULT_MODELS_DIR = str(BASE_DIR / "models")
DEFAULT_DATASETS_DIR = str(BASE_DIR / "datasets")

class Settings(BaseSettings):
    # -------- App --------
    app_name: str = "ModelHub API"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    # -------- Database (MongoDB) --------
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "modelhub"
    mongo_timeout_ms: int = 5000

    # -------- Storage (local dev / PV) --------
    models_dir: str = DEFAULT_MODELS_DIR      # saved model artifacts
    datasets_dir: str = DEFAULT_DATASETS_DIR  # per-user dataset folders

    # -------- Auth --------
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 60 * 24  # 1 day
    jwt_issuer: str = "modelhub"

    # -------- CORS --------
    cors_origins: List[str] = ["*"]

    # -------- Training defaults --------
    default_epochs: int = 10
    default_batch_size: int = 32
    default_validation_split: float = 0.2
    max_live_models: int = 32  # runtimes kept in memory

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors_csv(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v):
        return str(v).upper() if v else "INFO"


settings = Settings()
