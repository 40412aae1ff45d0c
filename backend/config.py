from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    translator_model: str = "gemini-2.5-flash"
    translator_temperature: float = 0.9
    translator_max_tokens: int = 1000

    # Round clock (whole seconds shown to players)
    question_seconds: int = 20
    answer_seconds: int = 30
    # Deadline for the translation call; independent of the round clock
    translation_timeout_seconds: float = 10.0
    max_cycles: int = 10

    # Best-effort room snapshots (Firestore). Off unless explicitly enabled.
    snapshot_enabled: bool = False
    google_cloud_project: str = ""
    firestore_emulator_host: Optional[str] = None

    # CORS origins; set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]
    # Extra production origin; appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
