from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import List


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # .env next to the process, or one level up when run from backend/
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # --- Server ---
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # --- Room defaults (used for any field a client omits from roomConfig) ---
    MAX_PLAYERS_PER_ROOM: int = 6
    DEFAULT_MIN_PLAYERS: int = 1
    DEFAULT_COUNTDOWN_SECONDS: int = 30
    PLAYER_TIMEOUT_ENABLED: bool = True
    DEFAULT_PLAYER_TIMEOUT_SECONDS: int = 30
    DEFAULT_AUTO_START: bool = False

    # --- Game pacing ---
    NAME_UPDATE_COOLDOWN_SECONDS: int = 300
    # 0 resolves the dealer turn in a single step
    DEALER_DRAW_DELAY_SECONDS: float = 1.0

    # --- HTTP ---
    ROOMS_RATE_LIMIT: str = "60/minute"

    # --- Observability ---
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"  # development | staging | production

    # --- CORS (comma-separated string parsed into a list) ---
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:7456"

    @field_validator("MAX_PLAYERS_PER_ROOM")
    @classmethod
    def max_players_in_table_range(cls, v: int) -> int:
        if not 1 <= v <= 6:
            raise ValueError("MAX_PLAYERS_PER_ROOM must be between 1 and 6")
        return v

    @field_validator("DEALER_DRAW_DELAY_SECONDS", "NAME_UPDATE_COOLDOWN_SECONDS")
    @classmethod
    def must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError("value must not be negative")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def log_level_must_be_valid(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}")
        return v.upper()

    def get_cors_origins(self) -> List[str]:
        """Parse comma-separated CORS_ORIGINS into a list."""
        return [
            origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()
        ]


settings = Settings()
