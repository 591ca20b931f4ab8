from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Routine Insights"
    DATABASE_URL: str = "sqlite:///data/routine_insights.db"
    DATA_DIR: Path = Path("data")
    REFERENCE_TABLE_PATH: Path = Path(__file__).resolve().parent / "reference" / "reference_steps.json"
    DEFAULT_TIMEZONE: str = "UTC"
    CORS_ORIGINS: list[str] = [
        "http://localhost:8081",
        "http://localhost:19006",
    ]

    # Scoring / streaks
    STREAK_QUALIFYING_SCORE: float = 7.0
    STREAK_MAX_LOOKBACK_DAYS: int = 365

    # Insights
    CORRELATION_MIN_RATED_WEEKS: int = 4
    CORRELATION_SIGNIFICANCE_THRESHOLD: float = 0.5
    PATTERN_WINDOW_DAYS: int = 30
    MONTHLY_ENOUGH_DATA_DAYS: int = 28

    # Time-vs-effectiveness estimates
    EFFECT_WAITING_SECONDS_PER_TIMER: int = 30
    EFFECT_SECONDS_PER_PRODUCT: int = 45
    EFFECT_AVERAGE_EXERCISE_MINUTES: float = 12.0
    EFFECT_EXERCISE_TIME_FRACTION: float = 0.5
    EFFECT_WAITING_MAX_LOSS_PERCENT: float = 30.0
    EFFECT_EXERCISE_MAX_LOSS_PERCENT: float = 50.0
    EFFECT_POINTS_PER_APPLICATION: int = 14
    SKIP_IMPACT_PRODUCT_POINTS: float = 0.8
    SKIP_IMPACT_TIMER_POINTS: float = 0.3
    SKIP_IMPACT_EARLY_END_POINTS: float = 0.2

    # Notification defaults (HH:MM local)
    DEFAULT_MORNING_TIME: str = "08:00"
    DEFAULT_EVENING_TIME: str = "21:00"
    DEFAULT_HARDEST_DAY_TIME: str = "09:00"
    NOTIFICATION_MAX_LIKELIHOOD_PERCENT: int = 37
    NOTIFICATION_SATURATION_MINUTES: int = 240

    # Persistence / background work
    STORE_UPDATE_MAX_RETRIES: int = 5
    BACKGROUND_TASK_MAX_ATTEMPTS: int = 1
    BACKGROUND_QUEUE_MAX_SIZE: int = 1000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_configuration(self) -> None:
        errors: list[str] = []
        if not 0.0 <= self.STREAK_QUALIFYING_SCORE <= 10.0:
            errors.append("STREAK_QUALIFYING_SCORE must be between 0 and 10")
        if self.STREAK_MAX_LOOKBACK_DAYS < 1:
            errors.append("STREAK_MAX_LOOKBACK_DAYS must be positive")
        if self.CORRELATION_MIN_RATED_WEEKS < 1:
            errors.append("CORRELATION_MIN_RATED_WEEKS must be positive")
        if self.CORRELATION_SIGNIFICANCE_THRESHOLD < 0:
            errors.append("CORRELATION_SIGNIFICANCE_THRESHOLD must not be negative")
        if self.PATTERN_WINDOW_DAYS < 1:
            errors.append("PATTERN_WINDOW_DAYS must be positive")
        if self.BACKGROUND_TASK_MAX_ATTEMPTS < 1:
            errors.append("BACKGROUND_TASK_MAX_ATTEMPTS must be at least 1")
        if not self.REFERENCE_TABLE_PATH.exists():
            errors.append(f"REFERENCE_TABLE_PATH does not exist: {self.REFERENCE_TABLE_PATH}")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
