from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="QUIZAI_", extra="ignore")

    provider: Literal["openai", "claude"] = "openai"
    gen_model: Optional[str] = None  # empty = provider default
    ocr_model: Optional[str] = None

    anon_daily_limit: int = 5
    rate_window_hours: int = 24

    max_generation_retries: int = 2
    retry_base_delay_ms: int = 1500
    progress_tick_ms: int = 400
    progress_step: int = 5
    progress_ceiling: int = 85

    state_dir: str = "./.quizai_state"
    quiz_dir: str = "./.quizai_quizzes"
    max_upload_bytes: int = 25 * 1024 * 1024

    log_level: str = "INFO"
    log_dir: str = "./.quizai_logs"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 5

settings = Settings()
