"""Configuration and environment settings for the statement pipeline."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for the statement pipeline."""

    llm_api_key: str
    llm_base_url: str | None = None
    llm_model: str = "llama-3.3-70b-versatile"
    llm_vision_model: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    llm_light_model: str = "llama-3.1-8b-instant"
    llm_temperature: float = 0.1
    page_max_tokens: int = 4096
    document_max_tokens: int = 16000
    categorize_max_tokens: int = 8000
    validation_max_tokens: int = 8000

    page_timeout: float = 60.0
    document_timeout: float = 240.0
    timeout_retries: int = 2
    timeout_retry_delay: float = 2.0

    page_retries: int = 3
    page_retry_base_delay: float = 2.0
    inter_page_delay: float = 1.5
    page_vision_min_bytes: int = 100 * 1024
    light_model_min_bytes: int = 150 * 1024
    min_text_chars: int = 100
    direct_retries: int = 1

    categorize_batch_size: int = 10
    categorize_retries: int = 2
    categorize_retry_base_delay: float = 2.0
    categorize_max_workers: int = 1
    validation_batch_size: int = 15

    database_url: str = "sqlite:///jobs/statements.db"
    local_storage_root: str = "uploads"
    s3_endpoint_url: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_bucket: str = "bank-statements"
    s3_folder_prefix: str = ""
    use_s3: bool = False

    log_file: str = "jobs/ai_processing.log"
    server_host: str = "127.0.0.1"
    server_port: int = 8000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


def get_settings() -> "Settings":
    """Return an instance of the application settings."""
    return Settings()
