from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Foracle Assistant API"
    database_url: str = ""
    # Comma-separated origins for CORS. Use "*" only for local demos.
    cors_allow_origins: str = "*"
    jwt_secret_key: str = ""
    jwt_algorithm: str = "HS256"
    log_level: str = "INFO"

    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout_seconds: float = 30.0
    openai_max_retries: int = 2

    # one of: voyage, openai, gemini
    embeddings_provider: str = "voyage"
    voyage_api_key: str = ""
    gemini_api_key: str = ""

    daily_message_quota: int = 50
    thread_rate_limit_window_seconds: float = 60.0
    thread_rate_limit_max_messages: int = 10
    thread_min_interval_seconds: float = 2.0
    # "today" for quotas and prompts is one fixed zone for every user.
    rate_limit_timezone: str = "Asia/Singapore"

    max_tool_rounds: int = 5
    chat_timeout_seconds: float = 60.0
    tool_timeout_seconds: float = 15.0
    use_retrieval_context: bool = True

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
