from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Maharat Learning Platform'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Riyadh'
    database_url: str = 'sqlite:///./maharat.db'
    auth_secret: str = 'change-me'
    auth_session_expiry_hours: int = 12
    auth_min_password_length: int = 6
    messages_index_retry_seconds: float = 30.0
    notification_feed_limit: int = 5
    store_index_build_seconds: int = 0
    store_index_poll_seconds: int = 5
    default_site_name: str = 'Maharat Learning Platform'
    default_ai_tools_url: str = 'https://app.magicschool.ai/tools'
    default_student_name: str = 'Student'
    db_slow_query_ms: int = 100
    metrics_slow_ms: int = 200


settings = Settings()
