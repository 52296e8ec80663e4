from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings for Rewind API"""
    
    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    environment: str = "development"
    cors_origins: List[str] = ["*"]
    
    # Database
    database_url: str = "postgresql+asyncpg://localhost/rewind"
    
    # Identity provider (Supabase)
    supabase_url: str = ""
    supabase_jwt_secret: str = ""
    jwt_audience: str = "authenticated"
    jwks_cache_ttl_seconds: int = 3600
    jwks_min_refresh_seconds: int = 30
    
    # Razorpay (empty credentials disable payments)
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    razorpay_api_url: str = "https://api.razorpay.com/v1"
    
    # AI critique / transcription
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    openai_api_key: str = ""
    openai_api_url: str = "https://api.openai.com/v1"
    whisper_model: str = "whisper-1"
    
    # Audio storage (S3-compatible)
    audio_bucket: str = "audio"
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    s3_endpoint_url: str = ""
    upload_url_expiry_seconds: int = 300
    
    # Workers
    subscription_reaper_interval_seconds: int = 3600
    analysis_max_concurrency: int = 4
    completion_max_attempts: int = 3
    
    # Product
    default_target_days: int = 90
    trial_days: int = 14
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False
    )

    @property
    def payments_enabled(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)


settings = Settings()
