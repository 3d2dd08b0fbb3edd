from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Sistema de Pagamentos API"
    app_version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "INFO"
    allowed_origins: str = "http://localhost:4200"

    @property
    def parsed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    # MongoDB settings
    mongo_uri: str = ""
    mongo_db_name: str = "sistema_pagamentos"

    # Card data at rest (AES-256-GCM, must be exactly 32 bytes)
    encryption_key: str = ""

    # JWT settings
    jwt_secret: str = "change_me_access"
    jwt_refresh_secret: str = "change_me_refresh"
    jwt_expires_minutes: int = 60
    jwt_refresh_expires_days: int = 7

    # Rate limiting
    rate_limit_window_seconds: int = 15 * 60
    rate_limit_max_requests: int = 100

    @property
    def rate_limit(self) -> str:
        return f"{self.rate_limit_max_requests}/{self.rate_limit_window_seconds} seconds"

    # Payment settings
    pix_expiration_minutes: int = 30
    installment_interest_monthly: float = 0.03
    gateway_approval_rate: float = 0.85
    gateway_timeout_seconds: float = 30.0

    # External card validation
    external_card_validation_url: str = ""
    external_card_validation_api_key: str = ""
    external_card_validation_timeout_ms: int = 4000
    external_card_validation_provider: str = "external-validator"
    card_fraud_score_threshold: int = 80

    # Feature flags
    auto_login_after_register: bool = False
    passwordless_register: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
