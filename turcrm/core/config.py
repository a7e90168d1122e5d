from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "turcrm-backend"

    DATABASE_URL: str
    REDIS_URL: str

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:8081"

    JWT_SECRET: str = "change_me_jwt"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_MINUTES: int = 15
    REFRESH_TOKEN_TTL_DAYS: int = 30
    REFRESH_TOKEN_BYTES: int = 32

    OTP_CODE_DIGITS: int = 6
    VERIFICATION_CODE_TTL_MINUTES: int = 5
    VERIFICATION_RESEND_WINDOW_MINUTES: int = 10
    VERIFICATION_RESEND_LIMIT: int = 3
    VERIFICATION_MAX_ATTEMPTS: int = 5
    SIGNING_CODE_TTL_MINUTES: int = 5
    # Allows an SMS confirmation to sign a document that was never reviewed.
    SIGN_BY_CONFIRMATION_FROM_UNDER_REVIEW: bool = True

    SMS_PROVIDER: str = "dummy"  # dummy | mobizon | smsaero
    SMS_DRY_RUN: bool = False
    SMS_TIMEOUT_SECONDS: float = 10.0
    MOBIZON_API_KEY: str = ""
    MOBIZON_SENDER_ID: str = ""
    MOBIZON_API_URL: str = "https://api.mobizon.kz/service/message/sendsmsmessage"
    SMSAERO_EMAIL: str = ""
    SMSAERO_API_KEY: str = ""
    VERIFICATION_SMS_TEMPLATE: str = "Код подтверждения: {code}"
    SIGNING_SMS_TEMPLATE: str = "Код подписания документа: {code}"

    PUBLIC_RATE_LIMIT_WINDOW_SECONDS: int = 300
    LOGIN_RATE_LIMIT: int = 20
    REFRESH_RATE_LIMIT: int = 60
    RESEND_RATE_LIMIT: int = 10

    # Compose/infra vars that may exist in shared .env
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "turcrm"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
