from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Portal REST collaborator
    api_base_url: str = "http://localhost:5000/api"
    http_timeout_seconds: float = 30.0

    # Token persistence
    token_storage: str = "file"  # memory | file | redis
    token_storage_key: str = "token"
    token_file: str = "~/.claimgate/session.json"

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # OTP challenge
    otp_cooldown_seconds: int = 120
    otp_validity_seconds: int = 120
    otp_code_length: int = 6
    mobile_number_length: int = 10

    # Audit
    audit_sink: str = "log"  # memory | log | redis
    audit_stream: str = "claimgate:audit"
    audit_max_attempts: int = 5
    audit_retry_delay_seconds: float = 0.5

    # Route redirects
    login_path: str = "/login"
    public_path: str = "/"

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"  # json | text

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _validate_production(self):
        if self.environment == "production":
            if self.token_storage == "memory":
                raise ValueError(
                    "Production requires a durable token storage (file or redis)"
                )
            if self.audit_sink == "memory":
                raise ValueError(
                    "Production must not keep the audit trail in memory"
                )
            if not self.api_base_url.startswith("https://"):
                raise ValueError(
                    "Production requires an HTTPS api_base_url"
                )
        return self


settings = Settings()
