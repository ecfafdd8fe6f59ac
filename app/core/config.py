from pydantic_settings import BaseSettings, SettingsConfigDict
from decimal import Decimal
from pydantic import field_validator


class Settings(BaseSettings):
    # Database settings (embedded SQLite by default)
    DATABASE_URL: str = 'sqlite:///./caja360.db'
    DATABASE_ECHO: bool = False

    # Invoice numbering
    INVOICE_PREFIX: str = 'FAC'
    INVOICE_PATTERN: str = '{PREFIX}-{NUMBER}'  # Tokens: {PREFIX} {NUMBER} {YEAR} {MONTH} {CLIENT}
    INVOICE_NUMBER_DIGITS: int = 8

    # Payments
    PAYMENT_TOLERANCE: Decimal = Decimal('0.01')
    # keep: los pagos quedan intactos al anular | void: se marcan como anulados
    CANCELLED_INVOICE_PAYMENT_POLICY: str = 'keep'

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "DATABASE_ECHO", mode="before")
    @classmethod
    def parse_bool(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("CANCELLED_INVOICE_PAYMENT_POLICY", mode="before")
    @classmethod
    def parse_payment_policy(cls, v):
        value = str(v).lower().strip('"').strip("'")
        if value not in ("keep", "void"):
            raise ValueError("CANCELLED_INVOICE_PAYMENT_POLICY debe ser 'keep' o 'void'")
        return value

settings = Settings()
