from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str

    ENV: str
    LOG_LEVEL: str = "INFO"
    JWT_SECRET: str
    JWT_ISSUER: str

    ACCESS_TTL_MIN: int = 15
    REFRESH_TTL_DAYS: int = 30

    COOKIE_DOMAIN: str | None = None
    COOKIE_SECURE: bool = False

    ADMIN_EMAIL: str

    # signs bonus download links and newsletter links
    BONUS_TOKEN_SECRET: str | None = None
    SITE_URL: str = "https://ai-born.org"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USER: str | None = None
    SMTP_PASSWORD: str | None = None
    MAIL_FROM: str = "AI-Born <hello@ai-born.org>"

    OPENAI_API_KEY: str | None = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TIMEOUT_S: float = 60.0

    AWS_TEXTRACT_REGION: str | None = None

    STORAGE_BACKEND: str = "local"  # local|s3
    UPLOAD_DIR: str = "./data/uploads"
    S3_BUCKET: str | None = None
    S3_REGION: str | None = None
    ASSETS_DIR: str = "./data/bonus-pack"

    REDIS_URL: str | None = None

    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024
    OCR_MAX_ATTEMPTS: int = 1

    EXPECTED_BOOK_TITLE: str = "AI-Born"
    PURCHASE_MAX_AGE_MONTHS: int = 6
    HARDCOVER_PRICE_RANGE: tuple[float, float] = (15.0, 100.0)
    PAPERBACK_PRICE_RANGE: tuple[float, float] = (10.0, 40.0)
    EBOOK_PRICE_RANGE: tuple[float, float] = (5.0, 30.0)
    AUDIOBOOK_PRICE_RANGE: tuple[float, float] = (10.0, 50.0)
    KNOWN_RETAILERS: list[str] = [
        "Amazon",
        "Barnes & Noble",
        "Bookshop.org",
        "Apple Books",
        "Google Play",
        "Kobo",
        "Audible",
        "Waterstones",
        "Foyles",
        "Blackwell's",
        "Books-A-Million",
        "Indigo",
        "Powell's",
        "Target",
        "Walmart",
    ]

    @property
    def is_prod(self) -> bool:
        return self.ENV.lower() == "prod"


settings = Settings()
