from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str

    # If DEV and you hit SSL cert issues on Windows, set DB_SSL_VERIFY=false in .env
    DB_SSL_VERIFY: bool = True

    # JWT secret shared with the auth service that issues bearer tokens
    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    ENV: str = "dev"  # "dev" or "prod"

    # --- CERTIFICATE SIGNING ---
    CERTIFICATE_SIGNING_KEY: str
    CERTIFICATE_VALIDITY_YEARS: int = 1

    # --- DOCUMENT ENCRYPTION ---
    # "1:old-secret,2:current-secret" -> every listed version stays decryptable
    DOCUMENT_ENCRYPTION_KEYS: str
    DOCUMENT_ENCRYPTION_KEY_VERSION: int | None = None  # defaults to the highest version
    ALLOW_PLAINTEXT_FALLBACK: bool = False

    # --- DOCUMENT STORAGE ---
    CERTIFICATE_STORAGE_BACKEND: str = "local"  # "local" or "supabase"
    CERTIFICATE_STORAGE_DIR: str = "storage"
    CERTIFICATE_SCRATCH_DIR: str | None = None
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None
    CERTIFICATE_BUCKET: str = "certificates"

    # --- PUBLIC VERIFICATION ---
    FRONTEND_URL: str = "http://localhost:3000"
    REDIS_URL: str | None = None
    VERIFY_RATE_LIMIT: str = "30/minute"
    CORS_ORIGINS: str = "http://localhost:3000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
