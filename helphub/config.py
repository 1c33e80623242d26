import os
from dotenv import load_dotenv

load_dotenv()


def env_flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///helphub.db")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

    ACCESS_EXPIRES = int(os.getenv("ACCESS_EXPIRES", 86400))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    SOCKETIO_ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE", "threading")

    # request throttling, keyed by client address
    RATELIMIT_ENABLED = env_flag("RATELIMIT_ENABLED", "true")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "1000 per 15 minutes")
    RATELIMIT_HEADERS_ENABLED = True
    AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "50 per 15 minutes")

    # email (smtp) and sms (twilio) dispatch
    MAIL_ENABLED = env_flag("MAIL_ENABLED")
    SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.getenv("SMTP_PORT", 465))
    SMTP_USE_SSL = env_flag("SMTP_USE_SSL", "true")
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "no-reply@helphub.local")
    EMAIL_FROM_NAME = os.getenv("EMAIL_FROM_NAME", "HelpHub")

    SMS_ENABLED = env_flag("SMS_ENABLED")
    TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

    TYPING_TIMEOUT_SECONDS = 5
    MESSAGE_MAX_LENGTH = 1000
    DEFAULT_MESSAGE_PAGE_SIZE = 50
    DEFAULT_PAGE_SIZE = 10
    MAX_IMAGES_PER_UPLOAD = 5


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "100 per 15 minutes")
    AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "5 per 15 minutes")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    MAIL_ENABLED = False
    SMS_ENABLED = False
    SOCKETIO_ASYNC_MODE = "threading"
    LOG_LEVEL = "DEBUG"
    RATELIMIT_ENABLED = False


CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
