from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./party_rentals.db"

    # Admin tokens are issued elsewhere; this service only verifies them
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"

    REDIS_URL: str = "redis://localhost:6379/0"
    PRODUCT_CACHE_SECONDS: int = 300

    # --- Kafka (booking event stream) ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_BOOKING_TOPIC: str = "booking_events"

    # --- Payments ---
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # --- Email ---
    RESEND_API_KEY: str = ""
    EMAIL_FROM_ADDRESS: str = "Party Rentals <bookings@example.com>"
    ADMIN_NOTIFY_EMAIL: str = ""
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # --- Booking rules ---
    BUSINESS_TIMEZONE: str = "America/New_York"
    BOOKING_CUTOFF_HOUR: int = 12
    BOOKING_HORIZON_DAYS: int = 183
    DEPOSIT_AMOUNT: float = 50.0
    WEEKEND_UPSELL_THRESHOLD: float = 100.0

    # --- Scheduler ---
    PENDING_EXPIRY_MINUTES: int = 45
    SCHEDULER_POLL_SECONDS: int = 300

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
