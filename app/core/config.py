import os
from dotenv import load_dotenv
load_dotenv()


def _mysql_dsn() -> str:
    return (
        f"mysql+aiomysql://{os.getenv('MYSQL_USER','root')}:{os.getenv('MYSQL_PASSWORD','123456')}"
        f"@{os.getenv('MYSQL_HOST','127.0.0.1')}:{os.getenv('MYSQL_PORT','3306')}/{os.getenv('MYSQL_DB','bicho')}?charset=utf8mb4"
    )


class Settings:
    APP_NAME = os.getenv("APP_NAME", "bicho-ledger")
    APP_VERSION = os.getenv("APP_VERSION", "0.1.0")
    APP_ENV = os.getenv("APP_ENV", "dev")
    APP_HOST = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT = int(os.getenv("APP_PORT", "8000"))
    TZ = os.getenv("TZ", "America/Sao_Paulo")

    # 逗号分隔；"*" 表示全部放行
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    LEDGER_LOG_LEVEL = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()

    # DATABASE_URL wins; otherwise the MySQL parts are assembled
    DATABASE_URL = os.getenv("DATABASE_URL") or _mysql_dsn()

    JWT_SECRET = os.getenv("JWT_SECRET", "change_me")
    JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "43200"))
    PASSWORD_SALT = os.getenv("PASSWORD_SALT", "change_me")
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    BET_LOCK_AHEAD_SECONDS = int(os.getenv("BET_LOCK_AHEAD_SECONDS", "60"))
    RESERVE_MAX_ATTEMPTS = int(os.getenv("RESERVE_MAX_ATTEMPTS", "3"))
    SETTLEMENT_CONCURRENCY = int(os.getenv("SETTLEMENT_CONCURRENCY", "4"))

    BONUS_EXPIRY_POLL_SECONDS = int(os.getenv("BONUS_EXPIRY_POLL_SECONDS", "60"))
    SETTLE_STRAGGLERS_POLL_SECONDS = int(os.getenv("SETTLE_STRAGGLERS_POLL_SECONDS", "30"))
    RECONCILE_POLL_SECONDS = int(os.getenv("RECONCILE_POLL_SECONDS", "600"))

    # draw-result feed, polled only when set
    RESULT_FEED_URL = os.getenv("RESULT_FEED_URL", "")
    RESULT_FEED_POLL_SECONDS = int(os.getenv("RESULT_FEED_POLL_SECONDS", "15"))

    # payout gateway; empty means outcomes only arrive by webhook
    PAYOUT_GATEWAY_URL = os.getenv("PAYOUT_GATEWAY_URL", "")
    PAYOUT_GATEWAY_TIMEOUT = float(os.getenv("PAYOUT_GATEWAY_TIMEOUT", "10"))

    # defaults for the system_settings row
    SIGNUP_BONUS_ENABLED = os.getenv("SIGNUP_BONUS_ENABLED", "0") == "1"
    SIGNUP_BONUS_AMOUNT = os.getenv("SIGNUP_BONUS_AMOUNT", "10")
    SIGNUP_BONUS_ROLLOVER = os.getenv("SIGNUP_BONUS_ROLLOVER", "3")
    SIGNUP_BONUS_EXPIRATION_DAYS = int(os.getenv("SIGNUP_BONUS_EXPIRATION_DAYS", "7"))

    FIRST_DEPOSIT_BONUS_ENABLED = os.getenv("FIRST_DEPOSIT_BONUS_ENABLED", "1") == "1"
    FIRST_DEPOSIT_BONUS_PERCENTAGE = os.getenv("FIRST_DEPOSIT_BONUS_PERCENTAGE", "100")
    FIRST_DEPOSIT_BONUS_MAX_AMOUNT = os.getenv("FIRST_DEPOSIT_BONUS_MAX_AMOUNT", "200")
    FIRST_DEPOSIT_BONUS_ROLLOVER = os.getenv("FIRST_DEPOSIT_BONUS_ROLLOVER", "3")
    FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS = int(os.getenv("FIRST_DEPOSIT_BONUS_EXPIRATION_DAYS", "7"))

    ALLOW_BONUS_BETS = os.getenv("ALLOW_BONUS_BETS", "1") == "1"
    ALLOW_WITHDRAWALS = os.getenv("ALLOW_WITHDRAWALS", "1") == "1"

    MIN_BET_AMOUNT = os.getenv("MIN_BET_AMOUNT", "0.50")
    MAX_BET_AMOUNT = os.getenv("MAX_BET_AMOUNT", "5000")
    MAX_PAYOUT = os.getenv("MAX_PAYOUT", "50000")

settings = Settings()
