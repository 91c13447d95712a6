import os
from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    kafka_bootstrap: str = os.getenv("KAFKA_BOOTSTRAP", "kafka:9092")
    order_events_topic: str = os.getenv("ORDER_EVENTS_TOPIC", "order_events")
    earnings_events_topic: str = os.getenv("EARNINGS_EVENTS_TOPIC", "earnings_events")

    mysql_user: str = os.getenv("MYSQL_USER", "root")
    mysql_password: str = os.getenv("MYSQL_PASSWORD", "root")
    mysql_host: str = os.getenv("MYSQL_HOST", "mysql")
    mysql_db: str = os.getenv("MYSQL_DB", "earnings")
    mysql_port: int = int(os.getenv("MYSQL_PORT", "3306"))
    database_url: Optional[str] = os.getenv("EARNINGS_DATABASE_URL")

    currency: str = os.getenv("CURRENCY", "ZAR")
    minimum_payout_amount: Decimal = Decimal(os.getenv("MINIMUM_PAYOUT_AMOUNT", "500.00"))
    default_commission_rate: Decimal = Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "0.15"))
    ledger_max_attempts: int = int(os.getenv("LEDGER_MAX_ATTEMPTS", "3"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"mysql+mysqlconnector://{self.mysql_user}:{self.mysql_password}@{self.mysql_host}:{self.mysql_port}/{self.mysql_db}"

settings = Settings()
