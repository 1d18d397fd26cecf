# gamemarket/config.py
import os
import logging
from decimal import Decimal
from pathlib import Path
from dotenv import load_dotenv
from typing import List, Optional

# Load environment variables
load_dotenv()

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

class Config:
    """Configuration settings for the marketplace service"""

    # Database settings
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DB_POOL_MIN: int = int(os.getenv("DB_POOL_MIN", "2"))
    DB_POOL_MAX: int = int(os.getenv("DB_POOL_MAX", "10"))

    # Payment gateway (Mercado Pago)
    MERCADOPAGO_ACCESS_TOKEN: str = os.getenv("MERCADOPAGO_ACCESS_TOKEN", "")
    MERCADOPAGO_API_URL: str = os.getenv("MERCADOPAGO_API_URL", "https://api.mercadopago.com")
    MERCADOPAGO_WEBHOOK_SECRET: str = os.getenv("MERCADOPAGO_WEBHOOK_SECRET", "")
    GATEWAY_TIMEOUT: float = float(os.getenv("GATEWAY_TIMEOUT", "30"))
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080")

    # Back office bot
    TELEGRAM_TOKEN: str = os.getenv("TELEGRAM_TOKEN", "")
    ADMIN_IDS: List[int] = [
        int(id_) for id_ in os.getenv("ADMIN_IDS", "").split(",")
        if id_.strip().isdigit()
    ]

    # Web server
    WEB_HOST: str = os.getenv("WEB_HOST", "0.0.0.0")
    WEB_PORT: int = int(os.getenv("WEB_PORT", "8080"))

    # Refund proof storage
    PROOF_STORAGE_DIR: Path = Path(os.getenv("PROOF_STORAGE_DIR", str(BASE_DIR / "storage" / "refund-proofs")))
    PROOF_PUBLIC_URL: str = os.getenv("PROOF_PUBLIC_URL", "http://localhost:8080/storage/refund-proofs")

    # Lifecycle timings
    PAYMENT_POLL_INTERVAL: float = float(os.getenv("PAYMENT_POLL_INTERVAL", "5"))
    REFUND_WINDOW_HOURS: int = int(os.getenv("REFUND_WINDOW_HOURS", "48"))
    SELLER_RESPONSE_HOURS: int = int(os.getenv("SELLER_RESPONSE_HOURS", "24"))
    DEADLINE_SWEEP_INTERVAL: float = float(os.getenv("DEADLINE_SWEEP_INTERVAL", "300"))
    MIN_WITHDRAWAL_AMOUNT: Decimal = Decimal(os.getenv("MIN_WITHDRAWAL_AMOUNT", "10.00"))

    # Other settings
    TIMEZONE: str = os.getenv("TZ", "America/Sao_Paulo")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Paths
    LOG_DIR = BASE_DIR / "logs"

    @classmethod
    def validate(cls):
        """Fail fast on settings the service cannot start without"""
        if not cls.DATABASE_URL:
            raise ValueError("No DATABASE_URL set in environment")
        if not cls.MERCADOPAGO_ACCESS_TOKEN:
            raise ValueError("No MERCADOPAGO_ACCESS_TOKEN set in environment")

def setup_logging():
    """Configure logging settings"""
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    Config.LOG_DIR.mkdir(exist_ok=True)
    log_file = Config.LOG_DIR / "gamemarket.log"

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL),
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )
