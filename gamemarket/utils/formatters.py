# gamemarket/utils/formatters.py
from datetime import datetime
import pytz
from decimal import Decimal, ROUND_HALF_UP
from ..config import Config

CENTS = Decimal("0.01")

def to_money(amount) -> Decimal:
    """Round to cents, half up"""
    return Decimal(str(amount)).quantize(CENTS, rounding=ROUND_HALF_UP)

def format_price(amount: Decimal) -> str:
    """Render as Brazilian reais, e.g. R$ 1.234,56"""
    text = f"{to_money(amount):,.2f}"
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")

def format_datetime(dt: datetime) -> str:
    """Render in the shop timezone"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    local_time = dt.astimezone(local_tz)
    return local_time.strftime("%d/%m/%Y %H:%M")

def format_remaining(deadline: datetime, now: datetime) -> str:
    """Time left until a deadline, as '5h 12min'"""
    seconds = int((deadline - now).total_seconds())
    if seconds <= 0:
        return "expired"
    hours, rest = divmod(seconds, 3600)
    return f"{hours}h {rest // 60}min"
