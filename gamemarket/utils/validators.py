# gamemarket/utils/validators.py
import re
from typing import List, Optional
from ..exceptions import ValidationError
from ..models.order import CardData, PaymentMethod

_NON_DIGITS = re.compile(r"\D")

def only_digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")

def normalize_coupon_code(code: str) -> str:
    return (code or "").strip().upper()

def is_valid_cpf(cpf: str) -> bool:
    """Check the two CPF verification digits"""
    digits = only_digits(cpf)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False

    numbers = [int(d) for d in digits]
    for position in (9, 10):
        total = sum(n * (position + 1 - i) for i, n in enumerate(numbers[:position]))
        check = (total * 10) % 11 % 10
        if check != numbers[position]:
            return False
    return True

def detect_card_brand(card_number: str) -> Optional[str]:
    """Gateway payment_method_id from the card number prefix"""
    digits = only_digits(card_number)
    if not digits:
        return None
    if digits.startswith(("4011", "4312", "4389", "4514", "4576", "5041", "5066", "5067", "509", "6277", "6362", "6363", "650", "6516", "6550")):
        return "elo"
    if digits.startswith(("34", "37")):
        return "amex"
    if digits.startswith(("606282", "3841")):
        return "hipercard"
    if digits[0] == "4":
        return "visa"
    if digits[:2] in {"51", "52", "53", "54", "55"} or 2221 <= int(digits[:4] or 0) <= 2720:
        return "master"
    return None

def validate_card_data(card: Optional[CardData]) -> List[str]:
    """Return missing/malformed card field names; empty means valid"""
    if card is None:
        return ["card_data"]

    problems = [
        name for name in (
            "card_number", "cardholder_name", "expiration_month", "expiration_year", "security_code", "cpf"
        )
        if not getattr(card, name).strip()
    ]
    month = card.expiration_month.strip()
    if month and not (month.isdecimal() and 1 <= int(month) <= 12):
        problems.append("expiration_month")
    year = card.expiration_year.strip()
    if year and not (year.isdecimal() and len(year) in (2, 4)):
        problems.append("expiration_year")
    if card.cpf.strip() and not is_valid_cpf(card.cpf):
        problems.append("cpf")
    return problems

def ensure_checkout_input(payment_method: PaymentMethod, card: Optional[CardData]):
    """Validation done before any gateway call"""
    if payment_method == PaymentMethod.CREDIT_CARD:
        problems = validate_card_data(card)
        if problems:
            raise ValidationError(
                "Fill in all card fields: " + ", ".join(sorted(set(problems))),
                code="invalid_card_data"
            )
