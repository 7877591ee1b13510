"""
Parsing of chat messages into bot commands and queries.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from shared.errors import ValidationError


IST = timezone(timedelta(hours=5, minutes=30))

_EVM_ADDRESS = re.compile(r"^(0x)?[a-fA-F0-9]+$")
_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
_AMOUNT_QUERY = re.compile(r"^(\d*\.?\d+)\s+([a-z]+)$|^([a-z]+)\s+(\d*\.?\d+)$")
_REMINDER = re.compile(r'^/remind(?:@\w+)?\s+"([^"]+)"\s+(\d{1,2}(?::\d{2})?\s*(?:am|pm)?)\s*$', re.IGNORECASE)
_TWELVE_HOUR = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$", re.IGNORECASE)
_TWENTY_FOUR_HOUR = re.compile(r"^(\d{1,2})(?::(\d{2}))?$")

_CONDITIONS = {
    "above": "above",
    ">": "above",
    ">=": "above",
    "over": "above",
    "below": "below",
    "<": "below",
    "<=": "below",
    "under": "below",
}


def is_token_address(text: str) -> bool:
    """True for an EVM-style hex address or a Solana base58 address."""
    candidate = text.strip()
    if 20 < len(candidate) < 65 and _EVM_ADDRESS.match(candidate):
        return True
    return bool(_BASE58_ADDRESS.match(candidate)) and any(ch.isdigit() for ch in candidate)


def parse_command(text: str) -> Tuple[str, List[str]]:
    """Split ``/cmd@bot a b`` into ``("cmd", ["a", "b"])``."""
    parts = text.strip()[1:].split()
    if not parts:
        return "", []
    command = parts[0].lower().split("@")[0]
    return command, parts[1:]


def parse_amount_query(text: str) -> Optional[Tuple[float, str]]:
    """Parse ``2 eth`` or ``eth 2`` into ``(2.0, "eth")``."""
    match = _AMOUNT_QUERY.match(text.strip().lower())
    if not match:
        return None

    if match.group(1) and match.group(2):
        amount, symbol = float(match.group(1)), match.group(2)
    else:
        symbol, amount = match.group(3), float(match.group(4))

    if not amount:
        return None
    return amount, symbol


def parse_alert(args: List[str]) -> Tuple[str, str, float]:
    """Parse ``btc above 70000`` into ``("btc", "above", 70000.0)``."""
    if len(args) != 3:
        raise ValidationError("Usage: /alert <symbol> above|below <price>")

    symbol, raw_condition, raw_price = args
    condition = _CONDITIONS.get(raw_condition.lower())
    if condition is None:
        raise ValidationError("Condition must be 'above' or 'below'", {"condition": raw_condition})

    try:
        target = float(raw_price.replace("$", "").replace(",", ""))
    except ValueError:
        raise ValidationError("Price must be a number", {"price": raw_price})
    if target <= 0:
        raise ValidationError("Price must be positive", {"price": raw_price})

    return symbol.lower(), condition, target


def parse_reminder(text: str) -> Optional[Tuple[str, str]]:
    """Parse ``/remind "message" 3pm`` into ``("message", "3pm")``."""
    match = _REMINDER.match(text.strip())
    if not match:
        return None
    return match.group(1), match.group(2).strip()


def parse_time_to_ist(time_str: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Next occurrence of an IST wall-clock time, as an aware UTC datetime.

    Accepts ``3pm``, ``9:30am`` and 24-hour ``15:30`` or ``15``. Returns None
    for anything else or an out-of-range time.
    """
    now = now or datetime.now(timezone.utc)
    value = time_str.strip()

    twelve = _TWELVE_HOUR.match(value)
    if twelve:
        hours = int(twelve.group(1))
        minutes = int(twelve.group(2) or 0)
        period = twelve.group(3).lower()
        if hours < 1 or hours > 12:
            return None
        if period == "pm" and hours != 12:
            hours += 12
        if period == "am" and hours == 12:
            hours = 0
    else:
        twenty_four = _TWENTY_FOUR_HOUR.match(value)
        if not twenty_four:
            return None
        hours = int(twenty_four.group(1))
        minutes = int(twenty_four.group(2) or 0)

    if hours > 23 or minutes > 59:
        return None

    now_ist = now.astimezone(IST)
    target = now_ist.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    if target <= now_ist:
        target += timedelta(days=1)
    return target.astimezone(timezone.utc)
