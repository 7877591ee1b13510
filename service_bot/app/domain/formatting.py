"""
Reply formatting for chat messages.
"""

import html
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Tuple
from urllib.parse import quote

from shared.logging import get_logger


logger = get_logger("bot.formatting")

QUICKCHART_URL = "https://quickchart.io/chart"
MAX_CHART_POINTS = 60

_VALID_USERNAME = re.compile(r"^[a-zA-Z0-9_]+$")
_ALL_MENTION = re.compile(r"@all", re.IGNORECASE)


def _trim_number(value: float, decimals: int) -> str:
    text = f"{value:,.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def fmt_big(n: Optional[float]) -> str:
    """Compact large amounts: 1.23T, 4.56B, 7.89M."""
    if n is None:
        return "N/A"
    if n >= 1e12:
        return f"{n / 1e12:.2f}T"
    if n >= 1e9:
        return f"{n / 1e9:.2f}B"
    if n >= 1e6:
        return f"{n / 1e6:.2f}M"
    return _trim_number(n, 3)


def fmt_price(n: Optional[float]) -> str:
    if n is None:
        return "$0"
    return "$" + _trim_number(n, 8)


def build_price_reply(coin: Dict[str, Any], amount: Optional[float] = 1) -> str:
    """Monospace price card: optional amount line, then Price/MC/FDV/ATH."""
    price = coin.get("current_price") or 0
    symbol = (coin.get("symbol") or "").upper()
    total = price * (amount if amount is not None else 1)

    lines = []
    if amount is not None and amount != 1:
        lines.append(f"{_trim_number(amount, 8)} {symbol} = {fmt_price(total)}")
    lines.append(f"Price: {fmt_price(price)}")
    lines.append(f"MC: {fmt_big(coin.get('market_cap'))}")
    lines.append(f"FDV: {fmt_big(coin.get('fully_diluted_valuation'))}")
    lines.append(f"ATH: {fmt_price(coin.get('ath'))}")

    body = "\n".join(lines)
    return f"```\n{coin.get('name', symbol)} ({symbol})\n{body}\n```"


def build_not_found(symbol: str) -> str:
    return f'`Coin "{symbol.upper()}" not found`'


def build_alert_message(
    symbol: str,
    condition: str,
    target_price: float,
    username: Optional[str],
    coin: Dict[str, Any],
) -> str:
    """HTML notification for a triggered price alert."""
    current_price = coin.get("current_price") or 0
    change_1h = coin.get("price_change_percentage_1h_in_currency") or 0
    emoji = "🟢" if change_1h >= 0 else "🔴"
    change_text = f"+{change_1h:.2f}%" if change_1h >= 0 else f"{change_1h:.2f}%"
    market_cap = coin.get("market_cap")
    market_cap_text = f"${market_cap / 1e9:.2f}B" if market_cap else "N/A"
    username_text = f"@{escape_username(username)}" if username else ""

    return (
        "🚨 <b>PRICE ALERT TRIGGERED</b>\n\n"
        f"{html.escape(symbol.upper())} is now {condition} ${_trim_number(target_price, 8)}! {username_text}\n\n"
        f"<code>Current Price: ${_trim_number(current_price, 8)}</code>\n"
        f"<code>1H Change: {emoji} {change_text}</code>\n"
        f"<code>Market Cap: {market_cap_text}</code>\n\n"
        "Your alert has been automatically removed."
    )


def build_reminder_message(
    message: str,
    username: Optional[str],
    created_at: Optional[datetime],
    extra_mentions: str = "",
) -> str:
    """HTML notification for a due reminder."""
    username_text = f"@{escape_username(username)}" if username else ""
    created_text = created_at.strftime("%d/%m/%Y") if created_at else "unknown"
    return (
        "⏰ <b>REMINDER</b>\n\n"
        f"{html.escape(message)}{extra_mentions}\n\n"
        f"Set By: {username_text}\n\n"
        f"<i>Set on: {created_text}</i>"
    )


def build_alert_list(alerts: Sequence[Any]) -> str:
    if not alerts:
        return "`No active alerts in this chat`"
    lines = [
        f"{a.symbol.upper()} {a.condition} {fmt_price(a.target_price)}" + (f" (@{a.username})" if a.username else "")
        for a in alerts
    ]
    return "```\nActive alerts:\n" + "\n".join(lines) + "\n```"


def build_leaderboard(rows: Sequence[Tuple[str, int]]) -> str:
    if not rows:
        return "`No token calls recorded in this chat yet`"
    lines = [f"{rank}. {name} - {count}" for rank, (name, count) in enumerate(rows, start=1)]
    return "```\nFirst callers:\n" + "\n".join(lines) + "\n```"


def build_chart_url(symbol: str, prices: Sequence[Sequence[float]], days: int) -> str:
    """QuickChart line chart URL for ``[timestamp_ms, price]`` pairs."""
    step = max(1, len(prices) // MAX_CHART_POINTS)
    sampled = list(prices[::step])
    if prices and sampled[-1] is not prices[-1]:
        sampled.append(prices[-1])

    labels = [datetime.fromtimestamp(point[0] / 1000, tz=timezone.utc).strftime("%m-%d %H:%M") for point in sampled]
    values = [round(point[1], 8) for point in sampled]
    config = {
        "type": "line",
        "data": {
            "labels": labels,
            "datasets": [{
                "label": f"{symbol.upper()} / USD ({days}d)",
                "data": values,
                "fill": False,
                "pointRadius": 0,
            }],
        },
    }
    return f"{QUICKCHART_URL}?c={quote(json.dumps(config, separators=(',', ':')))}"


def escape_username(username: Optional[str]) -> str:
    """Escape characters that break HTML parse mode; underscores stay."""
    if not username or not isinstance(username, str):
        return ""
    return username.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def create_mention_text(members: Sequence[str]) -> str:
    """``@a @b`` for every well-formed username in ``members``."""
    valid = [
        name for name in members
        if isinstance(name, str)
        and name.strip()
        and not name.startswith("username")
        and len(name) <= 32
        and _VALID_USERNAME.match(name)
    ]
    if not valid:
        logger.warning("No valid usernames configured for @all mentions")
        return ""
    return " ".join(f"@{name}" for name in valid)


def is_valid_mention_context(chat_id: Any, group_id: int) -> bool:
    try:
        return int(chat_id) == group_id
    except (TypeError, ValueError):
        return False


def expand_all_mentions(message: str, chat_id: Any, group_id: int, members: Sequence[str]) -> Tuple[str, str]:
    """Replace ``@all`` with member mentions in the configured group.

    Returns the message without ``@all`` and the mention block to append;
    outside that group, or with no valid members, the message is unchanged.
    """
    if "@all" not in message.lower() or not is_valid_mention_context(chat_id, group_id):
        return message, ""

    mention_text = create_mention_text(members)
    if not mention_text:
        return message, ""
    return _ALL_MENTION.sub("", message).strip(), f"\n\n{mention_text}"


def help_text() -> str:
    return (
        "```\nUsage:\n\n"
        "/eth → ETH price\n"
        "2 eth → value of 2 ETH\n"
        "eth 0.5 → value of 0.5 ETH\n"
        "/chart eth [days] → price chart\n"
        "/alert btc above 70000 → price alert\n"
        "/alerts → active alerts here\n"
        '/remind "message" 3pm → reminder (IST)\n'
        "/leaderboard → first callers of token addresses\n"
        "/ask <question> → ask the AI\n\n"
        "Works for top 500 coins by market cap\n\n"
        "Reply includes:\nPrice\nMC\nFDV\nATH\n```"
    )


def status_text(chat_type: str, thread_id: Optional[int], now: datetime) -> str:
    return (
        "```\nBot Status: Working\n"
        f"Chat Type: {chat_type}\n"
        f"Topic ID: {thread_id or 'None'}\n"
        f"Time: {now.isoformat()}\n```"
    )


WELCOME_TEXT = "`Welcome to the Crypto Price Bot!`\n\n`Type /help to see how to use me.`"
RATE_LIMITED_TEXT = "`Price data is temporarily unavailable, please try again in a minute`"
FAILURE_TEXT = "`Something went wrong fetching that, please try again later`"


def build_reminder_confirmation(message: str, trigger_time: datetime, tz: Any) -> str:
    local = trigger_time.astimezone(tz)
    return f"`Reminder set for {local.strftime('%I:%M %p').lstrip('0')} IST ({local.strftime('%d/%m/%Y')}): {message}`"


def build_alert_confirmation(symbol: str, condition: str, target: float) -> str:
    return f"`Alert set: {symbol.upper()} {condition} {fmt_price(target)}`"


def build_first_post_reply(first_username: str, posted_at: Optional[datetime]) -> str:
    when = f" on {posted_at.strftime('%d/%m/%Y %H:%M')} UTC" if posted_at else ""
    return f"`First called by @{first_username}{when}`"


def chart_caption(symbol: str, days: int) -> str:
    return f"`{symbol.upper()} - last {days} days`"
