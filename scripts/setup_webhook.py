#!/usr/bin/env python3
"""
Register the bot's webhook URL with Telegram.

Run once after each deployment that changes the public URL. Prints the
webhook info Telegram reports back so a bad URL or a pending error is
visible immediately.
"""

import argparse
import asyncio
import json
import os
import sys

from shared.errors import BotException
from service_bot.app.adapters.telegram_client import TelegramClient


ALLOWED_UPDATES = ["message", "callback_query"]


async def register(*, token: str, api_url: str, webhook_url: str, dry_run: bool) -> dict:
    """Set the webhook (unless ``dry_run``) and return Telegram's webhook info."""
    client = TelegramClient(token, api_url)
    if not dry_run:
        await client.set_webhook(webhook_url, allowed_updates=ALLOWED_UPDATES)
    return await client.get_webhook_info()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register the Telegram webhook URL.")
    parser.add_argument("--token", default=os.getenv("BOT_TELEGRAM_BOT_TOKEN") or os.getenv("TELEGRAM_BOT_TOKEN"), help="Bot token")
    parser.add_argument("--url", default=os.getenv("BOT_WEBHOOK_URL"), help="Public URL of /api/webhook")
    parser.add_argument("--api-url", default=os.getenv("BOT_TELEGRAM_API_URL", "https://api.telegram.org"), help="Telegram Bot API base URL")
    parser.add_argument("--dry-run", action="store_true", help="Only print the current webhook info")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    if not args.token:
        print("[setup-webhook] bot token is required (--token or TELEGRAM_BOT_TOKEN)", file=sys.stderr)
        return 2
    if not args.url and not args.dry_run:
        print("[setup-webhook] webhook URL is required (--url or BOT_WEBHOOK_URL)", file=sys.stderr)
        return 2

    try:
        info = asyncio.run(
            register(token=args.token, api_url=args.api_url, webhook_url=args.url, dry_run=args.dry_run)
        )
    except KeyboardInterrupt:
        return 130
    except BotException as exc:
        print(f"[setup-webhook] failed: {exc.message}", file=sys.stderr)
        return 1

    if not args.dry_run:
        print(f"[setup-webhook] webhook set to {args.url}")
    print(json.dumps(info, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
