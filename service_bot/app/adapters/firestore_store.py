"""
Firestore document store for queries, alerts, reminders and first posts.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.api_core.exceptions import AlreadyExists, GoogleAPIError
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.errors import ConfigurationError, ServiceError
from shared.logging import get_logger


QUERIES = "queries"
PRICE_ALERTS = "price_alerts"
TIME_REMINDERS = "time_reminders"
FIRST_POSTS = "first_posts"


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    # firestore Timestamp-like objects
    to_datetime = getattr(value, "to_datetime", None) or getattr(value, "ToDatetime", None)
    if to_datetime is not None:
        converted = to_datetime()
        return converted if converted.tzinfo else converted.replace(tzinfo=timezone.utc)
    return None


@dataclass
class PriceAlert:
    """A price threshold a user asked to be notified about."""

    symbol: str
    condition: str
    target_price: float
    chat_id: int
    username: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    doc_id: Optional[str] = None
    reference: Any = field(default=None, repr=False, compare=False)

    def to_document(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "condition": self.condition,
            "targetPrice": self.target_price,
            "chatId": self.chat_id,
            "username": self.username,
            "isActive": self.is_active,
            "createdAt": self.created_at or datetime.now(timezone.utc),
        }

    @classmethod
    def from_snapshot(cls, snapshot: Any) -> "PriceAlert":
        data = snapshot.to_dict() or {}
        return cls(
            symbol=data.get("symbol", ""),
            condition=data.get("condition", ""),
            target_price=float(data.get("targetPrice", 0)),
            chat_id=int(data.get("chatId", 0)),
            username=data.get("username"),
            is_active=bool(data.get("isActive", False)),
            created_at=_as_datetime(data.get("createdAt")),
            doc_id=getattr(snapshot, "id", None),
            reference=getattr(snapshot, "reference", None),
        )


@dataclass
class TimeReminder:
    """A message to repeat in a chat at a given time."""

    message: str
    trigger_time: datetime
    chat_id: int
    username: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    doc_id: Optional[str] = None
    reference: Any = field(default=None, repr=False, compare=False)

    def to_document(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "triggerTime": self.trigger_time,
            "chatId": self.chat_id,
            "username": self.username,
            "isActive": self.is_active,
            "createdAt": self.created_at or datetime.now(timezone.utc),
        }

    @classmethod
    def from_snapshot(cls, snapshot: Any) -> "TimeReminder":
        data = snapshot.to_dict() or {}
        return cls(
            message=data.get("message", ""),
            trigger_time=_as_datetime(data.get("triggerTime")) or datetime.now(timezone.utc),
            chat_id=int(data.get("chatId", 0)),
            username=data.get("username"),
            is_active=bool(data.get("isActive", False)),
            created_at=_as_datetime(data.get("createdAt")),
            doc_id=getattr(snapshot, "id", None),
            reference=getattr(snapshot, "reference", None),
        )


@dataclass(frozen=True)
class FirstPost:
    """Who posted a token address first in a group."""

    chat_id: int
    address: str
    user_id: Optional[int]
    username: str
    posted_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return {
            "chatId": self.chat_id,
            "address": self.address,
            "userId": self.user_id,
            "username": self.username,
            "postedAt": self.posted_at or datetime.now(timezone.utc),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FirstPost":
        return cls(
            chat_id=int(data.get("chatId", 0)),
            address=data.get("address", ""),
            user_id=data.get("userId"),
            username=data.get("username") or "Unknown",
            posted_at=_as_datetime(data.get("postedAt")),
        )


class FirestoreStore:
    """Reads and writes the bot's Firestore collections."""

    def __init__(self, client: Any):
        self.client = client
        self.logger = get_logger("bot.store")

    async def log_query(self, chat_id: int, username: str, symbol: str, amount: float = 1) -> None:
        """Record a price query; failures are logged, never raised."""
        try:
            await self.client.collection(QUERIES).add({
                "chatId": chat_id,
                "username": username,
                "symbol": symbol,
                "amount": amount,
                "createdAt": datetime.now(timezone.utc),
            })
        except GoogleAPIError as exc:
            self.logger.warning("Query log write failed", symbol=symbol, error=str(exc))

    async def add_price_alert(self, alert: PriceAlert) -> str:
        try:
            _, ref = await self.client.collection(PRICE_ALERTS).add(alert.to_document())
        except GoogleAPIError as exc:
            raise ServiceError("Could not save price alert", {"error": str(exc)}) from exc
        self.logger.info("Price alert saved", symbol=alert.symbol, doc_id=ref.id)
        return ref.id

    async def list_alerts(self, chat_id: int) -> List[PriceAlert]:
        """Active alerts in one chat."""
        query = (
            self.client.collection(PRICE_ALERTS)
            .where(filter=FieldFilter("isActive", "==", True))
            .where(filter=FieldFilter("chatId", "==", chat_id))
        )
        try:
            return [PriceAlert.from_snapshot(doc) async for doc in query.stream()]
        except GoogleAPIError as exc:
            raise ServiceError("Could not load price alerts", {"chat_id": chat_id, "error": str(exc)}) from exc

    async def active_alerts(self) -> List[PriceAlert]:
        query = self.client.collection(PRICE_ALERTS).where(filter=FieldFilter("isActive", "==", True))
        try:
            return [PriceAlert.from_snapshot(doc) async for doc in query.stream()]
        except GoogleAPIError as exc:
            raise ServiceError("Could not load price alerts", {"error": str(exc)}) from exc

    async def add_reminder(self, reminder: TimeReminder) -> str:
        try:
            _, ref = await self.client.collection(TIME_REMINDERS).add(reminder.to_document())
        except GoogleAPIError as exc:
            raise ServiceError("Could not save reminder", {"error": str(exc)}) from exc
        self.logger.info("Reminder saved", trigger_time=reminder.trigger_time.isoformat(), doc_id=ref.id)
        return ref.id

    async def due_reminders(self, now: Optional[datetime] = None) -> List[TimeReminder]:
        """Active reminders whose trigger time has passed."""
        now = now or datetime.now(timezone.utc)
        query = (
            self.client.collection(TIME_REMINDERS)
            .where(filter=FieldFilter("isActive", "==", True))
            .where(filter=FieldFilter("triggerTime", "<=", now))
        )
        try:
            return [TimeReminder.from_snapshot(doc) async for doc in query.stream()]
        except GoogleAPIError as exc:
            raise ServiceError("Could not load reminders", {"error": str(exc)}) from exc

    async def deactivate(self, reference: Any) -> None:
        try:
            await reference.update({"isActive": False})
        except GoogleAPIError as exc:
            raise ServiceError("Could not deactivate document", {"error": str(exc)}) from exc

    async def record_first_post(self, post: FirstPost) -> Tuple[FirstPost, bool]:
        """Store ``post`` unless the address was already posted in that chat.

        Returns the first post on record and whether ``post`` is it.
        """
        # hex addresses are case-insensitive, base58 ones are not
        address = post.address.lower() if post.address.lower().startswith("0x") else post.address
        doc_id = f"{post.chat_id}_{address}"
        ref = self.client.collection(FIRST_POSTS).document(doc_id)
        try:
            await ref.create(post.to_document())
            return post, True
        except AlreadyExists:
            pass
        except GoogleAPIError as exc:
            raise ServiceError("Could not record first post", {"error": str(exc)}) from exc

        try:
            snapshot = await ref.get()
        except GoogleAPIError as exc:
            raise ServiceError("Could not load first post", {"error": str(exc)}) from exc
        return FirstPost.from_dict(snapshot.to_dict() or {}), False

    async def leaderboard(self, chat_id: int, limit: int = 10) -> List[Tuple[str, int]]:
        """Members ranked by how many addresses they posted first."""
        query = self.client.collection(FIRST_POSTS).where(filter=FieldFilter("chatId", "==", chat_id))
        counts: Counter = Counter()
        try:
            async for doc in query.stream():
                data = doc.to_dict() or {}
                counts[data.get("username") or "Unknown"] += 1
        except GoogleAPIError as exc:
            raise ServiceError("Could not load leaderboard", {"chat_id": chat_id, "error": str(exc)}) from exc
        return counts.most_common(limit)


def create_store(service_account_json: Optional[str]) -> FirestoreStore:
    """Initialize the Firebase app once and return a store over it."""
    if not service_account_json:
        raise ConfigurationError("FIREBASE_SERVICE_ACCOUNT is not set")

    try:
        firebase_admin.get_app()
    except ValueError:
        try:
            service_account = json.loads(service_account_json)
        except ValueError as exc:
            raise ConfigurationError("FIREBASE_SERVICE_ACCOUNT is not valid JSON") from exc
        firebase_admin.initialize_app(credentials.Certificate(service_account))

    return FirestoreStore(firestore_async.client())
