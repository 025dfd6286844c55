"""Expo push delivery."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.config import Settings, get_settings
from app.exceptions import ConfigurationError, DeliveryError

logger = logging.getLogger(__name__)

EXPO_TOKEN_PATTERN = re.compile(r"^Expo(nent)?PushToken\[.+\]$")
UUID_TOKEN_PATTERN = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE
)


def is_push_token(token: Optional[str]) -> bool:
    """Expo tokens look like ExponentPushToken[...] (older clients send a bare UUID)."""
    if not token:
        return False
    return bool(EXPO_TOKEN_PATTERN.match(token) or UUID_TOKEN_PATTERN.match(token))


@dataclass
class PushMessage:
    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    silent: bool = False

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "to": self.to,
            "title": self.title,
            "body": self.body,
            "data": self.data,
        }
        if self.silent:
            payload.update({"priority": "normal", "channelId": "silent"})
        else:
            payload["sound"] = "default"
        return payload


@dataclass
class PushTicket:
    status: str  # ok, error
    id: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class ExpoPushProvider:
    """Sends push messages through the Expo push API."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=self.settings.push_timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self.settings.expo_access_token:
            headers["Authorization"] = f"Bearer {self.settings.expo_access_token}"
        return headers

    def send(self, messages: List[PushMessage]) -> List[PushTicket]:
        """Send a batch and return one ticket per message, in order."""
        try:
            response = self.client.post(
                self.settings.expo_push_url,
                json=[m.to_payload() for m in messages],
                headers=self._headers(),
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DeliveryError(f"Expo push request failed: {exc}") from exc

        tickets = body.get("data") if isinstance(body, dict) else None
        if not isinstance(tickets, list) or len(tickets) != len(messages):
            raise DeliveryError(f"Unexpected Expo push response: {body}")
        if not all(isinstance(ticket, dict) for ticket in tickets):
            raise DeliveryError(f"Malformed Expo push ticket in response: {body}")

        return [
            PushTicket(
                status=ticket.get("status", "error"),
                id=ticket.get("id"),
                message=ticket.get("message"),
            )
            for ticket in tickets
        ]

    def send_one(self, message: PushMessage) -> PushTicket:
        return self.send([message])[0]

    def close(self):
        self.client.close()


def validate_push_settings(settings: Optional[Settings] = None) -> None:
    """Fail fast at process start when push credentials are required but missing."""
    settings = settings or get_settings()
    if not settings.expo_push_url:
        raise ConfigurationError("EXPO_PUSH_URL is not configured")
    if settings.expo_require_access_token and not settings.expo_access_token:
        raise ConfigurationError(
            "EXPO_ACCESS_TOKEN is required (set EXPO_REQUIRE_ACCESS_TOKEN=false to send without it)"
        )
    logger.info("Push delivery configured for %s", settings.expo_push_url)


_provider: Optional[ExpoPushProvider] = None


def get_push_provider() -> ExpoPushProvider:
    """Process-wide provider (one pooled HTTP client)."""
    global _provider
    if _provider is None:
        _provider = ExpoPushProvider()
    return _provider
