"""Discord webhook notifier.

Subscribes to user.registered and user.alt_account_detected and posts an
embed for each to a Discord webhook. Transient delivery failures (network
errors, 429 and 5xx responses) are retried with stamina; anything left over
is returned to the dispatcher as a HandlerError.

Handlers are idempotent in the sense the bus needs: a redelivered event posts
the same message again and changes no state.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError as PydanticValidationError
import stamina

from pulse.bus.dispatcher import handler_error
from pulse.config.models import DiscordConfig
from pulse.core.errors import HandlerError
from pulse.core.types import Result
from pulse.events.base import Event, EventType
from pulse.events.payloads import AltAccountData, DetectionSource, UserRegistrationData
from pulse.observability.logging import get_logger

if TYPE_CHECKING:
    from pulse.bus.event_bus import EventBus

log = get_logger(__name__)

REGISTRATION_COLOR = 0x000000
ALT_ACCOUNT_COLOR = 0xFFA500
ALT_ACCOUNT_TITLE = "Potential Alt Account Detected"


class TransientDeliveryError(Exception):
    """Webhook answered with a status worth retrying (429 or 5xx)."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Webhook returned HTTP {status_code}")
        self.status_code = status_code


RETRIABLE_EXCEPTIONS = (httpx.TransportError, TransientDeliveryError)


def ordinal_suffix(number: int) -> str:
    """English ordinal suffix: 1 -> "st", 12 -> "th", 22 -> "nd"."""
    if 11 <= number % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")


def confidence_label(confidence: float) -> str:
    """Colored square and percentage, e.g. "🟥 95%"."""
    if confidence >= 0.8:
        emoji = "🟥"
    elif confidence < 0.5:
        emoji = "🟩"
    else:
        emoji = "🟨"
    return f"{emoji} {confidence * 100:.0f}%"


def registration_embed(
    data: UserRegistrationData, *, profile_base_url: str, footer_text: str
) -> dict[str, Any]:
    ordinal = f"{data.uid}{ordinal_suffix(data.uid)}"
    return {
        "url": f"{profile_base_url}/{data.username}",
        "title": "New user registered!",
        "description": f"**{data.username}** just registered and is our **{ordinal}** user! 🎉",
        "color": REGISTRATION_COLOR,
        "footer": {"text": footer_text},
    }


def alt_account_embed(
    data: AltAccountData, timestamp: datetime, *, profile_base_url: str, footer_text: str
) -> dict[str, Any]:
    """Security alert listing the subject, the shared signal and the matches."""
    fields: list[dict[str, Any]] = [
        {"name": "User", "value": f"**{data.username}** (UID: {data.uid})", "inline": True},
        {"name": "Shared IP", "value": f"`{data.ip_address or 'n/a'}`", "inline": True},
        {
            "name": "Detection Time",
            "value": f"<t:{int(timestamp.timestamp())}:R>",
            "inline": True,
        },
    ]

    matches = [
        f"**{alt.username}** (UID: {alt.uid}) - *{alt.match_reason.value}*"
        for alt in data.alt_accounts
    ]
    if matches:
        fields.append(
            {"name": "Potential Alt Accounts", "value": "\n".join(matches), "inline": False}
        )
    if data.notes:
        fields.append({"name": "Notes", "value": data.notes, "inline": False})
    if data.confidence > 0:
        fields.append(
            {"name": "Confidence", "value": confidence_label(data.confidence), "inline": True}
        )

    source = data.detection_source
    if source is DetectionSource.REGISTRATION:
        title = f"⚠️ {ALT_ACCOUNT_TITLE} (New Registration)"
        during = "registration"
    elif source is DetectionSource.LOGIN:
        title = f"🔍 {ALT_ACCOUNT_TITLE} (Login)"
        during = "login with a new IP"
    else:
        title = f"🔎 {ALT_ACCOUNT_TITLE}"
        during = source.value.replace("_", " ")

    return {
        "url": f"{profile_base_url}/{data.username}",
        "title": title,
        "description": f"A potential alt account has been detected during {during}.",
        "color": ALT_ACCOUNT_COLOR,
        "fields": fields,
        "footer": {"text": f"{footer_text} security"},
        "timestamp": timestamp.isoformat(),
    }


class DiscordNotifier:
    """Posts bus events to Discord webhooks.

    Usage:
        async with httpx.AsyncClient() as client:
            notifier = DiscordNotifier(client, config.discord)
            notifier.register(bus)
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        config: DiscordConfig,
        *,
        wait_initial: float = 1.0,
        wait_max: float = 10.0,
        wait_jitter: float = 1.0,
    ) -> None:
        self._client = http_client
        self._config = config
        self._wait_initial = wait_initial
        self._wait_max = wait_max
        self._wait_jitter = wait_jitter

    def register(self, bus: EventBus) -> None:
        bus.subscribe(EventType.USER_REGISTERED, self.handle_user_registration)
        bus.subscribe(EventType.ALT_ACCOUNT_DETECTED, self.handle_alt_account)
        log.info("notifier.discord.registered")

    async def handle_user_registration(self, event: Event) -> Result[None, HandlerError]:
        handler = "DiscordNotifier.handle_user_registration"
        url = self._config.registrations_webhook_url
        if not url:
            log.debug("notifier.discord.skipped", event_id=event.id, webhook="registrations")
            return Result.ok(None)

        try:
            data = UserRegistrationData.model_validate(event.data)
        except PydanticValidationError as e:
            return handler_error(handler, event, f"Invalid registration payload: {e}")

        embed = registration_embed(
            data,
            profile_base_url=self._config.profile_base_url,
            footer_text=self._config.footer_text,
        )
        return await self._send(url, embed, event, handler=handler, webhook="registrations")

    async def handle_alt_account(self, event: Event) -> Result[None, HandlerError]:
        handler = "DiscordNotifier.handle_alt_account"
        url = self._config.security_webhook_url
        if not url:
            log.debug("notifier.discord.skipped", event_id=event.id, webhook="security")
            return Result.ok(None)

        try:
            data = AltAccountData.model_validate(event.data)
        except PydanticValidationError as e:
            return handler_error(handler, event, f"Invalid alt account payload: {e}")

        embed = alt_account_embed(
            data,
            data.detection_time,
            profile_base_url=self._config.profile_base_url,
            footer_text=self._config.footer_text,
        )
        return await self._send(url, embed, event, handler=handler, webhook="security")

    async def _send(
        self,
        url: str,
        embed: dict[str, Any],
        event: Event,
        *,
        handler: str,
        webhook: str,
    ) -> Result[None, HandlerError]:
        @stamina.retry(
            on=RETRIABLE_EXCEPTIONS,
            attempts=self._config.max_attempts,
            wait_initial=self._wait_initial,
            wait_max=self._wait_max,
            wait_jitter=self._wait_jitter,
        )
        async def _post() -> httpx.Response:
            response = await self._client.post(
                url, json={"embeds": [embed]}, timeout=self._config.timeout_seconds
            )
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientDeliveryError(response.status_code)
            response.raise_for_status()
            return response

        try:
            response = await _post()
        except RETRIABLE_EXCEPTIONS as e:
            log.warning(
                "notifier.discord.failed.retries_exhausted",
                event_id=event.id,
                webhook=webhook,
                error=str(e),
                attempts=self._config.max_attempts,
            )
            return handler_error(handler, event, f"Discord delivery failed: {e}", webhook=webhook)
        except httpx.HTTPStatusError as e:
            log.warning(
                "notifier.discord.failed.rejected",
                event_id=event.id,
                webhook=webhook,
                status_code=e.response.status_code,
            )
            return handler_error(
                handler,
                event,
                f"Discord rejected the message: HTTP {e.response.status_code}",
                webhook=webhook,
                status_code=e.response.status_code,
            )

        log.info(
            "notifier.discord.sent",
            event_id=event.id,
            event_type=event.type.value,
            webhook=webhook,
            status_code=response.status_code,
        )
        return Result.ok(None)
