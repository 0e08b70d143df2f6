"""WhatsApp message sender for the Green API gateway."""

import logging
import re

import httpx
from pydantic import BaseModel, Field

from src.core import db_client
from src.core.config import Constants, constants, settings


logger = logging.getLogger(__name__)


DEFAULT_GREEN_API_BASE_URL = "https://api.green-api.com"


class SendMessageResult(BaseModel):
    """Result of sending a WhatsApp message."""

    success: bool = Field(..., description="Whether the message was sent successfully")
    message_id: str | None = Field(None, description="WhatsApp message ID if successful")
    error: str | None = Field(None, description="Error message if failed")
    status_code: int | None = Field(None, description="HTTP status of the last attempt")


class WhatsAppConfig(BaseModel):
    """Green API credentials and delivery switch."""

    id_instance: str
    api_token_instance: str
    base_url: str = DEFAULT_GREEN_API_BASE_URL
    notify_on_mention: bool = True


def normalize_phone(phone: str | None, *, country_code: str | None = None) -> str:
    """Normalize a phone number to international digits without a plus sign.

    Non-digits are stripped, a ``00`` prefix is dropped, numbers already
    carrying the country code are kept and a leading ``0`` is replaced by the
    country code. Returns an empty string when no digits remain.
    """
    code = country_code or settings.default_country_code
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        return ""
    if digits.startswith("00"):
        return digits[2:]
    if digits.startswith(code):
        return digits
    if digits.startswith("0"):
        return f"{code}{digits[1:]}"
    return digits


def format_chat_id(phone: str) -> str:
    """Format a phone number as a Green API chat id (e.g. '972501234567@c.us')."""
    if phone.endswith(Constants.WHATSAPP_CHAT_SUFFIX):
        return phone
    return f"{normalize_phone(phone)}{Constants.WHATSAPP_CHAT_SUFFIX}"


async def load_whatsapp_config() -> WhatsAppConfig | None:
    """Resolve Green API credentials.

    Environment settings win over the stored ``integrations/whatsapp``
    record. Returns None when no complete credentials are available.
    """
    if settings.whatsapp_id_instance and settings.whatsapp_api_token:
        return WhatsAppConfig(
            id_instance=settings.whatsapp_id_instance,
            api_token_instance=settings.whatsapp_api_token,
            base_url=settings.green_api_base_url.rstrip("/"),
            notify_on_mention=settings.whatsapp_notify_on_mention,
        )

    try:
        record = await db_client.get_record(
            collection=Constants.INTEGRATIONS_COLLECTION,
            record_id=Constants.WHATSAPP_CONFIG_DOCUMENT_ID,
        )
    except KeyError:
        logger.info("No WhatsApp integration configured")
        return None
    except Exception as e:
        logger.warning("Failed reading WhatsApp config: %s", e)
        return None

    id_instance = str(record.get("id_instance") or "").strip()
    api_token = str(record.get("api_token_instance") or "").strip()
    if not id_instance or not api_token:
        logger.info("WhatsApp integration record is missing credentials")
        return None

    return WhatsAppConfig(
        id_instance=id_instance,
        api_token_instance=api_token,
        base_url=(record.get("base_url") or DEFAULT_GREEN_API_BASE_URL).rstrip("/"),
        notify_on_mention=record.get("notify_on_mention", True) is not False,
    )


def _base_candidates(config: WhatsAppConfig) -> list[str]:
    """Configured Green API host first, then the default host."""
    candidates = []
    configured = config.base_url.rstrip("/")
    if "green-api.com" in configured:
        candidates.append(configured)
    if DEFAULT_GREEN_API_BASE_URL not in candidates:
        candidates.append(DEFAULT_GREEN_API_BASE_URL)
    return candidates


async def send_text_message(
    *,
    to_phone: str,
    text: str,
    config: WhatsAppConfig,
) -> SendMessageResult:
    """Send a text message through Green API.

    Delivery is not retried; a failing configured host falls through to the
    default host once.
    """
    phone = normalize_phone(to_phone)
    if not phone:
        return SendMessageResult(success=False, error=f"Invalid phone number: {to_phone!r}")

    payload = {"chatId": f"{phone}{Constants.WHATSAPP_CHAT_SUFFIX}", "message": text}
    result = SendMessageResult(success=False, error="No Green API host available")

    for base_url in _base_candidates(config):
        url = f"{base_url}/waInstance{config.id_instance}/SendMessage/{config.api_token_instance}"
        try:
            async with httpx.AsyncClient(timeout=constants.API_TIMEOUT_SECONDS) as client:
                response = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Green API request to %s failed: %s", base_url, e)
            result = SendMessageResult(success=False, error=str(e) or type(e).__name__)
            continue

        if response.is_success:
            try:
                message_id = response.json().get("idMessage")
            except ValueError:
                message_id = None
            return SendMessageResult(success=True, message_id=message_id, status_code=response.status_code)

        error_text = response.text.strip() or f"Send failed ({response.status_code})"
        logger.error("Green API error from %s (%d): %s", base_url, response.status_code, error_text)
        result = SendMessageResult(success=False, error=error_text, status_code=response.status_code)

    return result
