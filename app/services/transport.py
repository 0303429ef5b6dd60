"""WhatsApp dispatch transport backed by the Twilio client."""

import logging
from functools import lru_cache
from urllib.parse import urlparse

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from app.core.config import settings
from app.schemas.dispatch import TransportHealth, TransportResult

logger = logging.getLogger(__name__)

# Twilio error codes with operator-friendly explanations
TWILIO_ERROR_MESSAGES = {
    20003: "Twilio authentication failed. Please verify TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN",
    21211: "Invalid phone number format. Phone number must include country code (e.g., +91XXXXXXXXXX)",
    63007: "WhatsApp sender not configured. Please activate WhatsApp in your Twilio account or use a production number",
}


def normalize_phone_number(phone: str, country_code: str | None = None) -> str:
    """Prefix the default country code to numbers given without one."""
    country_code = country_code or settings.DEFAULT_COUNTRY_CODE
    phone = "".join(ch for ch in phone.strip() if ch.isdigit() or ch == "+")
    if phone.startswith("+"):
        return phone
    if phone.startswith(country_code) and len(phone) > 10:
        return f"+{phone}"
    return f"+{country_code}{phone}"


def is_public_media_url(url: str | None) -> bool:
    """Twilio can only fetch media from public http(s) URLs."""
    if not url:
        return False
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    host = parsed.hostname
    return "localhost" not in host and not host.startswith("127.")


def _whatsapp_address(number: str) -> str:
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class WhatsAppTransport:
    """Sends marksheet documents to parents over WhatsApp."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        client: Client | None = None,
    ):
        self.account_sid = account_sid if account_sid is not None else settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else settings.TWILIO_WHATSAPP_NUMBER
        self._client = client

    @property
    def configuration_error(self) -> str | None:
        if not self.account_sid or not self.auth_token:
            return "Twilio credentials not found in environment variables"
        if not self.account_sid.startswith("AC"):
            return 'Invalid TWILIO_ACCOUNT_SID format. It should start with "AC"'
        if len(self.auth_token) < 30:
            return "TWILIO_AUTH_TOKEN appears to be invalid (too short)"
        if not self.from_number:
            return "TWILIO_WHATSAPP_NUMBER is not set"
        return None

    @property
    def configured(self) -> bool:
        return self.configuration_error is None

    @property
    def client(self) -> Client:
        # Twilio refuses to build a client without credentials
        if self._client is None:
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def health(self) -> TransportHealth:
        return TransportHealth(
            configured=self.configured,
            error=self.configuration_error,
            account_sid=f"{self.account_sid[:8]}..." if self.account_sid else "Not set",
            whatsapp_number=self.from_number or "Not set",
        )

    def send_document(
        self,
        phone_number: str,
        document_url: str,
        message: str,
        media_urls: list[str] | None = None,
    ) -> TransportResult:
        """Send a message with the document link (and media when public).

        Provider and network failures are returned, not raised.
        """
        if not self.configured:
            logger.error(f"WhatsApp transport not configured: {self.configuration_error}")
            return TransportResult(
                success=False,
                error_code="NOT_CONFIGURED",
                error_message=f"WhatsApp service not configured properly: {self.configuration_error}",
            )

        to_number = normalize_phone_number(phone_number)
        media = [url for url in [*(media_urls or []), document_url] if is_public_media_url(url)]

        options = {
            "from_": _whatsapp_address(self.from_number),
            "to": _whatsapp_address(to_number),
            "body": f"{message}\n\nDownload PDF: {document_url}",
        }
        if media:
            options["media_url"] = media

        logger.info(f"Sending WhatsApp message to {to_number}")

        try:
            sent = self.client.messages.create(**options)
        except TwilioRestException as e:
            error_message = TWILIO_ERROR_MESSAGES.get(e.code) or e.msg or f"HTTP {e.status}"
            logger.error(f"Twilio rejected message (status={e.status}, code={e.code}): {e.msg}")
            return TransportResult(
                success=False,
                error_code=str(e.code) if e.code is not None else f"HTTP_{e.status}",
                error_message=error_message,
            )
        except Exception as e:
            logger.error(f"WhatsApp transport request failed: {e}")
            return TransportResult(
                success=False,
                error_code="TRANSPORT_ERROR",
                error_message=str(e) or e.__class__.__name__,
            )

        logger.info(f"WhatsApp message accepted: {sent.sid}")
        return TransportResult(success=True, provider_message_id=sent.sid)


@lru_cache
def get_transport() -> WhatsAppTransport:
    """Shared transport; overridable as a FastAPI dependency."""
    return WhatsAppTransport()
