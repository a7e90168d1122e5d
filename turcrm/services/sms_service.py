from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from turcrm.core.config import settings

logger = logging.getLogger("turcrm.sms")

MOCK_PROVIDERS = {"", "dummy", "mock", "console"}
MOBIZON_PROVIDERS = {"mobizon"}
SMSAERO_PROVIDERS = {"smsaero", "sms_aero"}


class SmsDeliveryError(Exception):
    """The gateway could not take the message. Never an OTP-policy outcome."""


def _provider() -> str:
    return str(settings.SMS_PROVIDER or "dummy").strip().lower()


def normalize_phone(value: object) -> str:
    text = "".join(ch for ch in str(value or "") if ch.isdigit() or ch == "+")
    if not text:
        return ""
    if text.startswith("8") and len(text) == 11:
        text = "+7" + text[1:]
    if not text.startswith("+") and text.isdigit():
        text = "+" + text
    return text


def _phone_digits(phone: str) -> str:
    digits = "".join(ch for ch in str(phone or "") if ch.isdigit())
    if not digits:
        raise SmsDeliveryError("Некорректный номер телефона")
    return digits


def render_sms_text(template: str, *, code: str) -> str:
    fallback = f"Код подтверждения: {code}"
    template = str(template or "").strip()
    if not template:
        return fallback
    try:
        return template.format(code=code)
    except (KeyError, IndexError, ValueError):
        return fallback


def _dry_run_send(*, phone: str, text: str, provider: str) -> dict[str, Any]:
    logger.warning("[SMS DRY-RUN] provider=%s to=%s text=%r", provider, phone, text)
    return {
        "provider": provider,
        "status": "accepted",
        "message_id": None,
        "sent": False,
        "mocked": True,
    }


def _mobizon_client() -> httpx.Client:
    return httpx.Client(timeout=float(settings.SMS_TIMEOUT_SECONDS))


def _send_mobizon(*, phone: str, text: str) -> dict[str, Any]:
    api_key = str(settings.MOBIZON_API_KEY or "").strip()
    if not api_key:
        raise SmsDeliveryError("Не задан MOBIZON_API_KEY")
    form = {"apiKey": api_key, "recipient": _phone_digits(phone), "text": text}
    sender = str(settings.MOBIZON_SENDER_ID or "").strip()
    if sender:
        form["from"] = sender

    try:
        with _mobizon_client() as client:
            response = client.post(settings.MOBIZON_API_URL, data=form)
    except httpx.HTTPError as exc:
        raise SmsDeliveryError(f"Ошибка обращения к Mobizon: {exc}") from exc

    try:
        payload = response.json() if response.content else {}
    except ValueError as exc:
        raise SmsDeliveryError(f"Некорректный ответ Mobizon: HTTP {response.status_code}") from exc
    if response.status_code >= 400:
        raise SmsDeliveryError(f"Mobizon ответил HTTP {response.status_code}")
    result_code = payload.get("code")
    if result_code != 0:
        message = payload.get("message") or ""
        raise SmsDeliveryError(f"Mobizon вернул код ошибки {result_code} {message}".strip())
    data = payload.get("data") or {}
    return {
        "provider": "mobizon",
        "status": "accepted",
        "message_id": str(data.get("messageId") or "") or None,
        "sent": True,
    }


async def _send_sms_aero_async(*, phone: int, message: str) -> dict[str, Any]:
    try:
        import smsaero
    except ImportError as exc:  # pragma: no cover - runtime dependency branch
        raise SmsDeliveryError("Библиотека smsaero-api-async не установлена") from exc

    email = str(settings.SMSAERO_EMAIL or "").strip()
    api_key = str(settings.SMSAERO_API_KEY or "").strip()
    if not email or not api_key:
        raise SmsDeliveryError("Не заданы SMSAERO_EMAIL и/или SMSAERO_API_KEY")

    api = smsaero.SmsAero(email, api_key)
    try:
        result = await api.send_sms(phone, message)
    except Exception as exc:  # pragma: no cover - network/runtime branch
        raise SmsDeliveryError(f"Ошибка отправки SMS через SMS Aero: {exc}") from exc
    finally:
        await api.close_session()
    message_id = None
    if isinstance(result, dict):
        message_id = result.get("id")
    return {
        "provider": "smsaero",
        "status": "accepted",
        "message_id": str(message_id) if message_id is not None else None,
        "sent": True,
    }


def _send_sms_aero(*, phone: str, text: str) -> dict[str, Any]:
    phone_int = int(_phone_digits(phone))
    return asyncio.run(_send_sms_aero_async(phone=phone_int, message=text))


def send_sms(*, phone: str, text: str) -> dict[str, Any]:
    """Hands one message to the configured gateway.

    A single bounded request, no retries. Returns the provider response with a
    ``message_id`` (``None`` in dry-run); raises ``SmsDeliveryError`` otherwise.
    """
    provider = _provider()
    if provider in MOCK_PROVIDERS:
        return _dry_run_send(phone=phone, text=text, provider="dummy")
    if provider not in MOBIZON_PROVIDERS | SMSAERO_PROVIDERS:
        raise SmsDeliveryError(f"Неизвестный SMS_PROVIDER: {provider}")
    if bool(settings.SMS_DRY_RUN):
        return _dry_run_send(phone=phone, text=text, provider=provider)
    if provider in MOBIZON_PROVIDERS:
        result = _send_mobizon(phone=phone, text=text)
    else:
        result = _send_sms_aero(phone=phone, text=text)
    logger.info("sms accepted provider=%s message_id=%s", result.get("provider"), result.get("message_id") or "-")
    return result
