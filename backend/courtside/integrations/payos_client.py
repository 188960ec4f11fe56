"""Minimal PayOS merchant API client for booking payments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)

PAYMENT_REQUESTS_PATH = "/v2/payment-requests"
PAYOS_SUCCESS_CODE = "00"
MAX_DESCRIPTION_LENGTH = 25

# Gateway-side payment statuses
STATUS_PAID = "PAID"
STATUS_CANCELLED = "CANCELLED"
STATUS_EXPIRED = "EXPIRED"
STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"

ERROR_TYPE_UNREACHABLE = "unreachable"


class PayOSError(RuntimeError):
    """Raised when the PayOS API responds with an error or cannot be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_type: str | None = None,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.error_body = error_body

    @property
    def is_unreachable(self) -> bool:
        return self.error_type == ERROR_TYPE_UNREACHABLE


@dataclass(frozen=True)
class PaymentLink:
    order_code: int
    checkout_url: str
    qr_code: Optional[str] = None
    payment_link_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PaymentInfo:
    order_code: int
    status: str
    amount: Optional[int] = None
    amount_paid: Optional[int] = None
    transaction_ref: Optional[str] = None
    paid_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_paid(self) -> bool:
        return self.status == STATUS_PAID


def _signature_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)
    return str(value)


def build_signature_payload(data: Dict[str, Any]) -> str:
    """``key=value`` pairs sorted by key and joined by ``&``; nulls render as empty strings."""
    return "&".join(f"{key}={_signature_value(data[key])}" for key in sorted(data))


def compute_signature(data: Dict[str, Any], checksum_key: str) -> str:
    """HMAC-SHA256 (hex) of the sorted ``key=value`` string."""
    return hmac.new(
        checksum_key.encode("utf-8"),
        build_signature_payload(data).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def compute_body_signature(raw_body: bytes, checksum_key: str) -> str:
    """HMAC-SHA256 (hex) over the exact request bytes."""
    return hmac.new(checksum_key.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _secret(value: str | SecretStr) -> str:
    return value.get_secret_value() if isinstance(value, SecretStr) else value


def _parse_payment_info(order_code: int, data: Dict[str, Any]) -> PaymentInfo:
    transactions = data.get("transactions") or []
    latest = transactions[0] if transactions and isinstance(transactions[0], dict) else {}
    return PaymentInfo(
        order_code=int(data.get("orderCode") or order_code),
        status=str(data.get("status") or STATUS_PENDING).upper(),
        amount=data.get("amount"),
        amount_paid=data.get("amountPaid"),
        transaction_ref=latest.get("reference"),
        paid_at=latest.get("transactionDateTime"),
        raw=data,
    )


class PayOSClient:
    """Thin client for the PayOS payment-requests API."""

    def __init__(
        self,
        *,
        client_id: str,
        api_key: str | SecretStr,
        checksum_key: str | SecretStr,
        base_url: str = "https://api-merchant.payos.vn",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        api_key_value = _secret(api_key)
        checksum_value = _secret(checksum_key)
        if not client_id or not api_key_value or not checksum_value:
            raise ValueError("PayOS client id, API key and checksum key must be provided")

        self._client_id = client_id
        self._api_key = api_key_value
        self._checksum_key = checksum_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_payment_link(
        self,
        *,
        order_code: int,
        amount: int,
        description: str,
        return_url: str,
        cancel_url: str,
        buyer: Optional[Dict[str, Optional[str]]] = None,
        expired_at: Optional[datetime] = None,
    ) -> PaymentLink:
        """Create a checkout link for ``order_code``."""

        description = description[:MAX_DESCRIPTION_LENGTH]
        signed = {
            "amount": amount,
            "cancelUrl": cancel_url,
            "description": description,
            "orderCode": order_code,
            "returnUrl": return_url,
        }
        body: Dict[str, Any] = dict(signed)
        body["signature"] = compute_signature(signed, self._checksum_key)
        buyer = buyer or {}
        for key, source in (("buyerName", "name"), ("buyerEmail", "email"), ("buyerPhone", "phone")):
            if buyer.get(source):
                body[key] = buyer[source]
        if expired_at is not None:
            body["expiredAt"] = int(expired_at.timestamp())

        data = self._data(self.request("POST", PAYMENT_REQUESTS_PATH, json_body=body))
        checkout_url = data.get("checkoutUrl")
        if not checkout_url:
            raise PayOSError("PayOS response did not include a checkout URL", error_body=data)
        return PaymentLink(
            order_code=int(data.get("orderCode") or order_code),
            checkout_url=checkout_url,
            qr_code=data.get("qrCode"),
            payment_link_id=data.get("paymentLinkId"),
            raw=data,
        )

    def get_payment_info(self, order_code: int) -> PaymentInfo:
        """Fetch the live gateway status of ``order_code``."""

        data = self._data(self.request("GET", f"{PAYMENT_REQUESTS_PATH}/{order_code}"))
        return _parse_payment_info(order_code, data)

    def cancel_payment_link(self, order_code: int, reason: Optional[str] = None) -> bool:
        """Cancel an open link. Returns True when PayOS acknowledged the cancellation."""

        body = {"cancellationReason": reason} if reason else None
        payload = self.request("POST", f"{PAYMENT_REQUESTS_PATH}/{order_code}/cancel", json_body=body)
        return str(payload.get("code")) == PAYOS_SUCCESS_CODE

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str] = None) -> bool:
        """
        Verify a webhook delivery against the exact bytes received.

        With a header signature the HMAC covers the raw body. Otherwise the
        body's own ``signature`` must match the HMAC of its ``data`` object.
        """

        if signature:
            expected = compute_body_signature(raw_body, self._checksum_key)
            return hmac.compare_digest(expected, signature.strip())

        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return False
        if not isinstance(payload, dict):
            return False
        body_signature = payload.get("signature")
        data = payload.get("data")
        if not isinstance(body_signature, str) or not isinstance(data, dict):
            return False
        expected = compute_signature(data, self._checksum_key)
        return hmac.compare_digest(expected, body_signature)

    def sign(self, data: Dict[str, Any]) -> str:
        return compute_signature(data, self._checksum_key)

    def _data(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        code = str(payload.get("code"))
        if code != PAYOS_SUCCESS_CODE:
            raise PayOSError(
                f"PayOS returned code {code}: {payload.get('desc')}",
                error_type=code,
                error_body=payload,
            )
        return cast(Dict[str, Any], payload.get("data") or {})

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw PayOS API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/json",
                "x-client-id": self._client_id,
                "x-api-key": self._api_key,
            },
        ) as client:
            logger.debug(
                "PayOSClient request",
                extra={"evt": "payos_request", "method": method, "path": path},
            )
            try:
                response = client.request(method, url, json=json_body)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                error_payload: Any | None = None
                error_type: str | None = None
                try:
                    error_payload = exc.response.json()
                    if isinstance(error_payload, dict):
                        error_type = str(error_payload.get("code") or "") or None
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "PayOS API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                raise PayOSError(
                    message=f"PayOS API responded with status {status}",
                    status_code=status,
                    error_type=error_type,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("PayOS request failure for %s %s: %s", method, path, str(exc))
                raise PayOSError(
                    "Failed to reach PayOS API", error_type=ERROR_TYPE_UNREACHABLE
                ) from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from PayOS for %s %s: %s", method, path, response.text)
            raise PayOSError("Received malformed JSON from PayOS") from exc


class FakePayOSClient(PayOSClient):
    """
    In-memory stand-in that mimics PayOS for tests and ``PAYOS_FAKE=true``.

    Links are remembered per order code; tests move them with ``set_status``
    and simulate outages with ``fail_with``.
    """

    FAKE_CHECKSUM_KEY = "fake-payos-checksum-key"

    def __init__(self, checksum_key: str = FAKE_CHECKSUM_KEY) -> None:
        super().__init__(
            client_id="fake-payos-client",
            api_key="fake-payos-key",
            checksum_key=checksum_key,
            base_url="https://api-merchant.payos.vn",
        )
        self._logger = logging.getLogger(self.__class__.__name__)
        self.links: Dict[int, Dict[str, Any]] = {}
        self.cancelled: Dict[int, Optional[str]] = {}
        self.calls: list[tuple[str, int]] = []
        self._failures: Dict[str, PayOSError] = {}

    def fail_with(self, operation: str, error: Optional[PayOSError] = None) -> None:
        """Make ``operation`` (create/get/cancel) raise until ``clear_failure``."""
        self._failures[operation] = error or PayOSError(
            "Failed to reach PayOS API", error_type=ERROR_TYPE_UNREACHABLE
        )

    def clear_failure(self, operation: str) -> None:
        self._failures.pop(operation, None)

    def _maybe_fail(self, operation: str) -> None:
        error = self._failures.get(operation)
        if error is not None:
            raise error

    def set_status(
        self,
        order_code: int,
        status: str,
        *,
        transaction_ref: Optional[str] = None,
        amount: Optional[int] = None,
    ) -> None:
        link = self.links.setdefault(int(order_code), {"amount": amount or 0})
        link["status"] = status.upper()
        if amount is not None:
            link["amount"] = amount
        if transaction_ref is not None:
            link["reference"] = transaction_ref
        elif link["status"] == STATUS_PAID and not link.get("reference"):
            link["reference"] = f"FT{order_code}"

    def create_payment_link(
        self,
        *,
        order_code: int,
        amount: int,
        description: str,
        return_url: str,
        cancel_url: str,
        buyer: Optional[Dict[str, Optional[str]]] = None,
        expired_at: Optional[datetime] = None,
    ) -> PaymentLink:
        self.calls.append(("create", int(order_code)))
        self._maybe_fail("create")
        self.links[int(order_code)] = {
            "amount": amount,
            "status": STATUS_PENDING,
            "description": description[:MAX_DESCRIPTION_LENGTH],
            "return_url": return_url,
            "cancel_url": cancel_url,
        }
        self._logger.debug("Fake payment link created", extra={"order_code": order_code})
        return PaymentLink(
            order_code=int(order_code),
            checkout_url=f"https://pay.payos.vn/web/fake-{order_code}",
            qr_code=f"fake-qr-{order_code}",
            payment_link_id=f"plink_fake_{order_code}",
        )

    def get_payment_info(self, order_code: int) -> PaymentInfo:
        self.calls.append(("get", int(order_code)))
        self._maybe_fail("get")
        link = self.links.get(int(order_code))
        if link is None:
            raise PayOSError(
                f"PayOS returned code 101: order {order_code} not found",
                status_code=404,
                error_type="101",
            )
        status = link.get("status", STATUS_PENDING)
        reference = link.get("reference")
        return PaymentInfo(
            order_code=int(order_code),
            status=status,
            amount=link.get("amount"),
            amount_paid=link.get("amount") if status == STATUS_PAID else 0,
            transaction_ref=reference,
            paid_at="2024-01-01 00:00:00" if status == STATUS_PAID else None,
            raw=dict(link),
        )

    def cancel_payment_link(self, order_code: int, reason: Optional[str] = None) -> bool:
        self.calls.append(("cancel", int(order_code)))
        self._maybe_fail("cancel")
        link = self.links.get(int(order_code))
        if link is None or link.get("status") == STATUS_PAID:
            return False
        link["status"] = STATUS_CANCELLED
        self.cancelled[int(order_code)] = reason
        return True

    def build_webhook_body(self, order_code: int, *, code: str = PAYOS_SUCCESS_CODE) -> bytes:
        """Signed webhook body for ``order_code`` as PayOS would deliver it."""
        link = self.links.get(int(order_code), {})
        data = {
            "orderCode": int(order_code),
            "amount": link.get("amount", 0),
            "description": link.get("description", ""),
            "reference": link.get("reference") or f"FT{order_code}",
            "transactionDateTime": "2024-01-01 00:00:00",
            "currency": "VND",
            "paymentLinkId": f"plink_fake_{order_code}",
            "code": code,
            "desc": "success" if code == PAYOS_SUCCESS_CODE else "failed",
        }
        body = {
            "code": PAYOS_SUCCESS_CODE,
            "desc": "success",
            "success": True,
            "data": data,
            "signature": self.sign(data),
        }
        return json.dumps(body).encode("utf-8")


def build_payment_gateway(config: Any) -> Optional[PayOSClient]:
    """
    Gateway client for the given settings.

    ``payos_fake`` wins; otherwise a real client when credentials are present,
    else None (gateway payment methods are then rejected).
    """
    if config.payos_fake:
        return FakePayOSClient()
    if not config.payos_configured:
        return None
    return PayOSClient(
        client_id=config.payos_client_id,
        api_key=config.payos_api_key,
        checksum_key=config.payos_checksum_key,
        base_url=config.payos_api_base,
        timeout=config.payos_timeout_seconds,
    )
