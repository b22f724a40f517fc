"""Mobile-money gateway clients used to start and confirm charges."""

from __future__ import annotations

import abc
import base64
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

import httpx

from ..settings import MpesaSettings
from .errors import ConfigurationError, GatewayError, GatewayTransientError

LOGGER = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Daraja answers a status query with this code while the customer has not
# yet confirmed the prompt on their handset.
MPESA_PROCESSING_ERROR_CODE = "500.001.1001"


@dataclass
class ChargeInitiation:
    """Gateway acknowledgement for a newly started charge."""

    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    customer_message: Optional[str] = None


@dataclass
class ChargeStatus:
    """Status of a charge as reported by the gateway.

    ``status`` is one of ``pending``, ``completed`` or ``failed``; any other
    value is treated as pending by the payment monitor.
    """

    status: str
    message: Optional[str] = None
    success: bool = False
    receipt_number: Optional[str] = None
    amount: Optional[Decimal] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED and self.success

    @property
    def is_failed(self) -> bool:
        return self.status == STATUS_FAILED


def normalize_msisdn(phone: str) -> str:
    """Return a Kenyan MSISDN in ``2547XXXXXXXX`` form."""

    digits = "".join(char for char in phone or "" if char.isdigit())
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in {"7", "1"}:
        digits = "254" + digits
    if not digits.startswith("254") or len(digits) != 12:
        raise ValueError(f"Invalid phone number: {phone!r}")
    return digits


class MobileMoneyGateway(abc.ABC):
    """Interface implemented by mobile-money providers."""

    name: str

    @abc.abstractmethod
    def initiate_charge(self, phone: str, amount: Decimal, reference: str) -> ChargeInitiation:
        """Prompt the payer and return the gateway correlation id."""

    @abc.abstractmethod
    def get_status(self, checkout_request_id: str) -> ChargeStatus:
        """Return the current status of a previously initiated charge."""


class MpesaGateway(MobileMoneyGateway):
    """Safaricom Daraja STK push client."""

    name = "mpesa"
    token_path = "/oauth/v1/generate"
    stk_push_path = "/mpesa/stkpush/v1/processrequest"
    stk_query_path = "/mpesa/stkpushquery/v1/query"

    def __init__(self, settings: MpesaSettings, *, client: httpx.Client | None = None) -> None:
        missing = [
            name
            for name, value in (
                ("MPESA_CONSUMER_KEY", settings.consumer_key),
                ("MPESA_CONSUMER_SECRET", settings.consumer_secret),
                ("MPESA_SHORTCODE", settings.shortcode),
                ("MPESA_PASSKEY", settings.passkey),
                ("MPESA_CALLBACK_URL", settings.callback_url),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing M-Pesa settings: {', '.join(missing)}")
        self.settings = settings
        self._client = client or httpx.Client(base_url=settings.base_url, timeout=settings.timeout)
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def _access_token(self) -> str:
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            try:
                response = self._client.get(
                    self.token_path,
                    params={"grant_type": "client_credentials"},
                    auth=(self.settings.consumer_key, self.settings.consumer_secret),
                )
            except httpx.HTTPError as exc:
                raise GatewayTransientError(f"M-Pesa authentication failed: {exc}") from exc
            if response.status_code != 200:
                raise GatewayError(f"M-Pesa authentication rejected: {response.text}")
            payload = response.json()
            self._token = payload["access_token"]
            expires_in = int(payload.get("expires_in", 3599))
            # Refresh one minute before the reported expiry.
            self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
            return self._token

    def _password(self, timestamp: str) -> str:
        raw = f"{self.settings.shortcode}{self.settings.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            return self._client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise GatewayTransientError(f"M-Pesa request to {path} failed: {exc}") from exc

    def initiate_charge(self, phone: str, amount: Decimal, reference: str) -> ChargeInitiation:
        msisdn = normalize_msisdn(phone)
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        whole_amount = int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        payload = {
            "BusinessShortCode": self.settings.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_amount,
            "PartyA": msisdn,
            "PartyB": self.settings.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": self.settings.callback_url,
            "AccountReference": reference[:12],
            "TransactionDesc": "Internet",
        }
        response = self._post(self.stk_push_path, payload)
        data = response.json() if response.content else {}
        if response.status_code != 200 or str(data.get("ResponseCode")) != "0":
            message = data.get("errorMessage") or data.get("ResponseDescription") or response.text
            raise GatewayError(f"M-Pesa rejected the charge: {message}")
        return ChargeInitiation(
            checkout_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
            customer_message=data.get("CustomerMessage"),
        )

    def get_status(self, checkout_request_id: str) -> ChargeStatus:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.settings.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        response = self._post(self.stk_query_path, payload)
        data = response.json() if response.content else {}
        if data.get("errorCode") == MPESA_PROCESSING_ERROR_CODE:
            return ChargeStatus(status=STATUS_PENDING, message=data.get("errorMessage"), raw=data)
        if response.status_code >= 500:
            raise GatewayTransientError(f"M-Pesa status query failed: {response.text}")
        return parse_result_code(data.get("ResultCode"), data.get("ResultDesc"), raw=data)


def parse_result_code(
    result_code: Any, description: Optional[str] = None, *, raw: dict[str, Any] | None = None
) -> ChargeStatus:
    """Map a Daraja ``ResultCode`` onto a charge status."""

    if result_code is None or result_code == "":
        return ChargeStatus(status=STATUS_PENDING, message=description, raw=raw or {})
    if str(result_code) == "0":
        return ChargeStatus(
            status=STATUS_COMPLETED, message=description, success=True, raw=raw or {}
        )
    return ChargeStatus(status=STATUS_FAILED, message=description, raw=raw or {})


def build_gateway_from_env(settings: MpesaSettings | None = None) -> MobileMoneyGateway:
    """Instantiate the configured gateway, raising ``ConfigurationError`` when incomplete."""

    return MpesaGateway(settings or MpesaSettings.from_env())
