import hashlib
import hmac
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, NamedTuple, Optional
from urllib.parse import urlparse

import requests
from fastapi import Request

from lms_payments.config import Settings
from lms_payments.errors import FawaterakError, GatewayNotConfigured

logger = logging.getLogger(__name__)

# Display names for the method ids the gateway is known to return
METHOD_DISPLAY_NAMES = {
    "vodafone_cash": "Vodafone Cash",
    "orange_cash": "Orange Cash",
    "etisalat_cash": "Etisalat Cash",
    "we_cash": "We Cash",
    "fawry": "Fawry",
    "meeza": "Meeza",
    "visa": "Visa",
    "mastercard": "Mastercard",
}


class InvoiceLink(NamedTuple):
    invoice_key: Optional[str]
    invoice_id: Optional[str]
    invoice_url: Optional[str]


class InvoiceDetails(NamedTuple):
    status: Optional[str]
    amount: Optional[Decimal]
    payment_method: Optional[str]


class PaymentMethod(NamedTuple):
    id: str
    name: str
    icon: Optional[str]
    commission: Any


def _first(*values):
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _as_str(value) -> Optional[str]:
    return None if value is None else str(value)


def _as_decimal(value) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _error_body(response: requests.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


def _json_body(response: requests.Response, endpoint: str, expect_dict: bool = True):
    try:
        body = response.json()
    except ValueError:
        body = None
    if body is None or (expect_dict and not isinstance(body, dict)):
        logger.error("%s returned an invalid response (%s)", endpoint, response.status_code)
        raise FawaterakError(f"{endpoint} returned an invalid response", response.status_code, response.text)
    return body


class FawaterakClient:
    """Thin client for the Fawaterak v2 REST API."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.base_url = settings.fawaterak_api_url.rstrip("/")
        self.timeout = settings.gateway_timeout
        self.session = requests.Session()
        self.session.headers.update({
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.fawaterak_api_key or ''}",
            "X-Provider-Key": settings.fawaterak_provider_key or "",
        })

    @property
    def configured(self) -> bool:
        return self.settings.gateway_configured

    def ensure_configured(self):
        if not self.settings.gateway_configured:
            logger.error("Fawaterak credentials are not configured")
            raise GatewayNotConfigured("Fawaterak credentials not configured")

    def _post(self, endpoint: str, body: Dict[str, Any]) -> requests.Response:
        try:
            return self.session.post(f"{self.base_url}/{endpoint}", json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FawaterakError(f"{endpoint} request failed: {exc}") from exc

    def _get(self, endpoint: str, params: Dict[str, Any] = None) -> requests.Response:
        try:
            return self.session.get(f"{self.base_url}/{endpoint}", params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise FawaterakError(f"{endpoint} request failed: {exc}") from exc

    def create_invoice(self, invoice_data: Dict[str, Any]) -> InvoiceLink:
        self.ensure_configured()

        endpoint = "createInvoiceLink"
        response = self._post(endpoint, invoice_data)
        if not response.ok:
            details = _error_body(response)
            logger.error("createInvoiceLink failed (%s): %s", response.status_code, details)
            if response.status_code != 400:
                raise FawaterakError("createInvoiceLink failed", response.status_code, details)

            logger.info("Retrying invoice creation through createInvoice")
            endpoint = "createInvoice"
            response = self._post(endpoint, invoice_data)
            if not response.ok:
                details = _error_body(response)
                logger.error("createInvoice failed (%s): %s", response.status_code, details)
                raise FawaterakError("createInvoice failed", response.status_code, details)

        return self.parse_invoice_link(_json_body(response, endpoint))

    @staticmethod
    def parse_invoice_link(body: Dict[str, Any]) -> InvoiceLink:
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        key = _first(data.get("invoiceKey"), data.get("invoice_key"), body.get("invoiceKey"), body.get("invoice_key"))
        invoice_id = _first(data.get("invoiceId"), data.get("invoice_id"), body.get("invoiceId"), body.get("invoice_id"))
        # frame_url is the iframe-embeddable variant when the gateway sends one
        url = _first(
            data.get("frame_url"), body.get("frame_url"),
            data.get("url"), body.get("url"),
            data.get("invoiceUrl"), data.get("invoice_url"),
            body.get("invoiceUrl"), body.get("invoice_url"),
        )
        return InvoiceLink(_as_str(key), _as_str(invoice_id), url)

    def get_invoice_details(self, invoice_key: str) -> InvoiceDetails:
        self.ensure_configured()

        response = self._get("getInvoiceDetails", params={"invoice_key": invoice_key})
        if not response.ok:
            raise FawaterakError("getInvoiceDetails failed", response.status_code, _error_body(response))

        body = _json_body(response, "getInvoiceDetails")
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        return InvoiceDetails(
            status=_first(data.get("status"), body.get("status"), body.get("invoice_status"), data.get("invoice_status")),
            amount=_as_decimal(_first(data.get("total"), data.get("invoice_total"), body.get("total"))),
            payment_method=_first(data.get("payment_method"), body.get("payment_method")),
        )

    def get_payment_methods(self) -> List[PaymentMethod]:
        self.ensure_configured()

        response = self._get("getPaymentmethods")
        if not response.ok:
            raise FawaterakError("getPaymentmethods failed", response.status_code, _error_body(response))
        return self.parse_payment_methods(_json_body(response, "getPaymentmethods", expect_dict=False))

    @staticmethod
    def parse_payment_methods(body) -> List[PaymentMethod]:
        if isinstance(body, list):
            items = body
        elif isinstance(body, dict) and isinstance(body.get("data"), list):
            items = body["data"]
        elif isinstance(body, dict) and isinstance(body.get("payment_methods"), list):
            items = body["payment_methods"]
        else:
            items = []

        methods = []
        for index, item in enumerate(items):
            method_id = _first(
                item.get("paymentId"), item.get("id"), item.get("payment_method_id"),
                item.get("name_en"), item.get("name"), f"method-{index}",
            )
            name = _first(item.get("name_en"), item.get("name"), item.get("title"), method_id)
            methods.append(PaymentMethod(
                id=str(method_id),
                name=METHOD_DISPLAY_NAMES.get(str(method_id).lower(), str(name)),
                icon=_first(item.get("logo"), item.get("icon"), item.get("image")),
                commission=_first(item.get("commission"), item.get("commission_percentage"), item.get("fee")) or 0,
            ))
        return methods


def plugin_hash_key(settings: Settings):
    """Hash the embedded payment plugin uses to authenticate this site."""
    if not settings.gateway_configured:
        raise GatewayNotConfigured("Fawaterak credentials not configured")

    domain = urlparse(settings.public_url).hostname or settings.public_url
    if domain == "127.0.0.1":
        domain = "localhost"

    message = f"Domain={domain}&ProviderKey={settings.fawaterak_provider_key}"
    hash_key = hmac.new(
        settings.fawaterak_api_key.encode(), message.encode(), hashlib.sha256
    ).hexdigest()
    return hash_key, domain


def get_gateway(request: Request) -> FawaterakClient:
    return request.app.state.gateway
