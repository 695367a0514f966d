# Overview: Boundary with the external order-management API; HTTP transport, error taxonomy and typed order parsing.

"""
Order API boundary.

Everything that touches the shape of the external API lives here:
- httpx client construction and request wrapping
- error taxonomy shared by token, fetch and reconciliation services
- parsing of raw order JSON into ParsedOrder / MalformedOrder

Raw JSON never leaves this module. Downstream services only see
ParsedOrder, so classification and reconciliation need no defensive checks.

Error mapping:
- httpx timeouts / transport failures / 5xx / undecodable bodies -> TransientNetworkError
- rejected OAuth grants (400/401/403 from the token endpoint)     -> AuthError
- a single order that cannot be parsed                             -> MalformedOrder (DataError when raised)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

import httpx

from app.time_utils import parse_order_date


class OrderSyncError(Exception):
    """Base class for failures raised by the order sync core."""
    pass


class TransientNetworkError(OrderSyncError):
    """Timeout, connection failure, 5xx or malformed response body. Retried next cycle."""
    pass


class AuthError(OrderSyncError):
    """OAuth grant rejected (revoked/invalid refresh token, bad credentials)."""
    pass


class DataError(OrderSyncError):
    """An external order payload that cannot be interpreted."""
    pass


def build_http_client(*, timeout: float, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    """
    Client used for one sync cycle. Every request carries the fixed timeout.
    """
    return httpx.Client(
        timeout=timeout,
        headers={"Accept": "application/json"},
        transport=transport,
    )


def send_request(client: httpx.Client, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue a request, translating transport failures into TransientNetworkError."""
    try:
        return client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise TransientNetworkError(f"timeout calling {url}") from exc
    except httpx.TransportError as exc:
        raise TransientNetworkError(f"connection failure calling {url}: {exc}") from exc


def decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TransientNetworkError(
            f"malformed JSON body from {response.request.url} (HTTP {response.status_code})"
        ) from exc


def describe_error_body(response: httpx.Response) -> str:
    """Best-effort human message from an API error response."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") or error.get("description")
            if message:
                return f"HTTP {response.status_code}: {message}"
        if isinstance(error, str):
            detail = body.get("error_description")
            return f"HTTP {response.status_code}: {detail or error}"
    return f"HTTP {response.status_code}"


def extract_order_page(body: Any) -> list:
    """
    Pull the order array out of a listing envelope: {"data": [...]}.

    A missing/null "data" is an empty page; anything else that is not a list
    means the body is malformed.
    """
    if not isinstance(body, dict):
        raise TransientNetworkError("order listing body is not a JSON object")
    data = body.get("data")
    if data is None:
        return []
    if not isinstance(data, list):
        raise TransientNetworkError("order listing 'data' is not an array")
    return data


# =============================================================================
# TYPED ORDER REPRESENTATION
# =============================================================================

@dataclass(frozen=True)
class OrderLine:
    sku: Optional[str]
    quantity: int
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {"sku": self.sku, "quantity": self.quantity, "description": self.description}


@dataclass(frozen=True)
class ParsedOrder:
    external_id: str
    number: str
    status_id: Optional[int]
    status_text: Optional[str]
    customer_name: Optional[str]
    total_cents: int
    lines: tuple[OrderLine, ...]
    created_at: Optional[datetime]


@dataclass(frozen=True)
class MalformedOrder:
    reason: str
    external_id: Optional[str] = None


ParseResult = Union[ParsedOrder, MalformedOrder]

_STATUS_TEXT_FIELDS = ("valor", "nome", "descricao")

# Integer columns are 32-bit signed on every supported backend
MAX_DB_INT = 2**31 - 1
MAX_EXTERNAL_ID_LENGTH = 64


def _clean_str(value) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _to_decimal(value) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"not a number: {value!r}") from exc
    if not number.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return number


def _to_cents(value) -> int:
    amount = _to_decimal(value)
    if abs(amount) > Decimal(MAX_DB_INT) / 100:
        raise ValueError(f"total out of range: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _status_id(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().lstrip("-").isdecimal():
        value = int(value.strip()) if len(value.strip()) <= 10 else None
    if isinstance(value, int) and abs(value) <= MAX_DB_INT:
        return value
    return None


def _status_text(situacao: dict) -> Optional[str]:
    for field in _STATUS_TEXT_FIELDS:
        value = situacao.get(field)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _parse_line(raw) -> OrderLine:
    if not isinstance(raw, dict):
        raise ValueError("line item is not an object")

    sku = _clean_str(raw.get("codigo"))
    if sku is None and isinstance(raw.get("produto"), dict):
        sku = _clean_str(raw["produto"].get("codigo"))

    raw_qty = raw.get("quantidade")
    if raw_qty in (None, 0, "", "0"):
        quantity = 1
    else:
        qty = _to_decimal(raw_qty)
        if abs(qty) > MAX_DB_INT:
            raise ValueError(f"quantity out of range: {raw_qty!r}")
        if qty != qty.to_integral_value():
            raise ValueError(f"fractional quantity {raw_qty!r}")
        quantity = int(qty)
        if quantity <= 0:
            raise ValueError(f"non-positive quantity {raw_qty!r}")

    return OrderLine(sku=sku, quantity=quantity, description=_clean_str(raw.get("descricao")))


def parse_order(raw) -> ParseResult:
    """
    Convert one raw order object into a ParsedOrder.

    Never raises: anything that cannot be interpreted becomes a MalformedOrder
    carrying the reason, so one bad record cannot break a batch.
    """
    if not isinstance(raw, dict):
        return MalformedOrder(reason="order is not an object")

    external_id = _clean_str(raw.get("id"))
    if external_id is None:
        return MalformedOrder(reason="order has no id")
    if len(external_id) > MAX_EXTERNAL_ID_LENGTH:
        return MalformedOrder(reason="order id too long")

    situacao = raw.get("situacao")
    if not isinstance(situacao, dict):
        situacao = {}

    contato = raw.get("contato")
    customer_name = _clean_str(contato.get("nome")) if isinstance(contato, dict) else None

    try:
        total = raw.get("total")
        total_cents = 0 if total in (None, "") else _to_cents(total)

        items = raw.get("itens")
        if items is None:
            items = []
        if not isinstance(items, list):
            raise ValueError("'itens' is not an array")
        lines = tuple(_parse_line(item) for item in items)
    except (ValueError, ArithmeticError) as exc:
        return MalformedOrder(reason=str(exc) or type(exc).__name__, external_id=external_id)

    return ParsedOrder(
        external_id=external_id,
        number=_clean_str(raw.get("numero")) or external_id,
        status_id=_status_id(situacao.get("id")),
        status_text=_status_text(situacao),
        customer_name=customer_name,
        total_cents=total_cents,
        lines=lines,
        created_at=parse_order_date(raw.get("data")),
    )
