# Overview: Pytest coverage for parsing external order payloads at the API boundary.

from datetime import datetime

import httpx
import pytest

from app.services.order_api import (
    MalformedOrder,
    OrderLine,
    ParsedOrder,
    TransientNetworkError,
    decode_json,
    extract_order_page,
    parse_order,
    send_request,
)


def test_parse_full_order():
    parsed = parse_order({
        "id": 12345,
        "numero": 1001,
        "data": "2026-10-18",
        "situacao": {"id": 5, "valor": "Verificado"},
        "contato": {"nome": "Jane Doe"},
        "total": "149.90",
        "itens": [
            {"codigo": "X", "quantidade": 3, "descricao": "Widget"},
            {"produto": {"codigo": "Y"}, "quantidade": "1"},
        ],
    })

    assert isinstance(parsed, ParsedOrder)
    assert parsed.external_id == "12345"
    assert parsed.number == "1001"
    assert parsed.status_id == 5
    assert parsed.status_text == "Verificado"
    assert parsed.customer_name == "Jane Doe"
    assert parsed.total_cents == 14990
    assert parsed.lines == (
        OrderLine(sku="X", quantity=3, description="Widget"),
        OrderLine(sku="Y", quantity=1),
    )
    assert parsed.created_at == datetime(2026, 10, 18, 12, 0)


def test_status_text_field_fallbacks():
    assert parse_order({"id": 1, "situacao": {"nome": "Named"}}).status_text == "Named"
    assert parse_order({"id": 1, "situacao": {"descricao": "Described"}}).status_text == "Described"
    assert parse_order({"id": 1, "situacao": {"valor": "", "nome": "Second"}}).status_text == "Second"
    assert parse_order({"id": 1}).status_text is None


def test_minimal_order_defaults():
    parsed = parse_order({"id": "abc"})

    assert parsed.number == "abc"
    assert parsed.status_id is None
    assert parsed.customer_name is None
    assert parsed.total_cents == 0
    assert parsed.lines == ()
    assert parsed.created_at is None


def test_missing_quantity_defaults_to_one():
    parsed = parse_order({"id": 1, "itens": [{"codigo": "X"}, {"codigo": "Z", "quantidade": 0}]})
    assert [line.quantity for line in parsed.lines] == [1, 1]


def test_line_without_sku_is_kept_with_none():
    parsed = parse_order({"id": 1, "itens": [{"codigo": "  ", "quantidade": 2}]})
    assert parsed.lines == (OrderLine(sku=None, quantity=2),)


def test_iso_datetime_order_date():
    parsed = parse_order({"id": 1, "data": "2026-10-18T08:30:00-03:00"})
    assert parsed.created_at == datetime(2026, 10, 18, 11, 30)


def test_unparseable_date_is_none():
    assert parse_order({"id": 1, "data": "yesterday"}).created_at is None


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "not-an-order",
        {"numero": 1},
        {"id": 1, "total": "lots"},
        {"id": 1, "itens": "X"},
        {"id": 1, "itens": ["X"]},
        {"id": 1, "itens": [{"codigo": "X", "quantidade": 1.5}]},
        {"id": 1, "itens": [{"codigo": "X", "quantidade": -2}]},
        {"id": 1, "total": 1e27},
        {"id": 1, "total": "1e999999"},
        {"id": 1, "itens": [{"codigo": "X", "quantidade": "1e999999"}]},
        {"id": 1, "itens": [{"codigo": "X", "quantidade": "-1e999999"}]},
        {"id": "7" * 65},
    ],
)
def test_malformed_orders(raw):
    assert isinstance(parse_order(raw), MalformedOrder)


def test_malformed_order_keeps_external_id():
    result = parse_order({"id": 77, "itens": "broken"})
    assert result.external_id == "77"
    assert "itens" in result.reason


def test_extract_order_page():
    assert extract_order_page({"data": [{"id": 1}]}) == [{"id": 1}]
    assert extract_order_page({"data": None}) == []
    assert extract_order_page({}) == []
    with pytest.raises(TransientNetworkError):
        extract_order_page([])
    with pytest.raises(TransientNetworkError):
        extract_order_page({"data": {"id": 1}})


def test_send_request_maps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(TransientNetworkError):
            send_request(client, "GET", "https://api.test/x")


def test_decode_json_rejects_non_json_body():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        response = client.get("https://api.test/x")
        with pytest.raises(TransientNetworkError):
            decode_json(response)


def test_out_of_range_status_id_is_treated_as_absent():
    assert parse_order({"id": 1, "situacao": {"id": "9" * 5000}}).status_id is None
    assert parse_order({"id": 1, "situacao": {"id": 2**40}}).status_id is None
    assert parse_order({"id": 1, "situacao": {"id": " 11 "}}).status_id == 11
