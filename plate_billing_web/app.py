import logging
import os
from dataclasses import replace
from decimal import Decimal, InvalidOperation

from flask import Flask, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from plate_billing.data_models import ChargeLine, Client, Payment, RateConfig, RawLineItem
from plate_billing.engine import calculate_bill, carried_balance
from plate_billing.errors import BillingError
from plate_billing.formatter import bill_to_dict
from plate_billing.utils import next_day, parse_date
from plate_billing_web.billing_store import create_store_from_env

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["BILLING_DATABASE_URL"] = os.environ.get("BILLING_DATABASE_URL")
app.config["DEFAULT_RATES"] = RateConfig.preset(
    os.environ.get("RATE_PRESET", "gujarati"),
    **{
        field: Decimal(os.environ[env_name])
        for field, env_name in (
            ("daily_rate", "DAILY_RENT_RATE"),
            ("worker_charge", "WORKER_CHARGE"),
            ("lost_plate_penalty", "LOST_PLATE_PENALTY"),
        )
        if os.environ.get(env_name)
    },
)


class RequestError(ValueError):
    """Malformed request payload."""


def get_store():
    """Return the app's billing store, creating it on first use."""
    store = current_app.extensions.get("billing_store")
    if store is None:
        store = create_store_from_env(current_app.config.get("BILLING_DATABASE_URL"))
        current_app.extensions["billing_store"] = store
    return store


def _payload() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise RequestError("Request body must be a JSON object")
    return data


def _decimal(value, field_name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError):
        raise RequestError(f"{field_name} must be a number")
    if not result.is_finite():
        raise RequestError(f"{field_name} must be a finite number")
    return result


def _date(value, field_name: str):
    try:
        return parse_date(value)
    except ValueError:
        raise RequestError(f"{field_name} must be a YYYY-MM-DD date")


def _whole(value) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and value >= 0


def _line_items(data: dict):
    items = data.get("items")
    if not isinstance(items, list) or not items:
        raise RequestError("items must be a non-empty list")
    for item in items:
        if not isinstance(item, dict) or not _whole(item.get("quantity")):
            raise RequestError("each item needs a non-negative whole quantity")
        for name in ("partner_quantity", "damaged_quantity", "lost_quantity"):
            if item.get(name) is not None and not _whole(item[name]):
                raise RequestError(f"{name} must be a non-negative whole number")
    return [
        RawLineItem(
            plate_size=str(item.get("plate_size", "")),
            quantity=item["quantity"],
            partner_quantity=item.get("partner_quantity") or 0,
            damaged_quantity=item.get("damaged_quantity") or 0,
            lost_quantity=item.get("lost_quantity") or 0,
        )
        for item in items
    ]


def _rates_from_payload(data: dict) -> RateConfig:
    rates = current_app.config["DEFAULT_RATES"]
    if data.get("preset"):
        try:
            rates = RateConfig.preset(data["preset"])
        except ValueError as exc:
            raise RequestError(str(exc))
    overrides = data.get("rates") or {}
    if not isinstance(overrides, dict):
        raise RequestError("rates must be an object")
    try:
        return replace(rates, **overrides) if overrides else rates
    except BillingError:
        raise
    except (TypeError, ValueError, InvalidOperation) as exc:
        raise RequestError(f"Invalid rates: {exc}")


def _objects(data: dict, key: str):
    lines = data.get(key) or []
    if not isinstance(lines, list) or not all(isinstance(line, dict) for line in lines):
        raise RequestError(f"{key} must be a list of objects")
    return lines


def _charge_lines(data: dict, key: str):
    return [
        ChargeLine(
            note=str(line.get("note", "")),
            quantity=_decimal(line.get("quantity", 1), f"{key}.quantity"),
            unit_price=_decimal(line.get("unit_price"), f"{key}.unit_price"),
        )
        for line in _objects(data, key)
    ]


def _bill_for_client(client: Client, data: dict):
    """Fetch the client's transactions and run the engine on them.

    Without an explicit ``start_date`` a client that has been billed before
    continues from the last bill: only later challans and returns are
    fetched, and the plates still out at the end of that bill are carried in
    as an opening balance from the following day.
    """
    store = get_store()
    bill_date = _date(data.get("bill_date"), "bill_date")
    opening_balance, opening_date = 0, None
    if data.get("start_date"):
        issues, returns = store.fetch_transactions(client.id, _date(data["start_date"], "start_date"), bill_date)
    else:
        previous_end = store.last_bill_end_date(client.id)
        if previous_end is None:
            issues, returns = store.fetch_transactions(client.id, end=bill_date)
        else:
            if bill_date <= previous_end:
                raise RequestError(
                    f"bill_date must be after the last bill's end date ({previous_end.isoformat()})"
                )
            opening_balance = carried_balance(*store.fetch_transactions(client.id, end=previous_end))
            opening_date = next_day(previous_end)
            issues, returns = store.fetch_transactions(client.id, end=bill_date, after=previous_end)
            logger.debug(
                "Client %s continues from %s with %d plates out", client.id, previous_end, opening_balance
            )
    payments = [
        Payment(note=str(p.get("note", "")), amount=_decimal(p.get("amount"), "payments.amount"))
        for p in _objects(data, "payments")
    ]
    override = data.get("service_charge_override")
    return calculate_bill(
        client,
        issues,
        returns,
        bill_date,
        _rates_from_payload(data),
        _decimal(data.get("advance_paid", 0), "advance_paid"),
        _charge_lines(data, "extras"),
        _charge_lines(data, "discounts"),
        payments,
        service_charge_override=_decimal(override, "service_charge_override") if override is not None else None,
        account_closure=data.get("account_closure", "continue"),
        opening_balance=opening_balance,
        opening_date=opening_date,
    )


def _client_or_404(client_id: str):
    client = get_store().get_client(client_id)
    if client is None:
        return None, (jsonify({"error": f"Unknown client {client_id}"}), 404)
    return client, None


@app.errorhandler(RequestError)
def handle_request_error(exc):
    return jsonify({"error": str(exc)}), 400


@app.get("/clients")
def list_clients():
    clients = get_store().list_clients()
    return jsonify([vars(c) for c in clients])


@app.post("/clients")
def create_client():
    data = _payload()
    if not data.get("id") or not data.get("name"):
        raise RequestError("id and name are required")
    client = Client(
        id=str(data["id"]),
        name=str(data["name"]),
        site=str(data.get("site", "")),
        mobile_number=str(data.get("mobile_number", "")),
    )
    try:
        get_store().add_client(client)
    except IntegrityError:
        return jsonify({"error": f"Client {client.id} already exists"}), 409
    return jsonify(vars(client)), 201


@app.post("/clients/<client_id>/challans")
def create_challan(client_id):
    client, error = _client_or_404(client_id)
    if error:
        return error
    data = _payload()
    number = data.get("number")
    if not number:
        raise RequestError("number is required")
    row_id = get_store().add_challan(client.id, number, _date(data.get("date"), "date"), _line_items(data))
    return jsonify({"id": row_id, "number": number}), 201


@app.post("/clients/<client_id>/returns")
def create_return(client_id):
    client, error = _client_or_404(client_id)
    if error:
        return error
    data = _payload()
    number = data.get("number")
    if not number:
        raise RequestError("number is required")
    row_id = get_store().add_return(client.id, number, _date(data.get("date"), "date"), _line_items(data))
    return jsonify({"id": row_id, "number": number}), 201


@app.post("/clients/<client_id>/bills/preview")
def preview_bill(client_id):
    client, error = _client_or_404(client_id)
    if error:
        return error
    try:
        bill = _bill_for_client(client, _payload())
    except BillingError as exc:
        logger.warning("Bill preview failed for client %s: %s", client.id, exc)
        return jsonify({"error": f"bill calculation failed for client {client.name}: {exc}"}), 400
    return jsonify(bill_to_dict(bill))


@app.post("/clients/<client_id>/bills")
def create_bill(client_id):
    client, error = _client_or_404(client_id)
    if error:
        return error
    data = _payload()
    store = get_store()
    try:
        bill = _bill_for_client(client, data)
    except BillingError as exc:
        logger.error("Bill calculation failed for client %s: %s", client.id, exc)
        return jsonify({"error": f"bill calculation failed for client {client.name}: {exc}"}), 400
    bill.bill_number = store.next_bill_number()
    store.save_bill(bill)
    for warning in bill.warnings:
        logger.warning("Bill %s: %s", bill.bill_number, warning)
    return jsonify(bill_to_dict(bill)), 201


@app.get("/clients/<client_id>/bills")
def list_bills(client_id):
    client, error = _client_or_404(client_id)
    if error:
        return error
    return jsonify(get_store().list_bills(client.id))


@app.get("/bills/<bill_number>")
def get_bill(bill_number):
    bill = get_store().get_bill(bill_number)
    if bill is None:
        return jsonify({"error": f"Unknown bill {bill_number}"}), 404
    return jsonify(bill)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    print("Starting plate billing API...")
    app.run(host="0.0.0.0", port=8710, debug=True)
