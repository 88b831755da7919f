import pytest

from plate_billing_web.app import app


@pytest.fixture
def http(tmp_path):
    app.config["TESTING"] = True
    app.config["BILLING_DATABASE_URL"] = f"sqlite:///{tmp_path / 'api.sqlite3'}"
    app.extensions.pop("billing_store", None)
    with app.test_client() as test_client:
        yield test_client
    app.extensions.pop("billing_store", None)


@pytest.fixture
def client_with_history(http):
    assert http.post("/clients", json={"id": "c1", "name": "Ramesh Patel"}).status_code == 201
    http.post(
        "/clients/c1/challans",
        json={"number": "CH-1", "date": "2024-01-01", "items": [{"plate_size": "2 X 3", "quantity": 100}]},
    )
    http.post(
        "/clients/c1/returns",
        json={"number": "RT-1", "date": "2024-01-11", "items": [{"plate_size": "2 X 3", "quantity": 40}]},
    )
    return http


def test_duplicate_client_conflicts(http):
    http.post("/clients", json={"id": "c1", "name": "Ramesh Patel"})
    response = http.post("/clients", json={"id": "c1", "name": "Someone Else"})
    assert response.status_code == 409
    assert [c["id"] for c in http.get("/clients").get_json()] == ["c1"]


def test_preview_does_not_persist(client_with_history):
    response = client_with_history.post(
        "/clients/c1/bills/preview",
        json={
            "bill_date": "2024-01-20",
            "preset": "gujarati",
            "extras": [{"note": "Transport", "quantity": 1, "unit_price": 200}],
            "payments": [{"note": "Cash", "amount": 640}],
        },
    )

    assert response.status_code == 200
    data = response.get_json()
    assert data["total_rent"] == "1540.00"
    assert data["core_total"] == "16640.00"
    assert data["final_due"] == "16200.00"
    assert client_with_history.get("/clients/c1/bills").get_json() == []


def test_create_bill_numbers_and_persists(client_with_history):
    response = client_with_history.post(
        "/clients/c1/bills",
        json={"bill_date": "2024-01-20", "preset": "standard", "rates": {"service_charge_rate": 0}},
    )

    assert response.status_code == 201
    data = response.get_json()
    assert data["bill_number"] == "BILL-0001"
    assert data["total_rent"] == "1600.00"
    assert client_with_history.get("/bills/BILL-0001").get_json()["final_due"] == "1600.00"

    second = client_with_history.post("/clients/c1/bills", json={"bill_date": "2024-01-31", "preset": "standard"})
    assert second.get_json()["bill_number"] == "BILL-0002"


def test_over_return_is_reported_as_warning(client_with_history):
    client_with_history.post(
        "/clients/c1/returns",
        json={"number": "RT-2", "date": "2024-01-15", "items": [{"plate_size": "2 X 3", "quantity": 90}]},
    )
    data = client_with_history.post("/clients/c1/bills/preview", json={"bill_date": "2024-01-20"}).get_json()
    assert len(data["warnings"]) == 1
    assert "RT-2" in data["warnings"][0]


def test_negative_rate_fails_calculation(client_with_history):
    response = client_with_history.post(
        "/clients/c1/bills", json={"bill_date": "2024-01-20", "rates": {"daily_rate": -1}}
    )
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("bill calculation failed for client Ramesh Patel")
    assert client_with_history.get("/clients/c1/bills").get_json() == []


def test_bad_requests(client_with_history):
    assert client_with_history.post("/clients/c1/bills", json={"bill_date": "soon"}).status_code == 400
    assert client_with_history.post("/clients/zz/bills", json={"bill_date": "2024-01-20"}).status_code == 404
    bad_items = {"number": "CH-9", "date": "2024-01-02", "items": [{"plate_size": "2 X 3", "quantity": -4}]}
    assert client_with_history.post("/clients/c1/challans", json=bad_items).status_code == 400
    assert client_with_history.get("/bills/BILL-0404").status_code == 404


def test_bad_damaged_and_lost_quantities_are_refused(client_with_history):
    for field, value in (("damaged_quantity", "x"), ("lost_quantity", -1), ("partner_quantity", 1.5)):
        response = client_with_history.post(
            "/clients/c1/returns",
            json={"number": "RT-9", "date": "2024-01-12", "items": [{"plate_size": "2 X 3", "quantity": 1, field: value}]},
        )
        assert response.status_code == 400, field
        assert field in response.get_json()["error"]
    preview = client_with_history.post("/clients/c1/bills/preview", json={"bill_date": "2024-01-20"})
    assert preview.status_code == 200


@pytest.mark.parametrize(
    "payload",
    [
        {"advance_paid": "NaN"},
        {"advance_paid": "Infinity"},
        {"rates": {"daily_rate": "NaN"}},
        {"rates": {"worker_charge": "-Infinity"}},
        {"service_charge_override": "NaN"},
        {"payments": [5]},
        {"payments": {"note": "Cash", "amount": 5}},
        {"extras": ["Transport"]},
        {"discounts": [{"note": "Loyal", "unit_price": "Infinity"}]},
    ],
)
def test_malformed_amounts_are_bad_requests(client_with_history, payload):
    for path in ("/clients/c1/bills/preview", "/clients/c1/bills"):
        response = client_with_history.post(path, json={"bill_date": "2024-01-20", **payload})
        assert response.status_code == 400, path
        assert response.get_json()["error"]
    assert client_with_history.get("/clients/c1/bills").get_json() == []


def test_non_finite_rate_reports_calculation_failure(client_with_history):
    response = client_with_history.post(
        "/clients/c1/bills/preview", json={"bill_date": "2024-01-20", "rates": {"daily_rate": "NaN"}}
    )
    assert response.status_code == 400
    assert response.get_json()["error"].startswith("bill calculation failed for client Ramesh Patel")


def test_next_bill_carries_plates_still_out(client_with_history):
    # Dated on the first bill's end date, so it belongs to that bill only.
    client_with_history.post(
        "/clients/c1/challans",
        json={"number": "CH-2", "date": "2024-01-20", "items": [{"plate_size": "2 X 3", "quantity": 5}]},
    )
    first = client_with_history.post(
        "/clients/c1/bills",
        json={"bill_date": "2024-01-20", "preset": "standard", "rates": {"service_charge_rate": 0}},
    ).get_json()
    assert first["total_rent"] == "1605.00"

    client_with_history.post(
        "/clients/c1/returns",
        json={"number": "RT-2", "date": "2024-01-25", "items": [{"plate_size": "2 X 3", "quantity": 10}]},
    )
    response = client_with_history.post(
        "/clients/c1/bills",
        json={"bill_date": "2024-01-31", "preset": "standard", "rates": {"service_charge_rate": 0}},
    )

    assert response.status_code == 201
    second = response.get_json()
    assert second["bill_number"] == "BILL-0002"
    assert second["opening_balance"] == 65
    assert second["total_plates_issued"] == 0
    assert [e["document_number"] for e in second["ledger_entries"]] == ["OPENING", "RT-2"]
    assert second["total_rent"] == "645.00"


def test_bill_inside_a_billed_period_is_refused(client_with_history):
    client_with_history.post("/clients/c1/bills", json={"bill_date": "2024-01-20"})
    response = client_with_history.post("/clients/c1/bills", json={"bill_date": "2024-01-20"})
    assert response.status_code == 400
    assert [b["bill_number"] for b in client_with_history.get("/clients/c1/bills").get_json()] == ["BILL-0001"]


def test_explicit_start_date_bills_from_that_day(client_with_history):
    client_with_history.post("/clients/c1/bills", json={"bill_date": "2024-01-20"})
    data = client_with_history.post(
        "/clients/c1/bills/preview",
        json={"bill_date": "2024-01-20", "start_date": "2024-01-01", "preset": "standard", "rates": {"service_charge_rate": 0}},
    ).get_json()
    assert data["opening_balance"] == 0
    assert data["total_rent"] == "1600.00"
