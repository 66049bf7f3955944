"""Shift lifecycle through the HTTP API on a temporary SQLite database."""
import pytest
from gas_station.models import ShiftReconciliation

STATION = "/stations/S1"
DAY = "2026-03-01"
ADMIN = {"X-Admin-Override": "true"}


def _open_body(number=1, **kw):
    body = {
        "date_key": DAY,
        "shift_number": number,
        "staff_name": "Somchai",
        "meters": [
            {"nozzle_number": n, "start_reading": v}
            for n, v in [(1, 100), (2, 200), (3, 150), (4, 300)]
        ],
        "gauges": [{"tank_number": t, "percentage": p} for t, p in [(1, 50), (2, 40), (3, 30)]],
    }
    body.update(kw)
    return body


def _close_body(ends=((1, 110), (2, 220), (3, 150), (4, 310)), cash=643.60):
    return {
        "meters": [{"nozzle_number": n, "end_reading": v} for n, v in ends],
        "gauges": [{"tank_number": t, "percentage": p} for t, p in [(1, 45), (2, 38), (3, 30)]],
        "received": {"cash": cash, "credit": 0, "card": 0, "transfer": 0},
    }


def _sale(liters=30, payment_type="CASH"):
    return {
        "payment_type": payment_type,
        "liters": liters,
        "price_per_liter": 16.09,
        "license_plate": "80-1234",
        "transaction_at": "2026-03-01T03:00:00Z",
    }


@pytest.fixture
def opened(client):
    r = client.post(f"{STATION}/shifts", json=_open_body())
    assert r.status_code == 200, r.text
    return r.json()


def test_open_shift(opened):
    assert opened["status"] == "OPEN"
    assert opened["date_key"] == DAY
    assert [m["start_reading"] for m in opened["meters"]] == [100, 200, 150, 300]
    assert opened["opening_stock"] == 2880
    assert opened["carry_over_from_shift_id"] is None


def test_second_open_is_conflict(client, opened):
    r = client.post(f"{STATION}/shifts", json=_open_body(number=2))
    assert r.status_code == 409
    current = client.get(f"{STATION}/shifts/current").json()["shift"]
    assert current["id"] == opened["id"]
    assert current["status"] == "OPEN"


def test_open_with_bad_start_readings_lists_errors(client):
    body = _open_body(meters=[{"nozzle_number": 1, "start_reading": -5}])
    r = client.post(f"{STATION}/shifts", json=body)
    assert r.status_code == 422
    errors = r.json()["errors"]
    assert "Nozzle 1: start reading must not be negative" in errors
    assert len(errors) == 4


def test_unknown_nozzle_is_bad_request(client):
    r = client.post(f"{STATION}/shifts", json=_open_body(meters=[{"nozzle_number": 9, "start_reading": 1}]))
    assert r.status_code == 400


def test_invalid_date_key(client):
    r = client.get(f"{STATION}/shifts", params={"date_key": "2026-02-30"})
    assert r.status_code == 400


def test_close_missing_nozzle_keeps_shift_open(client, opened):
    body = _close_body(ends=((1, 110), (2, 220), (4, 310)))
    r = client.post(f"{STATION}/shifts/{opened['id']}/close", json=body)
    assert r.status_code == 422
    assert r.json()["errors"] == ["Nozzle 3: end reading is required"]
    shift = client.get(f"{STATION}/shifts/{opened['id']}").json()
    assert shift["status"] == "OPEN"
    assert all(m["end_reading"] is None for m in shift["meters"])
    assert shift["reconciliation"] is None


def test_close_and_carry_over(client, opened):
    tx = client.post(f"{STATION}/transactions", json=_sale())
    assert tx.status_code == 200
    assert tx.json()["shift_id"] == opened["id"]
    assert tx.json()["amount"] == 482.7

    r = client.post(f"{STATION}/shifts/{opened['id']}/close", json=_close_body())
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["shift"]["status"] == "CLOSED"
    assert data["shift"]["closing_stock"] == 2712
    rec = data["reconciliation"]
    assert rec["expected_fuel_amount"] == 643.6
    assert rec["variance_status"] == "BALANCED"
    assert rec["severity"] == "GREEN"
    assert rec["meter_sold_liters"] == 40
    assert rec["transaction_liters"] == 30
    assert rec["meter_discrepancy"] == {"has_discrepancy": True, "difference": 10.0, "percentage": 33.33}
    assert data["warnings"]
    assert data["transactions"]["count"] == 1
    assert data["transactions"]["fuel_amount"] == 482.7
    assert data["transactions"]["by_channel"] == {"cash": 482.7, "credit": 0, "card": 0, "transfer": 0}

    stored = client.get(f"{STATION}/shifts/{opened['id']}").json()
    assert stored["reconciliation"]["variance_status"] == "BALANCED"

    second = client.post(f"{STATION}/shifts", json={"date_key": DAY, "staff_name": "Malee"})
    assert second.status_code == 200, second.text
    second = second.json()
    assert second["shift_number"] == 2
    assert second["carry_over_from_shift_id"] == opened["id"]
    assert [m["start_reading"] for m in second["meters"]] == [110, 220, 150, 310]
    assert second["opening_stock"] == 2712

    listed = client.get(f"{STATION}/shifts", params={"date_key": DAY}).json()
    assert [s["shift_number"] for s in listed] == [1, 2]


def test_transaction_without_open_shift(client):
    r = client.post("/stations/S2/transactions", json=_sale())
    assert r.status_code == 409


def test_list_transactions_by_day(client, opened):
    client.post(f"{STATION}/transactions", json=_sale())
    client.post(f"{STATION}/transactions", json=_sale(liters=10, payment_type="OIL_TRUCK"))
    rows = client.get(f"{STATION}/transactions", params={"date_key": DAY}).json()
    assert len(rows) == 2
    assert client.get(f"{STATION}/transactions", params={"date_key": "2026-03-02"}).json() == []


def test_lock_and_void_rules(client, opened):
    tx = client.post(f"{STATION}/transactions", json=_sale()).json()
    shift_id = opened["id"]

    assert client.post(f"{STATION}/shifts/{shift_id}/lock").status_code == 409
    client.post(f"{STATION}/shifts/{shift_id}/close", json=_close_body())
    # closed minutes ago: not due without the override
    assert client.post(f"{STATION}/shifts/{shift_id}/lock").status_code == 409
    r = client.post(f"{STATION}/shifts/{shift_id}/lock", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "LOCKED"

    void_url = f"{STATION}/transactions/{tx['id']}/void"
    assert client.post(void_url, json={"reason": "typo"}).status_code == 423
    r = client.post(void_url, json={"reason": "typo"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["is_voided"] is True

    assert client.post(f"{STATION}/shifts/{shift_id}/reopen", headers=ADMIN).status_code == 423


def test_reopen_needs_admin(client, opened):
    shift_id = opened["id"]
    client.post(f"{STATION}/shifts/{shift_id}/close", json=_close_body())
    assert client.post(f"{STATION}/shifts/{shift_id}/reopen").status_code == 403
    r = client.post(f"{STATION}/shifts/{shift_id}/reopen", headers=ADMIN)
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "OPEN"
    assert data["reconciliation"] is None
    again = client.post(f"{STATION}/shifts/{shift_id}/close", json=_close_body())
    assert again.status_code == 200


def test_manual_start_readings(client):
    r = client.post(f"{STATION}/shifts", json={"date_key": DAY, "shift_number": 1, "staff_name": "A"})
    shift = r.json()
    assert shift["opening_stock"] is None
    r = client.put(f"{STATION}/shifts/{shift['id']}/start-readings", json={
        "meters": [{"nozzle_number": n, "start_reading": 0} for n in range(1, 5)],
        "gauges": [{"tank_number": t, "percentage": 80} for t in range(1, 4)],
    })
    assert r.status_code == 200
    assert r.json()["opening_stock"] == 5760


def test_stock_balance_and_gauge_comparison(client, opened):
    client.post(f"{STATION}/transactions", json=_sale())
    supply = client.post(f"{STATION}/supplies", json={"liters": 100, "date_key": DAY, "supplier": "PTT"})
    assert supply.status_code == 200
    client.post(f"{STATION}/shifts/{opened['id']}/close", json=_close_body())

    day = client.get(f"{STATION}/reports/stock-balance", params={"period": "day", "date_key": DAY}).json()
    assert day["opening"] == 2880
    assert day["supplies"] == 100
    assert day["sales"] == 40
    assert day["expected_closing"] == 2940
    assert day["actual_closing"] == 2712
    assert day["variance"] == -228
    assert day["is_balanced"] is False

    month = client.get(f"{STATION}/reports/stock-balance", params={"period": "month", "date_key": DAY}).json()
    assert month["sales"] == 40

    shift = client.get(
        f"{STATION}/reports/stock-balance", params={"period": "shift", "shift_id": opened["id"]}
    ).json()
    assert shift["opening"] == 2880
    assert shift["actual_closing"] == 2712

    assert client.get(f"{STATION}/reports/stock-balance", params={"period": "shift"}).status_code == 400

    cmp = client.get(f"{STATION}/reports/gauge-comparison", params={"date_key": DAY}).json()
    # tank 1 down 5% and tank 2 down 2% of 2400 L
    assert cmp["used_liters"] == 168
    assert cmp["meter_liters"] == 40
    assert cmp["is_abnormal"] is True


def test_close_with_utc_gauge_timestamps(client, opened):
    body = _close_body()
    for g in body["gauges"]:
        g["recorded_at"] = "2026-03-01T08:00:00Z"
    r = client.post(f"{STATION}/shifts/{opened['id']}/close", json=body)
    assert r.status_code == 200, r.text
    ends = [g for g in r.json()["shift"]["gauges"] if g["reading_type"] == "END"]
    assert [g["recorded_at"] for g in ends] == ["2026-03-01T08:00:00"] * 3


def test_close_stores_very_large_variance_percentage(client, opened):
    body = _close_body(ends=((1, 101), (2, 200), (3, 150), (4, 300)), cash=200000)
    r = client.post(f"{STATION}/shifts/{opened['id']}/close", json=body)
    assert r.status_code == 200, r.text
    # 1 L at 16.09 expected against 200,000 received
    assert r.json()["reconciliation"]["variance_percentage"] == 1242908.08
    stored = client.get(f"{STATION}/shifts/{opened['id']}").json()["reconciliation"]
    assert stored["variance_percentage"] == pytest.approx(1242908.08)


def test_variance_percentage_column_is_unbounded():
    column = ShiftReconciliation.__table__.c.variance_percentage
    assert column.type.precision is None


def test_close_without_transactions_reports_empty_sales(client, opened):
    r = client.post(f"{STATION}/shifts/{opened['id']}/close", json=_close_body())
    sales = r.json()["transactions"]
    assert sales["count"] == 0
    assert sales["by_channel"] == {"cash": 0, "credit": 0, "card": 0, "transfer": 0}


def test_list_transactions_over_a_range(client, opened):
    client.post(f"{STATION}/transactions", json=_sale())
    params = {"date_key": "2026-02-28", "to_date_key": DAY}
    assert len(client.get(f"{STATION}/transactions", params=params).json()) == 1
    params = {"date_key": "2026-03-02", "to_date_key": "2026-03-31"}
    assert client.get(f"{STATION}/transactions", params=params).json() == []
    params = {"date_key": DAY, "to_date_key": "2026-02-28"}
    assert client.get(f"{STATION}/transactions", params=params).status_code == 400
