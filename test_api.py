import asyncio
import base64
import io

import openpyxl
import pytest
import requests
from fastapi.testclient import TestClient
from PIL import Image as PILImage

import main

client = TestClient(main.app)


def loan_payload(**overrides):
    loan = {
        "loanAmount": 10000,
        "interestRate": 0,
        "offset": 0,
        "repayment": 1000,
        "extraRepayment": 0,
        "frequency": "Monthly",
        "extraFrequency": "Monthly",
        "termYears": 5,
        "startDate": "2024-01-01",
    }
    loan.update(overrides)
    return loan


@pytest.fixture(autouse=True)
def no_currency_lookup(monkeypatch):
    monkeypatch.setattr(main, "get_currency_symbol_from_ip", lambda ip: "€")


def test_index_page():
    response = client.get("/")
    assert response.status_code == 200
    assert "Loan Comparison" in response.text


def test_defaults():
    response = client.get("/defaults")
    assert response.status_code == 200
    loan = response.json()
    assert loan["loanAmount"] == 600000
    assert loan["interestRate"] == 6.25
    assert loan["frequency"] == "Fortnightly"
    assert loan["extraFrequency"] == "Monthly"
    assert loan["termYears"] == 30


def test_calculate_returns_null_padded_rows():
    response = client.post("/calculate", json={
        "loan1": loan_payload(),
        "loan2": loan_payload(loanAmount=15000),
    })
    assert response.status_code == 200
    body = response.json()
    assert body["currencySymbol"] == "€"
    rows = body["result"]["rows"]
    assert len(rows) == 15
    assert rows[0] == {
        "date": "2024-01-01",
        "balance": 9000,
        "interest": 0,
        "totalPaid": 1000,
        "balance2": 14000,
        "interest2": 0,
        "totalPaid2": 1000,
    }
    assert rows[12]["balance"] is None
    assert rows[12]["totalPaid"] is None
    assert rows[12]["balance2"] == 2000
    assert body["result"]["difference"]["periodsDiff"] == -5
    assert body["result"]["loan1"]["payoffDate"] == "2024-09-27"


@pytest.mark.parametrize("overrides, error", [
    ({"frequency": "Daily"}, "InvalidFrequency"),
    ({"extraFrequency": "Yearly"}, "InvalidFrequency"),
    ({"termYears": 0}, "NonPositiveTerm"),
    ({"offset": -10}, "NegativeAmount"),
    ({"repayment": -1}, "NegativeAmount"),
])
def test_calculate_rejects_invalid_loan(overrides, error):
    response = client.post("/calculate", json={
        "loan1": loan_payload(),
        "loan2": loan_payload(**overrides),
    })
    assert response.status_code == 422
    assert response.json()["error"] == error


def test_calculate_rejects_malformed_loan():
    response = client.post("/calculate", json={
        "loan1": loan_payload(loanAmount="lots"),
        "loan2": loan_payload(),
    })
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "ValidationError"
    assert body["detail"][0]["loc"] == ["loanAmount"]


def test_download_excel():
    response = client.post("/download_excel", json={
        "loan1": loan_payload(),
        "loan2": loan_payload(loanAmount=15000),
    })
    assert response.status_code == 200
    assert response.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
    wb = openpyxl.load_workbook(io.BytesIO(response.content))
    assert wb.sheetnames == ["Summary", "Comparison"]
    ws = wb["Comparison"]
    assert ws.max_row == 16
    assert ws["A2"].value == "2024-01-01"
    assert ws["B13"].value is None
    assert ws["E13"].value == 3000
    summary = wb["Summary"]
    assert summary["B2"].value == 10
    assert summary["C2"].value == 15


def test_download_excel_with_chart():
    png = io.BytesIO()
    PILImage.new("RGB", (20, 10), "white").save(png, format="PNG")
    chart = "data:image/png;base64," + base64.b64encode(png.getvalue()).decode()
    response = client.post("/download_excel", json={
        "loan1": loan_payload(),
        "loan2": loan_payload(),
        "charts": [chart],
    })
    assert response.status_code == 200


class FakeResponse:
    status_code = 200

    def __init__(self, payload):
        self.payload = payload

    def json(self):
        return self.payload


def test_currency_symbol_from_country(monkeypatch):
    monkeypatch.undo()
    monkeypatch.setattr(main.requests, "get", lambda url, timeout: FakeResponse({"country": "GB"}))
    assert main.get_currency_symbol_from_ip("81.2.69.160") == "£"


def test_currency_symbol_falls_back_on_error(monkeypatch):
    monkeypatch.undo()

    def fail(url, timeout):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(main.requests, "get", fail)
    assert main.get_currency_symbol_from_ip("81.2.69.160") == "$"


def test_currency_symbol_unknown_country(monkeypatch):
    monkeypatch.undo()
    monkeypatch.setattr(main.requests, "get", lambda url, timeout: FakeResponse({"country": "XX"}))
    assert main.get_currency_symbol_from_ip("81.2.69.160") == "$"


def test_currency_lookup_runs_off_the_event_loop(monkeypatch):
    loops = []

    def lookup(ip):
        try:
            loops.append(asyncio.get_running_loop())
        except RuntimeError:
            loops.append(None)
        return "€"

    monkeypatch.setattr(main, "get_currency_symbol_from_ip", lookup)
    response = client.post("/calculate", json={"loan1": loan_payload(), "loan2": loan_payload()})
    assert response.status_code == 200
    assert loops == [None]


def test_calculate_rejects_runaway_interest_rate():
    response = client.post("/calculate", json={
        "loan1": loan_payload(interestRate=100000, termYears=30),
        "loan2": loan_payload(),
    })
    assert response.status_code == 422
    assert response.json()["error"] == "AmountOutOfRange"


@pytest.mark.parametrize("chart", [
    "data:image/png;base64,abc",
    "data:image/png;base64," + base64.b64encode(b"not an image at all").decode(),
])
def test_download_excel_rejects_bad_chart(chart):
    response = client.post("/download_excel", json={
        "loan1": loan_payload(),
        "loan2": loan_payload(),
        "charts": [chart],
    })
    assert response.status_code == 422
    assert response.json()["error"] == "InvalidChart"
