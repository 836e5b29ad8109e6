import base64
import io
import logging
from typing import Any, Dict, List

import openpyxl
import requests
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from openpyxl.drawing.image import Image as OpenpyxlImage
from PIL import Image as PILImage
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

import config
from finance import (
    ComparisonResult,
    LoanInputError,
    LoanParameters,
    compare_loans,
    default_loan
)

logger = logging.getLogger(__name__)

app = FastAPI()
app.mount("/static", StaticFiles(directory=config.STATIC_DIR), name="static")
templates = Jinja2Templates(directory=config.TEMPLATES_DIR)


class InvalidChart(Exception):
    pass


class ComparisonRequest(BaseModel):
    loan1: Dict[str, Any]
    loan2: Dict[str, Any]
    charts: List[str] = []


class CalculationResponseWithCurrency(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    result: ComparisonResult
    currency_symbol: str


@app.exception_handler(LoanInputError)
async def loan_input_error_handler(request: Request, exc: LoanInputError):
    logger.info("Rejected loan input: %s", exc)
    return JSONResponse(status_code=422, content={"error": type(exc).__name__, "detail": str(exc)})


@app.exception_handler(InvalidChart)
async def invalid_chart_handler(request: Request, exc: InvalidChart):
    logger.info("Rejected chart image: %s", exc)
    return JSONResponse(status_code=422, content={"error": "InvalidChart", "detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.info("Malformed loan input: %d error(s)", exc.error_count())
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationError", "detail": exc.errors(include_url=False, include_context=False, include_input=False)}
    )


def get_client_ip(request: Request) -> str:
    client_ip = request.client.host if request.client else None
    if client_ip in ("127.0.0.1", "::1", None):
        xff = request.headers.get("x-forwarded-for")
        if xff:
            client_ip = xff.split(",")[0].strip()
    return client_ip or ""


def get_currency_symbol_from_ip(ip: str) -> str:
    try:
        resp = requests.get(config.CURRENCY_LOOKUP_URL.format(ip=ip), timeout=config.CURRENCY_LOOKUP_TIMEOUT)
        if resp.status_code == 200:
            country = resp.json().get('country')
            if country and country in config.COUNTRY_CURRENCY:
                return config.COUNTRY_CURRENCY[country]
    except (requests.RequestException, ValueError) as exc:
        logger.debug("Currency lookup for %r failed: %s", ip, exc)
    return config.DEFAULT_CURRENCY_SYMBOL


def run_comparison(payload: ComparisonRequest) -> ComparisonResult:
    loan1 = LoanParameters.model_validate(payload.loan1)
    loan2 = LoanParameters.model_validate(payload.loan2)
    return compare_loans(loan1, loan2)


@app.get("/", response_class=HTMLResponse)
async def read_root(request: Request):
    return templates.TemplateResponse(request, "index.html", {})


@app.get("/defaults", response_model=LoanParameters)
async def defaults():
    return default_loan()


@app.post("/calculate", response_model=CalculationResponseWithCurrency)
def calculate(request: Request, payload: ComparisonRequest):
    result = run_comparison(payload)
    currency_symbol = get_currency_symbol_from_ip(get_client_ip(request))
    return CalculationResponseWithCurrency(result=result, currency_symbol=currency_symbol)


def add_chart(ws, chart_base64: str, cell: str):
    try:
        img_bytes = base64.b64decode(chart_base64.split(",")[-1])
        img = PILImage.open(io.BytesIO(img_bytes))
        img.load()
    except (ValueError, OSError) as exc:
        raise InvalidChart(f"Chart for cell {cell} is not a base64 encoded image: {exc}") from exc
    png = io.BytesIO()
    img.save(png, format="PNG")
    png.seek(0)
    ws.add_image(OpenpyxlImage(png), cell)


def build_workbook(result: ComparisonResult, charts: List[str]) -> openpyxl.Workbook:
    wb = openpyxl.Workbook()
    ws_summary = wb.active
    ws_summary.title = "Summary"
    ws_rows = wb.create_sheet("Comparison")
    # Write summary
    s1, s2 = result.loan1, result.loan2
    ws_summary.append(["", "Loan 1", "Loan 2"])
    ws_summary.append(["Periods", s1.periods, s2.periods])
    ws_summary.append(["Total Paid", s1.total_paid, s2.total_paid])
    ws_summary.append(["Total Interest", s1.total_interest, s2.total_interest])
    ws_summary.append(["Final Balance", s1.final_balance, s2.final_balance])
    ws_summary.append([
        "Payoff Date",
        str(s1.payoff_date) if s1.payoff_date else "",
        str(s2.payoff_date) if s2.payoff_date else ""
    ])
    ws_summary.append(["--- Loan 1 minus Loan 2 ---"])
    ws_summary.append(["Total Paid", result.difference.total_paid_diff])
    ws_summary.append(["Total Interest", result.difference.total_interest_diff])
    ws_summary.append(["Periods", result.difference.periods_diff])
    for n, chart in enumerate(charts):
        if chart:
            add_chart(ws_summary, chart, f"A{12 + 20 * n}")
    # Write merged rows; missing values stay as empty cells
    ws_rows.append([
        "Date",
        "Loan 1 Balance", "Loan 1 Interest", "Loan 1 Total Paid",
        "Loan 2 Balance", "Loan 2 Interest", "Loan 2 Total Paid"
    ])
    for row in result.rows:
        ws_rows.append([
            row.date,
            row.balance, row.interest, row.total_paid,
            row.balance2, row.interest2, row.total_paid2
        ])
    return wb


@app.post("/download_excel")
def download_excel(payload: ComparisonRequest):
    result = run_comparison(payload)
    wb = build_workbook(result, payload.charts)
    # Save to bytes
    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return StreamingResponse(
        output,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": "attachment; filename=loan_comparison.xlsx"}
    )


def main():
    import uvicorn
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=config.RELOAD)


if __name__ == "__main__":
    main()
