"""Application settings for the loan comparison service.

Values can be overridden through environment variables where noted.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

# =============================================================================
# DEFAULT LOAN (pre-filled for both loans)
# =============================================================================

DEFAULT_LOAN_AMOUNT = 600000
DEFAULT_INTEREST_RATE = 6.25
DEFAULT_OFFSET = 25000
DEFAULT_REPAYMENT = 2000
DEFAULT_EXTRA_REPAYMENT = 0
DEFAULT_FREQUENCY = "Fortnightly"
DEFAULT_EXTRA_FREQUENCY = "Monthly"
DEFAULT_TERM_YEARS = 30

# =============================================================================
# CURRENCY LOOKUP
# =============================================================================

CURRENCY_LOOKUP_URL = os.environ.get("CURRENCY_LOOKUP_URL", "https://ipapi.co/{ip}/json/")
CURRENCY_LOOKUP_TIMEOUT = float(os.environ.get("CURRENCY_LOOKUP_TIMEOUT", "2"))
DEFAULT_CURRENCY_SYMBOL = '$'

COUNTRY_CURRENCY = {
    'US': '$', 'CA': '$', 'GB': '£', 'DE': '€', 'FR': '€', 'ES': '€', 'IT': '€', 'IE': '€',
    'JP': '¥', 'CN': '¥', 'IN': '₹', 'AU': '$', 'NZ': '$', 'SG': '$', 'ZA': 'R', 'CH': 'CHF',
    'SE': 'kr', 'NO': 'kr', 'DK': 'kr', 'PL': 'zł', 'CZ': 'Kč', 'RU': '₽', 'BR': 'R$', 'MX': '$',
    'KR': '₩', 'TR': '₺', 'IL': '₪', 'SA': '﷼', 'AE': 'د.إ', 'HK': '$', 'MY': 'RM', 'TH': '฿',
    'ID': 'Rp', 'PH': '₱', 'NG': '₦', 'EG': '£', 'PK': '₨', 'BD': '৳', 'UA': '₴', 'AR': '$',
    'CL': '$', 'CO': '$', 'PE': 'S/', 'VE': 'Bs', 'VN': '₫', 'TW': 'NT$', 'HU': 'Ft',
}

# =============================================================================
# WEB SERVER
# =============================================================================

TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

HOST = os.environ.get("LOAN_COMPARE_HOST", "0.0.0.0")
PORT = int(os.environ.get("LOAN_COMPARE_PORT", "8000"))
RELOAD = os.environ.get("LOAN_COMPARE_RELOAD", "1") == "1"

LOG_LEVEL = os.environ.get("LOAN_COMPARE_LOG_LEVEL", "INFO")
