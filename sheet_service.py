from typing import Any

import requests

from config import REQUEST_TIMEOUT
from logs import get_logger


logger = get_logger(__name__)


def sheet_headers() -> dict[str, str]:
    return {
        "Accept": "text/csv, text/plain;q=0.9, */*;q=0.1",
        "Cache-Control": "no-cache",
    }


def fetch_sheet_text(url: str, timeout: float = REQUEST_TIMEOUT, http: Any = None) -> str:
    if not url:
        raise ValueError("Spreadsheet export URL is not configured")

    response = (http or requests).get(url, headers=sheet_headers(), timeout=timeout)
    response.raise_for_status()
    # Published exports are UTF-8 but often sent without a charset.
    if "charset" not in response.headers.get("Content-Type", "").lower():
        response.encoding = "utf-8"
    text = response.text
    logger.info("sheet_fetched", url=url, status=response.status_code, chars=len(text))
    return text
