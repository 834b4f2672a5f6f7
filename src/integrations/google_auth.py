"""
DayLog — Google Sheets Authentication.

The ledger writes through a service account, so there is no interactive
consent flow: the key comes from GOOGLE_SERVICE_ACCOUNT_KEY (inline JSON)
or GOOGLE_SERVICE_ACCOUNT_FILE (path).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from google.oauth2 import service_account
from googleapiclient.discovery import build

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


def load_service_account_credentials(
    key_json: str = "", key_file: str = ""
) -> service_account.Credentials:
    """Build service-account credentials from inline JSON or a key file.

    Inline JSON wins when both are set.
    """
    if key_json:
        try:
            info = json.loads(key_json)
        except json.JSONDecodeError as exc:
            raise ValueError("GOOGLE_SERVICE_ACCOUNT_KEY is not valid JSON") from exc
        return service_account.Credentials.from_service_account_info(info, scopes=SCOPES)

    if key_file:
        path = Path(key_file)
        if not path.exists():
            raise FileNotFoundError(
                f"Service account key file not found at {path}. "
                "Download it from the Google Cloud Console."
            )
        return service_account.Credentials.from_service_account_file(str(path), scopes=SCOPES)

    raise ValueError(
        "Neither GOOGLE_SERVICE_ACCOUNT_KEY nor GOOGLE_SERVICE_ACCOUNT_FILE is set"
    )


def get_sheets_service():
    """Authenticate and return a Google Sheets API v4 service object."""
    from src.config import settings

    creds = load_service_account_credentials(
        key_json=settings.GOOGLE_SERVICE_ACCOUNT_KEY,
        key_file=settings.GOOGLE_SERVICE_ACCOUNT_FILE,
    )
    service = build("sheets", "v4", credentials=creds, cache_discovery=False)
    logger.info("Google Sheets service built successfully")
    return service
