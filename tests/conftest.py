# Shared pytest fixtures
from __future__ import annotations

import hashlib
import json
import os
import tempfile
from pathlib import Path

import pytest

# config.py reads the environment at import time.
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="ftad-tests-"))
LEGACY_PASSWORD_HASH = hashlib.sha256(b"legacy-pass").hexdigest()

os.environ.setdefault("SHEET_CSV_URL", "https://sheets.example.invalid/pub?output=csv")
os.environ["DATABASE_PATH"] = str(_TMP_ROOT / "import.db")
os.environ["AUTH_BACKENDS"] = "admin,sqlite,edge"
os.environ["ADMIN_USERNAMES"] = "admin"
os.environ["EDGE_USERS_JSON"] = json.dumps(
    {
        "legacy": {
            "passwordHash": LEGACY_PASSWORD_HASH,
            "sdo": "SDO-LEGACY",
            "schoolName": "Legacy Unit",
            "email": "legacy@example.org",
        }
    }
)
os.environ["SESSION_PATH"] = str(_TMP_ROOT / "session.json")

from storage import init_db  # noqa: E402


SHEET_HEADERS = [
    "OFFICE",
    "DISTRICT",
    "DIVISION/SCHOOL",
    "PERIOD",
    "TA RECEIVER",
    "TA PROVIDER",
    "OBJECT OF THE TARGET RECIPIENT 1",
    "PLANEED ACTION 1",
    "TARGET DUE DATE 1",
    "STATUS COMPLETION 1",
    "TA NEEDED/HELP NEEDED 1",
    "TAPStatusCompletion1",
    "OBJECTIVE OF THE TARGET 2",
    "PLANNED ACTION 2",
    "STATUS COMPLETION 2",
    "TAPStatusCompletion2",
    "OBJECTIVE OF THE TARGET 3",
    "STATUS COMPLETION 3",
    "TAPStatusCompletion3",
    "ACCESS STATUS 1",
    "ACCESS ISSUE 1",
    "EQUITY STATUS 1",
    "EQUITY ISSUE 1",
    "REASON 1",
    "Agree1",
    "SpecificOffice1",
    "TAPDueDate1",
    "RecieverSignatories1",
    "receiverpoistion1",
    "ta team date",
]

SHEET_PREAMBLE = [
    "FTAD TA MONITORING REPORT",
    "Region: NCR",
    ",,,",
]


def quote_cell(value: str) -> str:
    if any(ch in value for ch in ',"\n'):
        return '"' + value.replace('"', '""') + '"'
    return value


def make_sheet(rows: list[dict[str, str]], headers: list[str] | None = None) -> str:
    headers = headers or SHEET_HEADERS
    lines = list(SHEET_PREAMBLE)
    lines.append(",".join(quote_cell(h) for h in headers))
    for row in rows:
        lines.append(",".join(quote_cell(row.get(h, "")) for h in headers))
    return "\r\n".join(lines) + "\r\n"


SAMPLE_ROWS = [
    {
        "OFFICE": "SDO Caloocan",
        "DISTRICT": "District 1",
        "DIVISION/SCHOOL": "Bagong Silang ES",
        "PERIOD": "Q1 2025",
        "TA RECEIVER": "School Head",
        "TA PROVIDER": "SGOD",
        "OBJECT OF THE TARGET RECIPIENT 1": "Improve reading, writing scores",
        "PLANEED ACTION 1": "Reading camp",
        "TARGET DUE DATE 1": "03/30/2025",
        "STATUS COMPLETION 1": "Partial",
        "TA NEEDED/HELP NEEDED 1": "Materials",
        "TAPStatusCompletion1": "Accomplished",
        "OBJECTIVE OF THE TARGET 3": 'Train "master" teachers',
        "STATUS COMPLETION 3": "Not yet met",
        "ACCESS STATUS 1": "Issue found",
        "ACCESS ISSUE 1": "Low enrolment",
        "REASON 1": "Funding",
        "Agree1": "Yes",
        "SpecificOffice1": "CID",
        "TAPDueDate1": "04/15/2025",
        "RecieverSignatories1": "Juan Dela Cruz",
        "receiverpoistion1": "Principal II",
        "ta team date": "01/10/2025",
    },
    {"OFFICE": "● SECTION B"},
    {
        "OFFICE": "SDO Malabon",
        "DISTRICT": "District 2",
        "DIVISION/SCHOOL": "Tinajeros NHS",
        "PERIOD": "Q1 2025",
        "OBJECTIVE OF THE TARGET 2": "Reduce dropouts",
        "PLANNED ACTION 2": "Home visits",
        "STATUS COMPLETION 2": "Done",
    },
    {"DISTRICT": "District 9"},
]


@pytest.fixture()
def sample_sheet_text() -> str:
    return make_sheet(SAMPLE_ROWS)


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    path = str(tmp_path / "ftad.db")
    init_db(path)
    return path


@pytest.fixture()
def app_module(monkeypatch, db_path: str):
    import app as module

    monkeypatch.setattr(module, "DATABASE_PATH", db_path)
    return module


@pytest.fixture()
def http_client(app_module):
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client


@pytest.fixture()
def serve_sheet(monkeypatch, app_module):
    def _serve(text: str) -> None:
        monkeypatch.setattr(app_module, "fetch_sheet_text", lambda url, timeout=None: text)

    return _serve
