import sqlite3
from typing import Any

import requests
from flask import Flask, jsonify, request

from auth import AuthFailure, RegistrationFailure, SessionGateway, build_gateway
from config import (
    ACCOUNTS_CSV_URL,
    ADMIN_USERNAMES,
    AUTH_BACKENDS,
    DATABASE_PATH,
    EDGE_USERS,
    LOG_LEVEL,
    PORT,
    REQUEST_TIMEOUT,
    SHEET_CSV_URL,
    STRICT_HEADER_MATCH,
)
from dashboard import build_dashboard, filter_records
from logs import configure_logging, get_logger
from sheet_service import fetch_sheet_text
from storage import OverrideConflict, init_db, list_edit_log, list_overrides, upsert_override
from tap_parser import SLOT_COUNT, parse_records


configure_logging(LOG_LEVEL)
logger = get_logger(__name__)

app = Flask(__name__)
init_db(DATABASE_PATH)


def current_gateway() -> SessionGateway:
    return build_gateway(
        AUTH_BACKENDS,
        DATABASE_PATH,
        ADMIN_USERNAMES,
        EDGE_USERS,
        accounts_url=ACCOUNTS_CSV_URL,
        timeout=REQUEST_TIMEOUT,
    )


def session_payload(session: dict[str, str]) -> dict[str, str]:
    return {
        "username": session["username"],
        "sdo": session["sdo"],
        "schoolName": session["school_name"],
        "email": session["email"],
    }


def error_response(message: str, status: int):
    return jsonify({"error": message}), status


def request_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def parse_target_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        index = int(value)
    except (TypeError, ValueError):
        return None
    if 0 <= index < SLOT_COUNT:
        return index
    return None


def safe_list_overrides() -> list[dict[str, Any]]:
    try:
        return list_overrides(DATABASE_PATH)
    except sqlite3.Error as exc:
        logger.error("override_fetch_failed", error=str(exc))
        return []


def load_dashboard() -> dict[str, Any]:
    text = fetch_sheet_text(SHEET_CSV_URL, timeout=REQUEST_TIMEOUT)
    records = parse_records(text, strict=STRICT_HEADER_MATCH)
    return build_dashboard(records, safe_list_overrides())


@app.get("/")
def home():
    return jsonify(
        {
            "service": "ftad-dashboard",
            "endpoints": {
                "login": "/api/auth/login",
                "signup": "/api/auth/signup",
                "update_account": "/api/auth/update",
                "get_overrides": "/api/data/get-overrides",
                "update_status": "/api/data/update-status",
                "edit_log": "/api/data/edit-log?limit=",
                "records": "/api/data/records?q=&period=&district=&office=",
                "stats": "/api/data/stats",
            },
        }
    )


@app.post("/api/auth/login")
def login():
    body = request_body()
    if body.get("ping"):
        return jsonify({"status": "Registry Sync Active", "backends": AUTH_BACKENDS})

    try:
        session = current_gateway().authenticate(body.get("username"), body.get("passwordHash"))
    except AuthFailure as exc:
        return error_response(str(exc), exc.status_code)
    return jsonify(session_payload(session))


@app.post("/api/auth/signup")
def signup():
    body = request_body()
    profile = {
        "email": body.get("email"),
        "sdo": body.get("sdo"),
        "school_name": body.get("schoolName"),
    }
    try:
        session = current_gateway().register(body.get("username"), body.get("passwordHash"), profile)
    except RegistrationFailure as exc:
        return error_response(str(exc), exc.status_code)

    payload = session_payload(session)
    payload["message"] = "Account registered."
    return jsonify(payload), 201


@app.post("/api/auth/update")
def update_account():
    body = request_body()
    try:
        session = current_gateway().update(
            body.get("username"),
            str(body.get("sdo") or ""),
            str(body.get("schoolName") or ""),
            password_hash=body.get("passwordHash") or None,
        )
    except RegistrationFailure as exc:
        return error_response(str(exc), exc.status_code)

    payload = session_payload(session)
    payload["message"] = "Account settings saved."
    return jsonify(payload)


@app.get("/api/data/get-overrides")
def get_overrides():
    return jsonify({"overrides": safe_list_overrides()})


@app.post("/api/data/update-status")
def update_status():
    body = request_body()
    office = str(body.get("office") or "").strip()
    division = str(body.get("division") or "").strip()
    period = str(body.get("period") or "").strip()
    status = body.get("status")
    target_index = parse_target_index(body.get("targetIndex"))

    if not office or not division or status is None:
        return error_response("Missing identifying data for status update.", 400)
    if target_index is None:
        return error_response(f"targetIndex must be an integer from 0 to {SLOT_COUNT - 1}.", 400)

    expected = body.get("expectedStatus")
    try:
        upsert_override(
            DATABASE_PATH,
            office,
            division,
            period,
            target_index,
            str(status),
            str(body.get("username") or "anonymous"),
            objective=str(body.get("objective") or ""),
            expected_status=None if expected is None else str(expected),
        )
    except OverrideConflict as exc:
        logger.info("status_update_conflict", office=office, division=division, target_index=target_index)
        return jsonify({"error": str(exc), "current": exc.current}), 409
    except sqlite3.Error as exc:
        logger.error("status_update_failed", error=str(exc))
        return error_response(f"Sync Error: {exc}", 500)

    logger.info(
        "status_updated",
        office=office,
        division=division,
        period=period,
        target_index=target_index,
    )
    return jsonify({"message": "Status saved."})


@app.get("/api/data/edit-log")
def edit_log():
    limit = request.args.get("limit", default=100, type=int)
    if limit < 1:
        return error_response("limit must be a positive integer.", 400)
    try:
        entries = list_edit_log(DATABASE_PATH, limit=min(limit, 1000))
    except sqlite3.Error as exc:
        logger.error("edit_log_fetch_failed", error=str(exc))
        return error_response(f"Sync Error: {exc}", 500)
    return jsonify({"entries": entries})


@app.get("/api/data/records")
def records():
    try:
        dashboard = load_dashboard()
    except (requests.RequestException, ValueError) as exc:
        # Caller keeps whatever it showed last.
        logger.error("sheet_sync_failed", error=str(exc))
        return error_response("sync failed", 502)

    dashboard["records"] = filter_records(
        dashboard["records"],
        search=request.args.get("q", ""),
        period=request.args.get("period", "all"),
        district=request.args.get("district", "all"),
        office=request.args.get("office", "all"),
    )
    dashboard["matches"] = len(dashboard["records"])
    return jsonify(dashboard)


@app.get("/api/data/stats")
def stats():
    try:
        dashboard = load_dashboard()
    except (requests.RequestException, ValueError) as exc:
        logger.error("sheet_sync_failed", error=str(exc))
        return error_response("sync failed", 502)
    return jsonify(dashboard["stats"])


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=PORT, debug=True)
