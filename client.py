import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from auth import hash_password
from config import API_BASE_URL, REQUEST_TIMEOUT, SESSION_PATH, SHEET_CSV_URL, STRICT_HEADER_MATCH
from dashboard import build_dashboard, compute_stats
from logs import get_logger
from session_store import SessionStore
from sheet_service import fetch_sheet_text
from tap_parser import parse_records


logger = get_logger(__name__)


class ClientError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LoginFailed(ClientError):
    pass


class SyncFailed(ClientError):
    pass


class StatusSyncFailed(ClientError):
    pass


def session_from_payload(payload: dict[str, Any]) -> dict[str, str]:
    return {
        "username": str(payload.get("username") or ""),
        "sdo": str(payload.get("sdo") or ""),
        "school_name": str(payload.get("schoolName") or payload.get("school_name") or ""),
        "email": str(payload.get("email") or ""),
    }


def error_message(response: requests.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return fallback


class DashboardClient:
    """Operator-side flows against the dashboard service.

    Holds the persisted session and the last good record list. A refresh
    fetches the spreadsheet export and the override list at the same time,
    then parses and merges once both are in. If either network call fails
    the previous records stay in place.
    """

    def __init__(
        self,
        base_url: str,
        sheet_url: str,
        session_store: SessionStore,
        timeout: float = REQUEST_TIMEOUT,
        http: Any = None,
        strict_headers: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.sheet_url = sheet_url
        self.session_store = session_store
        self.timeout = timeout
        self.http = http or requests.Session()
        self.strict_headers = strict_headers
        self.records: list[dict[str, Any]] = []
        self.filters: dict[str, list[str]] = {"periods": [], "districts": [], "offices": []}
        self._refresh_lock = threading.Lock()
        self.session_store.load()

    @property
    def session(self) -> dict[str, str] | None:
        return self.session_store.current

    def _post(self, path: str, payload: dict[str, Any]) -> requests.Response:
        return self.http.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)

    def login(self, username: str, password: str) -> dict[str, str]:
        try:
            response = self._post(
                "/api/auth/login",
                {"username": username, "passwordHash": hash_password(password)},
            )
        except requests.RequestException as exc:
            raise LoginFailed("Unable to reach the authentication service.") from exc

        if not response.ok:
            raise LoginFailed(error_message(response, "Invalid credentials."), response.status_code)
        return self.session_store.save(session_from_payload(response.json()))

    def signup(
        self,
        username: str,
        password: str,
        email: str,
        sdo: str,
        school_name: str,
    ) -> dict[str, str]:
        payload = {
            "username": username,
            "passwordHash": hash_password(password),
            "email": email,
            "sdo": sdo,
            "schoolName": school_name,
        }
        try:
            response = self._post("/api/auth/signup", payload)
        except requests.RequestException as exc:
            raise LoginFailed("Unable to reach the registration service.") from exc

        if not response.ok:
            raise LoginFailed(error_message(response, "Registration failed."), response.status_code)
        return self.session_store.save(session_from_payload(response.json()))

    def update_account(self, sdo: str, school_name: str, password: str | None = None) -> dict[str, str]:
        current = self.session
        if not current:
            raise LoginFailed("Not logged in.")

        payload: dict[str, Any] = {
            "username": current["username"],
            "sdo": sdo,
            "schoolName": school_name,
        }
        if password:
            payload["passwordHash"] = hash_password(password)
        try:
            response = self._post("/api/auth/update", payload)
        except requests.RequestException as exc:
            raise LoginFailed("Unable to reach the account service.") from exc

        if not response.ok:
            raise LoginFailed(error_message(response, "Update failed."), response.status_code)
        updated = session_from_payload(response.json())
        updated["email"] = updated["email"] or current["email"]
        return self.session_store.save(updated)

    def logout(self) -> None:
        self.session_store.clear()
        self.records = []
        self.filters = {"periods": [], "districts": [], "offices": []}

    def fetch_overrides(self) -> list[dict[str, Any]]:
        try:
            response = self.http.get(f"{self.base_url}/api/data/get-overrides", timeout=self.timeout)
            response.raise_for_status()
            overrides = response.json().get("overrides", [])
        except (requests.RequestException, ValueError, AttributeError) as exc:
            logger.warning("override_fetch_failed", error=str(exc))
            return []
        return overrides if isinstance(overrides, list) else []

    def fetch_sheet(self) -> str:
        return fetch_sheet_text(self.sheet_url, timeout=self.timeout, http=self.http)

    def refresh(self) -> list[dict[str, Any]]:
        if not self._refresh_lock.acquire(blocking=False):
            logger.info("refresh_skipped", reason="in_progress")
            return self.records

        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                sheet_future = pool.submit(self.fetch_sheet)
                overrides_future = pool.submit(self.fetch_overrides)
                try:
                    text = sheet_future.result()
                except (requests.RequestException, ValueError) as exc:
                    logger.error("sheet_sync_failed", error=str(exc))
                    raise SyncFailed("Failed to sync with FTAD database.") from exc
                overrides = overrides_future.result()

            records = parse_records(text, strict=self.strict_headers)
            dashboard = build_dashboard(records, overrides)
            self.records = dashboard["records"]
            self.filters = dashboard["filters"]
            return self.records
        finally:
            self._refresh_lock.release()

    def stats(self) -> dict[str, Any]:
        return compute_stats(self.records)

    def find_record(self, record_id: str) -> dict[str, Any]:
        for record in self.records:
            if record["id"] == record_id:
                return record
        raise KeyError(record_id)

    def update_status(
        self,
        record_id: str,
        target_index: int,
        status: str,
        expected_status: str | None = None,
    ) -> dict[str, Any]:
        record = self.find_record(record_id)
        target = record["targets"][target_index]
        previous = target.get("tap_status", "")
        session = self.session or {}

        payload: dict[str, Any] = {
            "office": record["office"],
            "division": record["division_school"],
            "period": record["period"],
            "targetIndex": target_index,
            "status": status,
            "username": session.get("username") or "anonymous",
            "objective": target.get("objective", ""),
        }
        if expected_status is not None:
            payload["expectedStatus"] = expected_status

        target["tap_status"] = status
        try:
            response = self._post("/api/data/update-status", payload)
        except requests.RequestException as exc:
            target["tap_status"] = previous
            raise StatusSyncFailed("Cloud sync failed: service unreachable.") from exc

        if not response.ok:
            target["tap_status"] = previous
            raise StatusSyncFailed(
                f"Cloud sync failed: {error_message(response, 'unknown error')}",
                response.status_code,
            )
        return target


def build_client(http: Any = None) -> DashboardClient:
    return DashboardClient(
        API_BASE_URL,
        SHEET_CSV_URL,
        SessionStore(SESSION_PATH),
        timeout=REQUEST_TIMEOUT,
        http=http,
        strict_headers=STRICT_HEADER_MATCH,
    )
