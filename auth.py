import hashlib
import hmac
import sqlite3
from typing import Any, Callable

import requests

from config import REQUEST_TIMEOUT
from logs import get_logger
from sheet_service import fetch_sheet_text
from storage import create_account, email_in_use, find_account, update_account
from tap_parser import tokenize


logger = get_logger(__name__)

ADMIN_PROFILE = {
    "sdo": "FTAD-REGIONAL",
    "school_name": "Main Monitoring Unit",
    "email": "admin@ftad-ncr.gov.ph",
}

STORE_ERRORS = (sqlite3.Error, requests.RequestException, ValueError)


class AuthFailure(Exception):
    status_code = 401


class MissingCredentials(AuthFailure):
    status_code = 400


class InvalidCredentials(AuthFailure):
    status_code = 401


class AccountNotFound(AuthFailure):
    status_code = 404


class AuthUnavailable(AuthFailure):
    status_code = 503


class RegistrationFailure(Exception):
    status_code = 500


class MissingFields(RegistrationFailure):
    status_code = 400


class DuplicateAccount(RegistrationFailure):
    status_code = 409


class UnknownAccount(RegistrationFailure):
    status_code = 404


class RegistryUnavailable(RegistrationFailure):
    status_code = 503


def hash_password(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def hashes_match(provided: str, stored: str) -> bool:
    return hmac.compare_digest(
        provided.strip().lower().encode("utf-8"),
        stored.strip().lower().encode("utf-8"),
    )


def session_from_account(account: dict[str, Any]) -> dict[str, str]:
    return {
        "username": str(account.get("username", "")),
        "sdo": str(account.get("sdo", "")),
        "school_name": str(account.get("school_name", "")),
        "email": str(account.get("email", "")),
    }


class AccountStore:
    name = "base"
    writable = False

    def find_account(self, username: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def create_account(self, account: dict[str, Any]) -> bool:
        raise RegistryUnavailable(f"{self.name} account store is read-only")

    def update_account(
        self,
        username: str,
        sdo: str,
        school_name: str,
        password_hash: str | None = None,
    ) -> bool:
        raise RegistryUnavailable(f"{self.name} account store is read-only")

    def email_taken(self, email: str) -> bool:
        return False


class AdminBypassStore(AccountStore):
    name = "admin"

    def __init__(self, usernames: list[str]) -> None:
        self.usernames = {u.lower() for u in usernames}

    def find_account(self, username: str) -> dict[str, Any] | None:
        if username.lower() not in self.usernames:
            return None
        return {"username": username, "bypass": True, **ADMIN_PROFILE}


class SqliteAccountStore(AccountStore):
    name = "sqlite"
    writable = True

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def find_account(self, username: str) -> dict[str, Any] | None:
        return find_account(self.db_path, username)

    def create_account(self, account: dict[str, Any]) -> bool:
        return create_account(self.db_path, account)

    def update_account(
        self,
        username: str,
        sdo: str,
        school_name: str,
        password_hash: str | None = None,
    ) -> bool:
        return update_account(self.db_path, username, sdo, school_name, password_hash)

    def email_taken(self, email: str) -> bool:
        return email_in_use(self.db_path, email)


class EdgeConfigAccountStore(AccountStore):
    name = "edge"

    def __init__(self, users: dict[str, dict[str, str]]) -> None:
        self.users = users

    def find_account(self, username: str) -> dict[str, Any] | None:
        user = self.users.get(username)
        if not user:
            return None
        return {
            "username": username,
            "password_hash": user.get("passwordHash", user.get("password_hash", "")),
            "sdo": user.get("sdo", ""),
            "school_name": user.get("schoolName", user.get("school_name", "")),
            "email": user.get("email", ""),
        }


def parse_accounts(text: str) -> list[dict[str, str]]:
    rows = tokenize(text)
    if len(rows) < 2:
        return []

    headers = [h.strip().upper() for h in rows[0]]

    def column(values: list[str], *names: str) -> str:
        for name in names:
            if name in headers:
                idx = headers.index(name)
                if idx < len(values) and values[idx]:
                    return values[idx]
        return ""

    accounts: list[dict[str, str]] = []
    for values in rows[1:]:
        if len(values) < 2:
            continue
        accounts.append(
            {
                "username": column(values, "USERNAME"),
                "password_hash": column(values, "PASSWORD_HASH", "PASSWORD").lower(),
                "sdo": column(values, "SDO"),
                "school_name": column(values, "SCHOOL_NAME"),
                "email": column(values, "EMAIL"),
            }
        )
    return accounts


class SheetAccountStore(AccountStore):
    name = "sheet"

    def __init__(
        self,
        url: str,
        timeout: float = REQUEST_TIMEOUT,
        fetch: Callable[..., str] = fetch_sheet_text,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.fetch = fetch

    def find_account(self, username: str) -> dict[str, Any] | None:
        wanted = username.lower()
        for account in parse_accounts(self.fetch(self.url, timeout=self.timeout)):
            if account["username"].lower() == wanted:
                return account
        return None


class SessionGateway:
    def __init__(self, stores: list[AccountStore]) -> None:
        self.stores = stores

    def writable_store(self) -> AccountStore | None:
        for store in self.stores:
            if store.writable:
                return store
        return None

    def lookup(self, username: str) -> tuple[AccountStore | None, dict[str, Any] | None, int]:
        failures = 0
        for store in self.stores:
            try:
                account = store.find_account(username)
            except STORE_ERRORS as exc:
                failures += 1
                logger.error("account_store_failed", store=store.name, error=str(exc))
                continue
            if account:
                return store, account, failures
        return None, None, failures

    def authenticate(self, username: str, password_hash: str) -> dict[str, str]:
        username = str(username or "").strip()
        password_hash = str(password_hash or "").strip()
        if not username or not password_hash:
            raise MissingCredentials("Credentials required")

        store, account, failures = self.lookup(username)
        if account is None:
            if failures and failures == len(self.stores):
                raise AuthUnavailable("Authentication service unavailable.")
            logger.info("login_rejected", username=username, reason="not_found")
            raise AccountNotFound("Account not found in registry.")

        if account.get("bypass"):
            logger.warning("login_admin_bypass", username=username)
            return session_from_account(account)

        if not hashes_match(password_hash, str(account.get("password_hash", ""))):
            logger.info("login_rejected", username=username, store=store.name, reason="bad_credentials")
            raise InvalidCredentials("Incorrect credentials.")

        logger.info("login_accepted", username=username, store=store.name)
        return session_from_account(account)

    def register(self, username: str, password_hash: str, profile: dict[str, Any]) -> dict[str, str]:
        username = str(username or "").strip()
        password_hash = str(password_hash or "").strip()
        sdo = str(profile.get("sdo") or "").strip()
        if not username or not password_hash or not sdo:
            raise MissingFields("Missing required fields (Username, Password, SDO)")

        target = self.writable_store()
        if target is None:
            raise RegistryUnavailable("No writable account registry is configured.")

        _, existing, _ = self.lookup(username)
        if existing is not None:
            raise DuplicateAccount("Username already registered.")

        email = str(profile.get("email") or "").strip()
        try:
            if target.email_taken(email):
                raise DuplicateAccount("Email already registered.")
            account = {
                "username": username,
                "password_hash": password_hash.lower(),
                "email": email,
                "sdo": sdo,
                "school_name": str(profile.get("school_name") or "").strip(),
            }
            created = target.create_account(account)
        except STORE_ERRORS as exc:
            logger.error("account_create_failed", store=target.name, error=str(exc))
            raise RegistryUnavailable("Account registry unavailable.") from exc

        if not created:
            raise DuplicateAccount("Username already registered.")

        logger.info("account_created", username=username, store=target.name)
        return session_from_account(account)

    def update(
        self,
        username: str,
        sdo: str,
        school_name: str,
        password_hash: str | None = None,
    ) -> dict[str, str]:
        username = str(username or "").strip()
        if not username:
            raise MissingFields("Username is required to update settings.")

        target = self.writable_store()
        if target is None:
            raise RegistryUnavailable("No writable account registry is configured.")

        try:
            updated = target.update_account(username, sdo, school_name, password_hash or None)
            account = target.find_account(username) if updated else None
        except STORE_ERRORS as exc:
            logger.error("account_update_failed", store=target.name, error=str(exc))
            raise RegistryUnavailable("Account registry unavailable.") from exc

        if account is None:
            raise UnknownAccount("User not found in registry.")

        logger.info("account_updated", username=username, password_changed=bool(password_hash))
        return session_from_account(account)


def build_gateway(
    backends: list[str],
    db_path: str,
    admin_usernames: list[str],
    edge_users: dict[str, dict[str, str]],
    accounts_url: str = "",
    timeout: float = REQUEST_TIMEOUT,
) -> SessionGateway:
    stores: list[AccountStore] = []
    for backend in backends:
        if backend == "admin":
            stores.append(AdminBypassStore(admin_usernames))
        elif backend == "sqlite":
            stores.append(SqliteAccountStore(db_path))
        elif backend == "edge":
            stores.append(EdgeConfigAccountStore(edge_users))
        elif backend == "sheet" and accounts_url:
            stores.append(SheetAccountStore(accounts_url, timeout=timeout))
        else:
            logger.warning("auth_backend_skipped", backend=backend)
    return SessionGateway(stores)
