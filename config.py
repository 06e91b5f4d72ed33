import json
import os
from pathlib import Path


def load_dotenv(path: Path) -> None:
    if not path.exists():
        return

    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def required_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def parse_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def parse_csv_list(raw: str) -> list[str]:
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


def parse_edge_users(raw: str) -> dict[str, dict[str, str]]:
    if not raw.strip():
        return {}

    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise RuntimeError("EDGE_USERS_JSON must be valid JSON") from exc

    if not isinstance(loaded, dict):
        raise RuntimeError("EDGE_USERS_JSON must be a JSON object")

    users: dict[str, dict[str, str]] = {}
    for username, profile in loaded.items():
        name_clean = str(username).strip()
        if not name_clean or not isinstance(profile, dict):
            continue
        users[name_clean] = {str(k): str(v) for k, v in profile.items() if v is not None}

    return users


load_dotenv(Path(__file__).with_name(".env"))

SHEET_CSV_URL = required_env("SHEET_CSV_URL")
ACCOUNTS_CSV_URL = os.getenv("ACCOUNTS_CSV_URL", "").strip()

DATABASE_PATH = os.getenv("DATABASE_PATH", "ftad_dashboard.db")
PORT = int(os.getenv("PORT", "8080"))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))

AUTH_BACKENDS = parse_csv_list(os.getenv("AUTH_BACKENDS", "admin,sqlite,edge"))
ADMIN_USERNAMES = parse_csv_list(os.getenv("ADMIN_USERNAMES", "admin"))
EDGE_USERS = parse_edge_users(os.getenv("EDGE_USERS_JSON", "{}"))

STRICT_HEADER_MATCH = parse_bool_env("STRICT_HEADER_MATCH")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SESSION_PATH = os.getenv("SESSION_PATH", ".ftad_session.json")
API_BASE_URL = os.getenv("API_BASE_URL", f"http://localhost:{PORT}").rstrip("/")
