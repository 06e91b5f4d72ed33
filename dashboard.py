import re
from typing import Any

from logs import get_logger


logger = get_logger(__name__)

ACCOMPLISHED = "accomplished"
PARTIAL = "partial"
UNACCOMPLISHED = "unaccomplished"
PENDING = "pending"

ACCOMPLISHED_RE = re.compile(r"\b(?:accomplished|met|complete|completed|done|yes)\b")
PARTIAL_RE = re.compile(r"partial")
UNACCOMPLISHED_RE = re.compile(r"unaccomplished|incomplete|not met|no")
NEGATION_RE = re.compile(r"\b(?:not|never|no)\b")


def override_key(office: str, division: str, period: str, target_index: int) -> tuple[str, str, str, int]:
    return (str(office), str(division), str(period), int(target_index))


def find_override(
    overrides: list[dict[str, Any]],
    record: dict[str, Any],
    target_index: int,
) -> dict[str, Any] | None:
    wanted = override_key(
        record.get("office", ""),
        record.get("division_school", ""),
        record.get("period", ""),
        target_index,
    )
    for override in overrides:
        try:
            key = override_key(
                override.get("office", ""),
                override.get("division", ""),
                override.get("period", ""),
                override.get("target_index", -1),
            )
        except (TypeError, ValueError):
            continue
        if key == wanted:
            return override
    return None


def merge_overrides(
    records: list[dict[str, Any]],
    overrides: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    if not overrides:
        return records

    applied = 0
    for record in records:
        for target_index, target in enumerate(record.get("targets", [])):
            override = find_override(overrides, record, target_index)
            if override is None:
                continue
            snapshot = str(override.get("objective") or "")
            if snapshot and snapshot != target.get("objective", ""):
                # Sheet columns moved since the override was written.
                logger.warning(
                    "override_objective_mismatch",
                    record_id=record.get("id"),
                    target_index=target_index,
                )
                continue
            target["tap_status"] = str(override.get("status", ""))
            applied += 1

    logger.info("overrides_merged", overrides=len(overrides), applied=applied)
    return records


def completion_status(target: dict[str, Any]) -> str:
    return str(target.get("tap_status") or target.get("status") or "")


def classify_status(value: str) -> str:
    text = " ".join(str(value or "").lower().split())
    negated = bool(NEGATION_RE.search(text))

    if ACCOMPLISHED_RE.search(text) and not negated:
        return ACCOMPLISHED
    if PARTIAL_RE.search(text):
        return PARTIAL
    if UNACCOMPLISHED_RE.search(text) or (negated and ACCOMPLISHED_RE.search(text)):
        return UNACCOMPLISHED
    return PENDING


def compute_stats(records: list[dict[str, Any]]) -> dict[str, Any]:
    counts = {ACCOMPLISHED: 0, PARTIAL: 0, UNACCOMPLISHED: 0, PENDING: 0}
    total_requests = 0

    for record in records:
        for target in record.get("targets", []):
            if not target.get("objective"):
                continue
            total_requests += 1
            counts[classify_status(completion_status(target))] += 1

    resolution_rate = (counts[ACCOMPLISHED] / total_requests) * 100 if total_requests else 0.0

    return {
        "total_interventions": len(records),
        "total_ta_requests": total_requests,
        "accomplished": counts[ACCOMPLISHED],
        "partial": counts[PARTIAL],
        "unaccomplished": counts[UNACCOMPLISHED],
        "pending": counts[PENDING],
        "resolution_rate": resolution_rate,
    }


def filter_options(records: list[dict[str, Any]]) -> dict[str, list[str]]:
    def distinct(key: str) -> list[str]:
        return sorted({str(r.get(key, "")) for r in records if r.get(key)})

    return {
        "periods": distinct("period"),
        "districts": distinct("district"),
        "offices": distinct("office"),
    }


def filter_records(
    records: list[dict[str, Any]],
    search: str = "",
    period: str = "all",
    district: str = "all",
    office: str = "all",
) -> list[dict[str, Any]]:
    needle = search.strip().lower()
    output: list[dict[str, Any]] = []
    for record in records:
        if needle:
            haystack = [
                record.get("office", ""),
                record.get("district", ""),
                record.get("division_school", ""),
                record.get("ta_receiver", ""),
                record.get("ta_provider", ""),
            ]
            if not any(needle in str(value).lower() for value in haystack):
                continue
        if period not in ("", "all") and record.get("period") != period:
            continue
        if district not in ("", "all") and record.get("district") != district:
            continue
        if office not in ("", "all") and record.get("office") != office:
            continue
        output.append(record)
    return output


def build_dashboard(
    records: list[dict[str, Any]],
    overrides: list[dict[str, Any]],
) -> dict[str, Any]:
    merged = merge_overrides(records, overrides)
    return {
        "records": merged,
        "filters": filter_options(merged),
        "stats": compute_stats(merged),
    }
