import re
from dataclasses import dataclass
from typing import Any

from logs import get_logger


logger = get_logger(__name__)

HEADER_SCAN_LIMIT = 25
MIN_ROW_CELLS = 5
SLOT_COUNT = 5
SECTION_MARKERS = ("●", "•")

LOOSE_STRIP_RE = re.compile(r"[\s_/]")
STRICT_STRIP_RE = re.compile(r"[^0-9A-Z]")

# Candidate labels are tried in order. Older sheet revisions used the first
# spelling, newer ones the later ones.
RECORD_FIELDS: dict[str, tuple[str, ...]] = {
    "office": ("OFFICE",),
    "district": ("DISTRICT",),
    "division_school": ("DIVISION SCHOOL", "DIVISION"),
    "period": ("PERIOD",),
    "ta_receiver": ("TA RECEIVER",),
    "ta_provider": ("TA PROVIDER",),
}

TARGET_FIELDS: dict[str, tuple[str, ...]] = {
    "objective": (
        "OBJECT OF THE TARGET RECIPIENT {j}",
        "OBJECTIVE OF THE TARGET {j}",
        "OBJECTIVE {j}",
    ),
    "planned_action": ("PLANEED ACTION {j}", "PLANNED ACTION {j}"),
    "due_date": ("TARGET DUE DATE {j}",),
    "status": ("STATUS COMPLETION {j}",),
    "help_needed": ("TA NEEDED HELP NEEDED {j}", "TA NEEDED/HELP NEEDED {j}"),
    "agree": ("Agree{j}",),
    "specific_office": ("SpecificOffice{j}",),
    "tap_due_date": ("TAPDueDate{j}",),
    "tap_status": ("TAPStatusCompletion{j}",),
}

CATEGORY_PREFIXES: dict[str, str] = {
    "access": "ACCESS",
    "equity": "EQUITY",
    "quality": "QUALITY",
    "resilience": "RESILIENCE",
    "enabling": "ENABLING",
}

SIGNATORY_FIELDS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "receiver_signatories": (
        ("RecieverSignatories{j}", "ReceiverSignatories{j}"),
        ("receiverpoistion{j}", "receiverposition{j}"),
    ),
    "provider_signatories": (
        ("ProviderSignature{j}",),
        ("ProviderPosition{j}",),
    ),
}

REASON_LABELS = ("REASON 1", "REASON 2", "REASON 3")

MISC_FIELDS: dict[str, str] = {
    "ta_name_4": "ta name 4",
    "ta_position_4": "ta position 4",
    "ta_signature_4": "ta signature 4",
    "dept_name_5": "dept name 5",
    "dept_position_5": "dept position 5",
    "dept_signature_5": "dept signature 5",
    "ta_name_5": "ta name 5",
    "ta_position_5": "ta position 5",
    "ta_signature_5": "ta signature 5",
    "dept_team_date": "dept team date",
    "ta_team_date": "ta team date",
}


def split_rows(text: str) -> list[str]:
    rows: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in str(text or ""):
        if char == '"':
            in_quotes = not in_quotes
        if char == "\n" and not in_quotes:
            rows.append("".join(current))
            current = []
        else:
            current.append(char)
    if current:
        rows.append("".join(current))

    output: list[str] = []
    for row in rows:
        cleaned = row.rstrip("\r")
        if cleaned.strip():
            output.append(cleaned)
    return output


def split_cells(row: str) -> list[str]:
    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(row):
        char = row[i]
        if char == '"':
            if in_quotes and i + 1 < len(row) and row[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1
    cells.append("".join(current).strip())
    return cells


def tokenize(text: str) -> list[list[str]]:
    return [split_cells(row) for row in split_rows(text)]


def normalize_label(label: str, strict: bool = False) -> str:
    upper = str(label).strip().upper()
    if strict:
        return STRICT_STRIP_RE.sub("", upper)
    return LOOSE_STRIP_RE.sub("", upper)


def is_header_row(cells: list[str]) -> bool:
    upper = [cell.strip().upper() for cell in cells]
    return "OFFICE" in upper and any("DIVISION" in cell for cell in upper)


def find_header_row(rows: list[list[str]], scan_limit: int = HEADER_SCAN_LIMIT) -> int | None:
    for idx, cells in enumerate(rows[:scan_limit]):
        if is_header_row(cells):
            return idx
    return None


class HeaderIndex:
    def __init__(self, headers: list[str], strict: bool = False) -> None:
        self._strict = strict
        self._labels = tuple(normalize_label(h, strict) for h in headers)
        positions: dict[str, int] = {}
        for idx, label in enumerate(self._labels):
            if label and label not in positions:
                positions[label] = idx
        self._positions = positions

    def __len__(self) -> int:
        return len(self._labels)

    def exact(self, name: str) -> int:
        return self._positions.get(normalize_label(name, self._strict), -1)

    def containing(self, name: str) -> int:
        term = normalize_label(name, self._strict)
        if not term:
            return -1
        for idx, label in enumerate(self._labels):
            if label and term in label:
                return idx
        return -1

    def find(self, name: str) -> int:
        idx = self.exact(name)
        if idx != -1:
            return idx
        return self.containing(name)

    def resolve(self, candidates: tuple[str, ...]) -> int:
        # Exact spellings win over any fuzzy hit, whatever their order.
        for name in candidates:
            idx = self.exact(name)
            if idx != -1:
                return idx
        for name in candidates:
            idx = self.containing(name)
            if idx != -1:
                return idx
        return -1


@dataclass(frozen=True)
class ColumnMap:
    width: int
    fields: dict[str, int]
    targets: tuple[dict[str, int], ...]
    categories: dict[str, tuple[tuple[int, int], ...]]
    signatories: dict[str, tuple[tuple[int, int], ...]]
    reasons: tuple[int, ...]
    misc: dict[str, int]


def slot_labels(templates: tuple[str, ...], j: int) -> tuple[str, ...]:
    return tuple(template.format(j=j) for template in templates)


def resolve_columns(index: HeaderIndex) -> ColumnMap:
    fields = {name: index.resolve(labels) for name, labels in RECORD_FIELDS.items()}

    targets = tuple(
        {name: index.resolve(slot_labels(labels, j)) for name, labels in TARGET_FIELDS.items()}
        for j in range(1, SLOT_COUNT + 1)
    )

    categories = {
        key: tuple(
            (index.find(f"{prefix}STATUS{j}"), index.find(f"{prefix}ISSUE{j}"))
            for j in range(1, SLOT_COUNT + 1)
        )
        for key, prefix in CATEGORY_PREFIXES.items()
    }

    signatories = {
        key: tuple(
            (
                index.resolve(slot_labels(name_labels, j)),
                index.resolve(slot_labels(position_labels, j)),
            )
            for j in range(1, SLOT_COUNT + 1)
        )
        for key, (name_labels, position_labels) in SIGNATORY_FIELDS.items()
    }

    return ColumnMap(
        width=len(index),
        fields=fields,
        targets=targets,
        categories=categories,
        signatories=signatories,
        reasons=tuple(index.find(label) for label in REASON_LABELS),
        misc={name: index.find(label) for name, label in MISC_FIELDS.items()},
    )


def cell(values: list[str], idx: int) -> str:
    if 0 <= idx < len(values):
        return values[idx]
    return ""


def extract_targets(values: list[str], columns: ColumnMap) -> list[dict[str, Any]]:
    targets: list[dict[str, Any]] = []
    for slot, slot_columns in enumerate(columns.targets, start=1):
        objective = cell(values, slot_columns["objective"])
        if not objective:
            continue
        target = {name: cell(values, idx) for name, idx in slot_columns.items()}
        target["slot"] = slot
        targets.append(target)
    return targets


def extract_agreements(values: list[str], columns: ColumnMap) -> list[dict[str, str]]:
    agreements: list[dict[str, str]] = []
    for slot_columns in columns.targets:
        agree = cell(values, slot_columns["agree"])
        if not agree:
            continue
        agreements.append(
            {
                "agree": agree,
                "specific_office": cell(values, slot_columns["specific_office"]),
                "due_date": cell(values, slot_columns["tap_due_date"]),
                "status": cell(values, slot_columns["tap_status"]),
            }
        )
    return agreements


def extract_category(values: list[str], slots: tuple[tuple[int, int], ...]) -> list[dict[str, str]]:
    items: list[dict[str, str]] = []
    for status_idx, issue_idx in slots:
        status = cell(values, status_idx)
        if status:
            items.append({"status": status, "issue": cell(values, issue_idx)})
    return items


def extract_signatories(values: list[str], slots: tuple[tuple[int, int], ...]) -> list[dict[str, str]]:
    signatories: list[dict[str, str]] = []
    for name_idx, position_idx in slots:
        name = cell(values, name_idx)
        if name:
            signatories.append({"name": name, "position": cell(values, position_idx)})
    return signatories


def is_data_row(values: list[str], columns: ColumnMap) -> bool:
    # Narrow sheets with fewer than five columns still need their rows.
    if len(values) < min(MIN_ROW_CELLS, columns.width):
        return False
    office = cell(values, columns.fields["office"])
    return bool(office) and not office.startswith(SECTION_MARKERS)


def extract_record(values: list[str], row_index: int, columns: ColumnMap) -> dict[str, Any]:
    record: dict[str, Any] = {"id": f"row-{row_index}"}
    for name, idx in columns.fields.items():
        record[name] = cell(values, idx)

    for key, slots in columns.categories.items():
        record[key] = extract_category(values, slots)

    record["reasons"] = [cell(values, idx) for idx in columns.reasons if cell(values, idx)]
    record["targets"] = extract_targets(values, columns)
    record["agreements"] = extract_agreements(values, columns)
    for key, slots in columns.signatories.items():
        record[key] = extract_signatories(values, slots)
    record["misc"] = {name: cell(values, idx) for name, idx in columns.misc.items()}
    record["raw"] = list(values)
    return record


def parse_records(text: str, strict: bool = False) -> list[dict[str, Any]]:
    rows = tokenize(text)
    header_idx = find_header_row(rows)
    if header_idx is None:
        logger.warning("sheet_header_not_found", rows=len(rows), scanned=min(len(rows), HEADER_SCAN_LIMIT))
        return []

    index = HeaderIndex(rows[header_idx], strict=strict)
    columns = resolve_columns(index)

    records: list[dict[str, Any]] = []
    skipped = 0
    for row_index in range(header_idx + 1, len(rows)):
        values = rows[row_index]
        if not is_data_row(values, columns):
            skipped += 1
            continue
        records.append(extract_record(values, row_index, columns))

    logger.info(
        "sheet_parsed",
        header_row=header_idx,
        columns=len(index),
        records=len(records),
        skipped_rows=skipped,
    )
    return records
