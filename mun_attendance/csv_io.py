"""
CSV import and export for participants and staff

Imports read columns by position after a header row, so files exported
from spreadsheets with slightly different header names still load.
"""

import csv
import io
import logging
from typing import Dict, Iterable, List, Tuple

from .models import Participant, StaffMember

logger = logging.getLogger(__name__)

PARTICIPANT_EXPORT_HEADERS = ["ID", "Name", "School", "Committee", "Status"]
STAFF_EXPORT_HEADERS = ["ID", "Name", "Role", "Department", "Team", "Email", "Phone", "Status"]

PARTICIPANT_IMPORT_COLUMNS = [
    "name", "school", "committee", "country", "class_grade", "email", "phone", "notes", "additional_details",
]
STAFF_IMPORT_COLUMNS = ["name", "role", "department", "team", "email", "phone", "contact_info", "notes"]


def export_participants_csv(participants: Iterable[Participant]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(PARTICIPANT_EXPORT_HEADERS)
    for p in participants:
        writer.writerow([p.id, p.name, p.school, p.committee, p.status.value])
    return buffer.getvalue()


def export_staff_csv(staff_members: Iterable[StaffMember]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(STAFF_EXPORT_HEADERS)
    for s in staff_members:
        writer.writerow([s.id, s.name, s.role, s.department, s.team, s.email, s.phone, s.status.value])
    return buffer.getvalue()


def _parse_rows(text: str, columns: List[str], required: int, kind: str) -> Tuple[List[Dict], int]:
    reader = csv.reader(io.StringIO(text))
    rows = []
    skipped = 0

    header = next(reader, None)
    if header is None:
        return rows, skipped

    for line_number, values in enumerate(reader, start=2):
        values = [value.strip() for value in values]
        if not any(values):
            continue
        if len(values) < required or not all(values[:required]):
            logger.warning("Skipping malformed %s CSV line %d: %r", kind, line_number, values)
            skipped += 1
            continue
        padded = values + [""] * (len(columns) - len(values))
        rows.append(dict(zip(columns, padded)))
    return rows, skipped


def parse_participant_csv(text: str) -> Tuple[List[Dict], int]:
    """
    Parse a participant import file

    Columns: Name, School, Committee, then optional Country, Class/Grade,
    Email, Phone, Notes, Additional Details. The first row is a header and
    is skipped.

    Args:
        text: CSV file contents

    Returns:
        (rows, skipped) where rows are dictionaries keyed by column name
    """
    return _parse_rows(text, PARTICIPANT_IMPORT_COLUMNS, required=3, kind="participant")


def parse_staff_csv(text: str) -> Tuple[List[Dict], int]:
    """Parse a staff import file; Name and Role are required"""
    return _parse_rows(text, STAFF_IMPORT_COLUMNS, required=2, kind="staff")
