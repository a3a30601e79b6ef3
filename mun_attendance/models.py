"""
Data Models for the MUN Attendance Tracker

This module contains the data model classes for the tracker's core
entities. Documents in the store use camelCase field names; the models
expose snake_case attributes and convert at the boundary through
``from_dict`` and ``to_document``.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import DataValidationException


ALL_SCHOOLS = "All Schools"
ALL_COMMITTEES = "All Committees"
ALL_TEAMS = "All Teams"
ALL_STATUSES = "All"


class AttendanceStatus(Enum):
    """Attendance states a participant can be in"""
    PRESENT = "Present"
    ABSENT = "Absent"
    PRESENT_ON_ACCOUNT = "Present On Account"

    @classmethod
    def parse(cls, value: Any) -> 'AttendanceStatus':
        """
        Convert a raw value into an AttendanceStatus

        Args:
            value: Enum member or its string value

        Returns:
            Matching AttendanceStatus

        Raises:
            DataValidationException: If the value is not one of the three states
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(status.value for status in cls)
            raise DataValidationException(
                "status",
                f"'{value}' is not a valid attendance status (expected one of: {allowed})"
            )


class StaffAttendanceStatus(Enum):
    """Duty states a staff member can be in"""
    ON_DUTY = "On Duty"
    OFF_DUTY = "Off Duty"
    ON_BREAK = "On Break"
    AWAY = "Away"

    @classmethod
    def parse(cls, value: Any) -> 'StaffAttendanceStatus':
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(status.value for status in cls)
            raise DataValidationException(
                "status",
                f"'{value}' is not a valid staff status (expected one of: {allowed})"
            )


class UserRole(Enum):
    OWNER = "owner"
    ADMIN = "admin"
    USER = "user"


def to_iso_string(value: Any) -> Optional[str]:
    """
    Normalize a stored timestamp to an ISO-8601 string

    Firestore timestamps arrive as datetime subclasses, Supabase rows and
    imported data as strings. Anything that is neither becomes None.

    Args:
        value: Raw timestamp value

    Returns:
        ISO-8601 string or None
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).isoformat()
        except ValueError:
            return None
    return None


@dataclass
class Participant:
    """
    Data model for a conference participant

    A participant belongs to exactly one school and one committee, both
    referenced by name. ``status`` always holds an AttendanceStatus.
    """
    id: str
    name: str
    school: str
    committee: str
    status: AttendanceStatus = AttendanceStatus.ABSENT
    image_url: Optional[str] = None
    country: str = ""
    notes: str = ""
    additional_details: str = ""
    class_grade: str = ""
    email: str = ""
    phone: str = ""
    attended: bool = False
    check_in_time: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.status = AttendanceStatus.parse(self.status)

    @classmethod
    def from_dict(cls, participant_id: str, data: Dict) -> 'Participant':
        """
        Create Participant instance from a stored document

        Missing text fields become empty strings and a missing status
        becomes Absent. A status outside the known states is rejected.

        Args:
            participant_id: Document identifier
            data: Document fields

        Returns:
            Participant instance

        Raises:
            DataValidationException: If the stored status is invalid
        """
        return cls(
            id=str(participant_id),
            name=data.get('name') or '',
            school=data.get('school') or '',
            committee=data.get('committee') or '',
            status=AttendanceStatus.parse(data.get('status') or AttendanceStatus.ABSENT.value),
            image_url=data.get('imageUrl'),
            country=data.get('country') or '',
            notes=data.get('notes') or '',
            additional_details=data.get('additionalDetails') or '',
            class_grade=data.get('classGrade') or '',
            email=data.get('email') or '',
            phone=data.get('phone') or '',
            attended=bool(data.get('attended', False)),
            check_in_time=to_iso_string(data.get('checkInTime')),
            created_at=to_iso_string(data.get('createdAt')),
            updated_at=to_iso_string(data.get('updatedAt')),
        )

    def to_dict(self) -> Dict:
        """Convert participant to a JSON-serializable dictionary"""
        data = asdict(self)
        data['status'] = self.status.value
        return data

    def to_document(self) -> Dict:
        """Convert participant to store fields (without the id)"""
        return {
            'name': self.name,
            'school': self.school,
            'committee': self.committee,
            'status': self.status.value,
            'imageUrl': self.image_url,
            'country': self.country,
            'notes': self.notes,
            'additionalDetails': self.additional_details,
            'classGrade': self.class_grade,
            'email': self.email,
            'phone': self.phone,
            'attended': self.attended,
        }

    def matches(self, term: str) -> bool:
        """Case-insensitive search over name, school, committee and country"""
        term = term.lower()
        return any(
            term in value.lower()
            for value in (self.name, self.school, self.committee, self.country)
            if value
        )


@dataclass
class School:
    id: str
    name: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Committee:
    id: str
    name: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class StaffMember:
    """
    Data model for a conference staff member

    Staff members are grouped into teams and carry a duty status.
    """
    id: str
    name: str
    role: str
    department: str = ""
    team: str = ""
    email: str = ""
    phone: str = ""
    contact_info: str = ""
    status: StaffAttendanceStatus = StaffAttendanceStatus.OFF_DUTY
    image_url: Optional[str] = None
    notes: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        self.status = StaffAttendanceStatus.parse(self.status)

    @classmethod
    def from_dict(cls, staff_id: str, data: Dict) -> 'StaffMember':
        return cls(
            id=str(staff_id),
            name=data.get('name') or '',
            role=data.get('role') or '',
            department=data.get('department') or '',
            team=data.get('team') or '',
            email=data.get('email') or '',
            phone=data.get('phone') or '',
            contact_info=data.get('contactInfo') or '',
            status=StaffAttendanceStatus.parse(data.get('status') or StaffAttendanceStatus.OFF_DUTY.value),
            image_url=data.get('imageUrl'),
            notes=data.get('notes') or '',
            created_at=to_iso_string(data.get('createdAt')),
            updated_at=to_iso_string(data.get('updatedAt')),
        )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['status'] = self.status.value
        return data

    def to_document(self) -> Dict:
        return {
            'name': self.name,
            'role': self.role,
            'department': self.department,
            'team': self.team,
            'email': self.email,
            'phone': self.phone,
            'contactInfo': self.contact_info,
            'status': self.status.value,
            'imageUrl': self.image_url,
            'notes': self.notes,
        }

    def matches(self, term: str) -> bool:
        term = term.lower()
        return any(
            term in value.lower()
            for value in (self.name, self.role, self.department, self.team)
            if value
        )


@dataclass
class ParticipantFilters:
    """Query filters for the participant dashboard; sentinel values mean no filter"""
    school: Optional[str] = None
    committee: Optional[str] = None
    status: Optional[str] = None
    search_term: str = ""

    def equality_filters(self) -> Dict[str, str]:
        filters = {}
        if self.school and self.school != ALL_SCHOOLS:
            filters['school'] = self.school
        if self.committee and self.committee != ALL_COMMITTEES:
            filters['committee'] = self.committee
        if self.status and self.status != ALL_STATUSES:
            filters['status'] = AttendanceStatus.parse(self.status).value
        return filters


@dataclass
class StaffFilters:
    """Query filters for the staff dashboard; sentinel values mean no filter"""
    team: Optional[str] = None
    status: Optional[str] = None
    search_term: str = ""

    def equality_filters(self) -> Dict[str, str]:
        filters = {}
        if self.team and self.team != ALL_TEAMS:
            filters['team'] = self.team
        if self.status and self.status != ALL_STATUSES:
            filters['status'] = StaffAttendanceStatus.parse(self.status).value
        return filters


@dataclass
class SessionUser:
    """An authenticated user, resolved from a verified ID token"""
    uid: str
    email: Optional[str] = None
    role: UserRole = UserRole.USER

    @property
    def is_privileged(self) -> bool:
        return self.role in (UserRole.OWNER, UserRole.ADMIN)

    def to_dict(self) -> Dict:
        return {"uid": self.uid, "email": self.email, "role": self.role.value}


@dataclass
class ActionResult:
    """
    Outcome of a mutation action

    Quick actions report failures through this object instead of raising,
    so the dashboard can show the message next to the affected row.
    """
    success: bool
    message: str = ""
    error_type: Optional[str] = None
    record: Optional[Any] = None

    def to_dict(self) -> Dict:
        data = {
            'success': self.success,
            'message': self.message,
            'error_type': self.error_type,
        }
        if self.record is not None:
            data['record'] = self.record.to_dict()
        return data


@dataclass
class ImportValidationResult:
    """Lookup names referenced by an import that the system lists don't contain yet"""
    new_schools: List[str] = field(default_factory=list)
    new_committees: List[str] = field(default_factory=list)
    new_teams: List[str] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AnalyticsData:
    total_participants: int
    total_staff: int
    total_schools: int
    total_committees: int
    participants_by_committee: List[Dict] = field(default_factory=list)
    status_distribution: List[Dict] = field(default_factory=list)
    staff_status_distribution: List[Dict] = field(default_factory=list)
    staff_by_team: List[Dict] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)
