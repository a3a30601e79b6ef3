"""
Business Logic Services for the MUN Attendance Tracker

This module contains the service classes that sit between the web layer
and the document repositories: session authentication, system lookup lists,
application settings, participant and staff operations, and analytics.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from firebase_admin import auth as firebase_auth

from .clients import AdminDatabaseProvider
from .exceptions import (
    AttendanceTrackerException,
    AuthenticationFailedException,
    AuthorizationException,
    DataAccessException,
    DatabaseInitializationException,
    DataValidationException,
    ParticipantNotFoundException,
    StaffMemberNotFoundException,
)
from .models import (
    ActionResult,
    AnalyticsData,
    AttendanceStatus,
    Committee,
    ImportValidationResult,
    Participant,
    ParticipantFilters,
    School,
    SessionUser,
    StaffAttendanceStatus,
    StaffFilters,
    StaffMember,
    UserRole,
)
from .repositories import (
    APP_SETTINGS_DOC_ID,
    PARTICIPANTS_COLLECTION,
    STAFF_MEMBERS_COLLECTION,
    SYSTEM_COMMITTEES_COLLECTION,
    SYSTEM_CONFIG_COLLECTION,
    SYSTEM_SCHOOLS_COLLECTION,
    SYSTEM_STAFF_TEAMS_COLLECTION,
    USERS_COLLECTION,
    DocumentRepository,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _error_type(error: AttendanceTrackerException) -> str:
    if isinstance(error, DataAccessException) and error.reason:
        return error.reason
    if isinstance(error, DatabaseInitializationException):
        return "db_unavailable"
    return "generic_error"


def _valid_records(model, collection: str, documents) -> List:
    """Build records from stored documents, skipping ones with an unknown status"""
    records = []
    for doc_id, data in documents:
        try:
            records.append(model.from_dict(doc_id, data))
        except DataValidationException as e:
            logger.warning("Skipping invalid record %s/%s: %s", collection, doc_id, e.message)
    return records


def _stored_record(model, collection: str, doc_id: str, data: Optional[Dict]):
    """Build one record from a stored document; an unknown stored status is a read failure"""
    if data is None:
        return None
    try:
        return model.from_dict(doc_id, data)
    except DataValidationException as e:
        raise DataAccessException("read", f"stored record '{collection}/{doc_id}' is invalid: {e.message}",
                                  "invalid_record")


def _name_list(field_name: str, names) -> List[str]:
    if not isinstance(names, (list, tuple)) or not all(isinstance(name, str) for name in names):
        raise DataValidationException(field_name, "must be a list of names")
    return list(names)


def _failure(error: AttendanceTrackerException, collection: str, action: str) -> ActionResult:
    """Translate a repository error into a failed ActionResult"""
    reason = _error_type(error)
    if reason == "permission_denied":
        message = (
            f"Permission Denied on '{collection}' collection: could not {action}. "
            "This action may require administrator privileges."
        )
    else:
        message = f"Update failed on '{collection}'. Error: {error.message}"
    return ActionResult(success=False, message=message, error_type=reason)


class AuthenticationService:
    """
    Handles session authentication and role resolution

    ID tokens issued by Firebase Auth are verified with the admin handle.
    The owner uid comes from configuration; admins are users whose
    ``users/<uid>`` document has role ``admin``.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        provider: Optional[AdminDatabaseProvider] = None,
        owner_uid: Optional[str] = None,
        token_verifier: Optional[Callable[[str], Dict]] = None,
    ):
        """
        Initialize authentication service

        Args:
            repository: Repository holding the users collection
            provider: Admin database provider used to verify tokens
            owner_uid: Uid of the conference owner
            token_verifier: Replaces Firebase token verification when given
        """
        self.repository = repository
        self.provider = provider
        self.owner_uid = owner_uid
        self._token_verifier = token_verifier

    def _verify(self, id_token: str) -> Dict:
        if self._token_verifier is not None:
            return self._token_verifier(id_token)
        if self.provider is None:
            raise AuthenticationFailedException("no token verifier configured")
        return self.provider.get_admin_db().unwrap().verify_id_token(id_token)

    def verify_session(self, id_token: str) -> SessionUser:
        """
        Verify an ID token and resolve the user's role

        Args:
            id_token: Firebase ID token posted by the browser

        Returns:
            SessionUser for the token's subject

        Raises:
            AuthenticationFailedException: If the token is missing or invalid
            DatabaseInitializationException: If the admin handle is unavailable
        """
        if not id_token:
            raise AuthenticationFailedException("ID token is required")

        try:
            claims = self._verify(id_token)
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.CertificateFetchError) as e:
            raise AuthenticationFailedException(str(e))

        uid = claims.get("uid") or claims.get("sub")
        if not uid:
            raise AuthenticationFailedException("token carries no uid")

        return SessionUser(uid=uid, email=claims.get("email"), role=self.resolve_role(uid))

    def resolve_role(self, uid: str) -> UserRole:
        if self.owner_uid and uid == self.owner_uid:
            return UserRole.OWNER
        try:
            user_doc = self.repository.get_document(USERS_COLLECTION, uid)
        except DataAccessException as e:
            logger.error("Error fetching role for user %s: %s", uid, e)
            return UserRole.USER
        if user_doc and user_doc.get("role") == UserRole.ADMIN.value:
            return UserRole.ADMIN
        return UserRole.USER

    def require_privileged(self, user: Optional[SessionUser]) -> SessionUser:
        """
        Ensure the user is the owner or an admin

        Raises:
            AuthenticationFailedException: If there is no user
            AuthorizationException: If the user is a plain user
        """
        if user is None:
            raise AuthenticationFailedException()
        if not user.is_privileged:
            raise AuthorizationException(user.uid, UserRole.ADMIN.value)
        return user


class LookupService:
    """
    Reads and extends the system lookup lists

    Schools, committees and staff teams are stored as ``{name}`` documents
    in their own collections and are always returned ordered by name.
    """

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def _names(self, collection: str) -> List[str]:
        return [
            data["name"]
            for _, data in self.repository.list_documents(collection, order_by="name")
            if data.get("name")
        ]

    def get_system_schools(self) -> List[str]:
        return self._names(SYSTEM_SCHOOLS_COLLECTION)

    def get_system_committees(self) -> List[str]:
        return self._names(SYSTEM_COMMITTEES_COLLECTION)

    def get_system_staff_teams(self) -> List[str]:
        """
        Get staff team names, ordered by name

        This is the server-side read behind the staff dashboard's team
        filter; it runs before any session is established.

        Returns:
            List of team names

        Raises:
            DataAccessException: If the read fails
        """
        return self._names(SYSTEM_STAFF_TEAMS_COLLECTION)

    def get_schools(self) -> List[School]:
        return [
            School(id=doc_id, name=data.get("name", ""))
            for doc_id, data in self.repository.list_documents(SYSTEM_SCHOOLS_COLLECTION, order_by="name")
        ]

    def get_committees(self) -> List[Committee]:
        return [
            Committee(id=doc_id, name=data.get("name", ""))
            for doc_id, data in self.repository.list_documents(SYSTEM_COMMITTEES_COLLECTION, order_by="name")
        ]

    def add_system_items(
        self,
        new_schools: Iterable[str] = (),
        new_committees: Iterable[str] = (),
        new_teams: Iterable[str] = (),
    ) -> ActionResult:
        """
        Add lookup names that aren't in the system lists yet

        Args:
            new_schools: School names to add
            new_committees: Committee names to add
            new_teams: Staff team names to add

        Returns:
            ActionResult with the number of names added in the message

        Raises:
            DataValidationException: If a value is not a list of strings
        """
        batches = (
            (SYSTEM_SCHOOLS_COLLECTION, _name_list("schools", new_schools)),
            (SYSTEM_COMMITTEES_COLLECTION, _name_list("committees", new_committees)),
            (SYSTEM_STAFF_TEAMS_COLLECTION, _name_list("teams", new_teams)),
        )
        added = 0
        try:
            for collection, names in batches:
                existing = set(self._names(collection))
                pending = []
                for name in names:
                    name = name.strip()
                    if name and name not in existing:
                        existing.add(name)
                        pending.append({"name": name, "createdAt": _now()})
                added += len(self.repository.add_documents(collection, pending))
        except AttendanceTrackerException as e:
            logger.error("Error adding new system items: %s", e)
            return ActionResult(
                success=False,
                message=f"Failed to add new system items. Server error: {e.message}",
                error_type=_error_type(e),
            )

        logger.info("Added %d new system items", added)
        return ActionResult(success=True, message=f"Added {added} new system item(s).")


class SettingsService:
    """Reads application settings from ``system_config/main_settings``"""

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def _settings(self) -> Dict:
        try:
            return self.repository.get_document(SYSTEM_CONFIG_COLLECTION, APP_SETTINGS_DOC_ID) or {}
        except AttendanceTrackerException as e:
            logger.error("Error fetching application settings: %s", e)
            return {}

    def get_default_attendance_status(self) -> AttendanceStatus:
        value = self._settings().get("defaultAttendanceStatus")
        if not value:
            return AttendanceStatus.ABSENT
        try:
            return AttendanceStatus.parse(value)
        except DataValidationException as e:
            logger.warning("Ignoring stored default attendance status: %s", e)
            return AttendanceStatus.ABSENT

    def get_default_staff_status(self) -> StaffAttendanceStatus:
        value = self._settings().get("defaultStaffStatus")
        if not value:
            return StaffAttendanceStatus.OFF_DUTY
        try:
            return StaffAttendanceStatus.parse(value)
        except DataValidationException as e:
            logger.warning("Ignoring stored default staff status: %s", e)
            return StaffAttendanceStatus.OFF_DUTY

    def get_event_logo_url(self) -> Optional[str]:
        return self._settings().get("eventLogoUrl") or None


class ParticipantService:
    """
    Handles participant queries and attendance actions

    Queries raise on failure; the quick actions return an ActionResult
    so a dashboard can report the outcome next to the participant.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        lookup_service: LookupService,
        settings_service: SettingsService,
    ):
        self.repository = repository
        self.lookup_service = lookup_service
        self.settings_service = settings_service

    def list_participants(self, filters: Optional[ParticipantFilters] = None) -> List[Participant]:
        """
        List participants, ordered by name

        Stored records whose status is not one of the known states are
        skipped with a warning.

        Args:
            filters: Optional school/committee/status filters and search term

        Returns:
            Matching participants

        Raises:
            DataValidationException: If the status filter is invalid
            DataAccessException: If the read fails
        """
        filters = filters or ParticipantFilters()
        documents = self.repository.list_documents(
            PARTICIPANTS_COLLECTION,
            filters=filters.equality_filters(),
            order_by="name",
        )
        participants = _valid_records(Participant, PARTICIPANTS_COLLECTION, documents)

        if filters.search_term:
            participants = [p for p in participants if p.matches(filters.search_term)]
        return participants

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        data = self.repository.get_document(PARTICIPANTS_COLLECTION, participant_id)
        return _stored_record(Participant, PARTICIPANTS_COLLECTION, participant_id, data)

    def get_participant_or_raise(self, participant_id: str) -> Participant:
        """
        Get participant by ID or raise exception if not found

        Raises:
            ParticipantNotFoundException: If participant not found
        """
        participant = self.get_participant(participant_id)
        if participant is None:
            raise ParticipantNotFoundException(participant_id)
        return participant

    def quick_set_status(self, participant_id: str, new_status, is_check_in: bool = False) -> ActionResult:
        """
        Set a participant's attendance status

        A check-in to Present also marks the participant as attended and
        records the first check-in time.

        Args:
            participant_id: Participant to update
            new_status: AttendanceStatus or its string value
            is_check_in: Whether this update comes from the check-in desk

        Returns:
            ActionResult carrying the updated participant on success
        """
        if not participant_id:
            return ActionResult(False, "Participant ID is required.", "missing_id")
        try:
            status = AttendanceStatus.parse(new_status)
        except DataValidationException as e:
            return ActionResult(False, e.message, "invalid_status")

        try:
            current = self.repository.get_document(PARTICIPANTS_COLLECTION, participant_id)
            if current is None:
                return ActionResult(False, f'Participant with ID "{participant_id}" not found.', "not_found")

            updates = {"status": status.value, "updatedAt": _now()}
            if is_check_in and status is AttendanceStatus.PRESENT:
                updates["attended"] = True
                if not current.get("attended") or not current.get("checkInTime"):
                    updates["checkInTime"] = _now()

            self.repository.update_document(PARTICIPANTS_COLLECTION, participant_id, updates)
            participant = self.get_participant_or_raise(participant_id)
        except AttendanceTrackerException as e:
            logger.error("Error setting status %s for participant %s: %s", status.value, participant_id, e)
            return _failure(e, PARTICIPANTS_COLLECTION, "update participant status")

        logger.info("Participant %s status set to %s", participant_id, status.value)
        return ActionResult(
            success=True,
            message=f"Status for {participant.name} updated to {status.value}.",
            record=participant,
        )

    def reset_attendance(self, participant_id: str) -> ActionResult:
        """Reset a participant to Absent and clear the check-in record"""
        if not participant_id:
            return ActionResult(False, "Participant ID is required.", "missing_id")
        try:
            if self.repository.get_document(PARTICIPANTS_COLLECTION, participant_id) is None:
                return ActionResult(False, f'Participant with ID "{participant_id}" not found.', "not_found")

            self.repository.update_document(PARTICIPANTS_COLLECTION, participant_id, {
                "status": AttendanceStatus.ABSENT.value,
                "attended": False,
                "checkInTime": None,
                "updatedAt": _now(),
            })
            participant = self.get_participant_or_raise(participant_id)
        except AttendanceTrackerException as e:
            logger.error("Error resetting attendance for participant %s: %s", participant_id, e)
            return ActionResult(False, "Failed to reset attendance.", _error_type(e))

        logger.info("Participant %s attendance reset", participant_id)
        return ActionResult(
            success=True,
            message=f"Attendance for {participant.name} has been reset.",
            record=participant,
        )

    def validate_import(self, rows: Iterable[Dict]) -> ImportValidationResult:
        """
        Report schools and committees referenced by ``rows`` that the system lists lack

        Args:
            rows: Parsed import rows with ``school`` and ``committee`` keys

        Returns:
            ImportValidationResult; ``message`` is set if the lists couldn't be read
        """
        try:
            schools = set(self.lookup_service.get_system_schools())
            committees = set(self.lookup_service.get_system_committees())
        except AttendanceTrackerException as e:
            logger.error("Error fetching system lists during import validation: %s", e)
            return ImportValidationResult(message=f"Error during validation: {e.message}")

        result = ImportValidationResult()
        for row in rows:
            school = (row.get("school") or "").strip()
            committee = (row.get("committee") or "").strip()
            if school and school not in schools and school not in result.new_schools:
                result.new_schools.append(school)
            if committee and committee not in committees and committee not in result.new_committees:
                result.new_committees.append(committee)
        return result

    def import_participants(self, rows: List[Dict], add_new_lookups: bool = False) -> ActionResult:
        """
        Add imported participants with the configured default status

        Args:
            rows: Parsed rows; name, school and committee are required
            add_new_lookups: Add unknown schools and committees to the system lists first

        Returns:
            ActionResult whose message reports imported and skipped counts
        """
        if add_new_lookups:
            validation = self.validate_import(rows)
            if validation.message:
                return ActionResult(False, validation.message, "validation_failed")
            added = self.lookup_service.add_system_items(validation.new_schools, validation.new_committees)
            if not added.success:
                return added

        default_status = self.settings_service.get_default_attendance_status()
        documents = []
        skipped = 0
        for row in rows:
            name = (row.get("name") or "").strip()
            school = (row.get("school") or "").strip()
            committee = (row.get("committee") or "").strip()
            if not (name and school and committee):
                skipped += 1
                continue
            documents.append({
                "name": name,
                "school": school,
                "committee": committee,
                "country": (row.get("country") or "").strip(),
                "email": (row.get("email") or "").strip(),
                "phone": (row.get("phone") or "").strip(),
                "notes": (row.get("notes") or "").strip(),
                "additionalDetails": (row.get("additional_details") or "").strip(),
                "classGrade": (row.get("class_grade") or "").strip(),
                "status": default_status.value,
                "attended": False,
                "checkInTime": None,
                "createdAt": _now(),
                "updatedAt": _now(),
            })

        try:
            ids = self.repository.add_documents(PARTICIPANTS_COLLECTION, documents)
        except AttendanceTrackerException as e:
            logger.error("Error importing participants: %s", e)
            return _failure(e, PARTICIPANTS_COLLECTION, "import participants")

        logger.info("Imported %d participants (%d skipped)", len(ids), skipped)
        return ActionResult(True, f"Imported {len(ids)} participant(s); skipped {skipped}.")


class StaffService:
    """Handles staff roster queries and duty status actions"""

    def __init__(
        self,
        repository: DocumentRepository,
        lookup_service: LookupService,
        settings_service: SettingsService,
    ):
        self.repository = repository
        self.lookup_service = lookup_service
        self.settings_service = settings_service

    def list_staff(self, filters: Optional[StaffFilters] = None) -> List[StaffMember]:
        filters = filters or StaffFilters()
        documents = self.repository.list_documents(
            STAFF_MEMBERS_COLLECTION,
            filters=filters.equality_filters(),
            order_by="name",
        )
        staff = _valid_records(StaffMember, STAFF_MEMBERS_COLLECTION, documents)
        if filters.search_term:
            staff = [s for s in staff if s.matches(filters.search_term)]
        return staff

    def get_staff_member(self, staff_id: str) -> Optional[StaffMember]:
        data = self.repository.get_document(STAFF_MEMBERS_COLLECTION, staff_id)
        return _stored_record(StaffMember, STAFF_MEMBERS_COLLECTION, staff_id, data)

    def get_staff_member_or_raise(self, staff_id: str) -> StaffMember:
        staff_member = self.get_staff_member(staff_id)
        if staff_member is None:
            raise StaffMemberNotFoundException(staff_id)
        return staff_member

    def quick_set_status(self, staff_id: str, new_status) -> ActionResult:
        if not staff_id:
            return ActionResult(False, "Staff Member ID is required.", "missing_id")
        try:
            status = StaffAttendanceStatus.parse(new_status)
        except DataValidationException as e:
            return ActionResult(False, e.message, "invalid_status")

        try:
            if self.repository.get_document(STAFF_MEMBERS_COLLECTION, staff_id) is None:
                return ActionResult(False, f'Staff member with ID "{staff_id}" not found.', "not_found")
            self.repository.update_document(STAFF_MEMBERS_COLLECTION, staff_id, {
                "status": status.value,
                "updatedAt": _now(),
            })
            staff_member = self.get_staff_member_or_raise(staff_id)
        except AttendanceTrackerException as e:
            logger.error("Error setting status %s for staff member %s: %s", status.value, staff_id, e)
            return _failure(e, STAFF_MEMBERS_COLLECTION, "update staff status")

        logger.info("Staff member %s status set to %s", staff_id, status.value)
        return ActionResult(
            success=True,
            message=f"Status for {staff_member.name} updated to {status.value}.",
            record=staff_member,
        )

    def validate_import(self, rows: Iterable[Dict]) -> ImportValidationResult:
        try:
            teams = set(self.lookup_service.get_system_staff_teams())
        except AttendanceTrackerException as e:
            logger.error("Error fetching staff teams during import validation: %s", e)
            return ImportValidationResult(message=f"Error during validation: {e.message}")

        result = ImportValidationResult()
        for row in rows:
            team = (row.get("team") or "").strip()
            if team and team not in teams and team not in result.new_teams:
                result.new_teams.append(team)
        return result

    def import_staff(self, rows: List[Dict], add_new_lookups: bool = False) -> ActionResult:
        if add_new_lookups:
            validation = self.validate_import(rows)
            if validation.message:
                return ActionResult(False, validation.message, "validation_failed")
            added = self.lookup_service.add_system_items(new_teams=validation.new_teams)
            if not added.success:
                return added

        default_status = self.settings_service.get_default_staff_status()
        documents = []
        skipped = 0
        for row in rows:
            name = (row.get("name") or "").strip()
            role = (row.get("role") or "").strip()
            if not (name and role):
                skipped += 1
                continue
            documents.append({
                "name": name,
                "role": role,
                "department": (row.get("department") or "").strip(),
                "team": (row.get("team") or "").strip(),
                "email": (row.get("email") or "").strip(),
                "phone": (row.get("phone") or "").strip(),
                "contactInfo": (row.get("contact_info") or "").strip(),
                "notes": (row.get("notes") or "").strip(),
                "status": default_status.value,
                "createdAt": _now(),
                "updatedAt": _now(),
            })

        try:
            ids = self.repository.add_documents(STAFF_MEMBERS_COLLECTION, documents)
        except AttendanceTrackerException as e:
            logger.error("Error importing staff members: %s", e)
            return _failure(e, STAFF_MEMBERS_COLLECTION, "import staff members")

        logger.info("Imported %d staff members (%d skipped)", len(ids), skipped)
        return ActionResult(True, f"Imported {len(ids)} staff member(s); skipped {skipped}.")


class AnalyticsService:
    """Aggregates participant and staff counts for the admin analytics page"""

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def get_analytics(self) -> AnalyticsData:
        """
        Compute attendance analytics

        Returns:
            AnalyticsData with totals and distributions

        Raises:
            DataAccessException: If any read fails
        """
        participants = [data for _, data in self.repository.list_documents(PARTICIPANTS_COLLECTION)]
        staff = [data for _, data in self.repository.list_documents(STAFF_MEMBERS_COLLECTION)]

        by_committee = Counter(p["committee"] for p in participants if p.get("committee"))
        by_status = Counter(p["status"] for p in participants if p.get("status"))
        staff_by_status = Counter(s["status"] for s in staff if s.get("status"))
        staff_by_team = Counter(s["team"] for s in staff if s.get("team"))

        return AnalyticsData(
            total_participants=len(participants),
            total_staff=len(staff),
            total_schools=self.repository.count(SYSTEM_SCHOOLS_COLLECTION),
            total_committees=self.repository.count(SYSTEM_COMMITTEES_COLLECTION),
            participants_by_committee=[
                {"committee": name, "count": count} for name, count in by_committee.most_common()
            ],
            status_distribution=[
                {"status": name, "count": count} for name, count in by_status.items()
            ],
            staff_status_distribution=[
                {"status": name, "count": count} for name, count in staff_by_status.items()
            ],
            staff_by_team=[
                {"team": name, "count": count} for name, count in staff_by_team.most_common()
            ],
        )
