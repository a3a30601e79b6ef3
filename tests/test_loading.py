import pytest

from mun_attendance.exceptions import DataAccessException, InvalidStateTransitionException
from mun_attendance.loading import LoadState, StaffDashboardLoader
from mun_attendance.models import SessionUser, StaffFilters, UserRole
from mun_attendance.repositories import InMemoryRepository
from mun_attendance.services import LookupService, SettingsService, StaffService


class FlakyStaffRepository(InMemoryRepository):
    def list_documents(self, collection, filters=None, order_by=None):
        if collection == "staff_members":
            raise DataAccessException("read", "Permission denied. Check Firestore rules.", "permission_denied")
        return super().list_documents(collection, filters, order_by)


def make_loader(repository):
    lookups = LookupService(repository)
    return StaffDashboardLoader(lookups, StaffService(repository, lookups, SettingsService(repository)))


@pytest.fixture
def loader(repository):
    return make_loader(repository)


@pytest.fixture
def staff_user():
    return SessionUser(uid="user-uid", email="user@example.org", role=UserRole.USER)


def test_public_phase_returns_teams_and_empty_roster(loader):
    data = loader.load_public()

    assert data.state is LoadState.LOADING
    assert data.system_staff_teams == ["All Teams", "Executive", "Logistics"]
    assert data.initial_staff_members == []


def test_public_phase_runs_once(loader):
    loader.load_public()

    with pytest.raises(InvalidStateTransitionException):
        loader.load_public()


def test_authenticate_requires_public_data(loader, staff_user):
    with pytest.raises(InvalidStateTransitionException):
        loader.authenticate(staff_user)


def test_full_load_reaches_ready(loader, staff_user):
    loader.load_public()

    assert loader.authenticate(staff_user) is LoadState.AUTHENTICATED_LOADING

    data = loader.load_privileged()

    assert data.state is LoadState.READY
    assert [m.name for m in data.initial_staff_members] == ["Dana Lee", "Evan Cho", "Fay Ruiz"]
    assert data.to_dict()["staff_members"][0]["status"] == "On Duty"


def test_privileged_phase_is_gated_by_session(loader):
    loader.load_public()

    with pytest.raises(InvalidStateTransitionException):
        loader.load_privileged()

    assert loader.authenticate(None) is LoadState.ERROR
    assert loader.error.startswith("Authentication")
    with pytest.raises(InvalidStateTransitionException):
        loader.load_privileged()


def test_ready_loader_refetches_with_filters(loader, staff_user):
    loader.load_public()
    loader.authenticate(staff_user)
    loader.load_privileged()

    data = loader.load_privileged(StaffFilters(team="Executive"))

    assert data.state is LoadState.READY
    assert [m.id for m in data.initial_staff_members] == ["s2"]


def test_public_read_failure_moves_to_error():
    class NoTeams(InMemoryRepository):
        def list_documents(self, collection, filters=None, order_by=None):
            raise DataAccessException("read", "deadline exceeded")

    loader = make_loader(NoTeams({}))
    data = loader.load_public()

    assert data.state is LoadState.ERROR
    assert data.system_staff_teams == ["All Teams"]
    assert "deadline exceeded" in data.error


def test_roster_read_failure_moves_to_error(staff_user):
    repository = FlakyStaffRepository({"system_staff_teams": {"t1": {"name": "Logistics"}}})
    loader = make_loader(repository)
    loader.load_public()
    loader.authenticate(staff_user)

    data = loader.load_privileged()

    assert data.state is LoadState.ERROR
    assert data.initial_staff_members == []
    assert data.to_dict()["state"] == "error"
