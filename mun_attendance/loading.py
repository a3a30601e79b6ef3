"""
Two-phase loading for the staff dashboard

Phase 1 resolves public lookup data (the staff team names) before the page
renders. Phase 2 resolves the staff roster, and may only start once a
verified session has been attached. The loader is a small state machine:

    loading --load_public--> loading (public data ready)
    loading --authenticate--> authenticated_loading
    authenticated_loading --load_privileged--> ready
    ready --load_privileged--> ready (refetch with new filters)

Any failure moves the loader to ``error``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .exceptions import (
    AttendanceTrackerException,
    AuthenticationFailedException,
    InvalidStateTransitionException,
)
from .models import ALL_TEAMS, SessionUser, StaffFilters, StaffMember
from .services import LookupService, StaffService

logger = logging.getLogger(__name__)


class LoadState(Enum):
    LOADING = "loading"
    AUTHENTICATED_LOADING = "authenticated_loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class StaffDashboardData:
    """What the staff dashboard template and JSON endpoint render"""
    state: LoadState
    system_staff_teams: List[str] = field(default_factory=list)
    initial_staff_members: List[StaffMember] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "state": self.state.value,
            "system_staff_teams": list(self.system_staff_teams),
            "staff_members": [member.to_dict() for member in self.initial_staff_members],
            "error": self.error,
        }


class StaffDashboardLoader:
    """
    Drives the staff dashboard through its two loading phases

    One loader serves one page load or one API request.
    """

    def __init__(self, lookup_service: LookupService, staff_service: StaffService):
        self.lookup_service = lookup_service
        self.staff_service = staff_service
        self.state = LoadState.LOADING
        self.user: Optional[SessionUser] = None
        self.teams: Optional[List[str]] = None
        self.staff_members: List[StaffMember] = []
        self.error: Optional[str] = None

    def _require(self, attempted: str, *states: LoadState) -> None:
        if self.state not in states:
            raise InvalidStateTransitionException(self.state.value, attempted)

    def _fail(self, message: str) -> None:
        logger.error("Staff dashboard load failed: %s", message)
        self.state = LoadState.ERROR
        self.error = message

    @property
    def public_loaded(self) -> bool:
        return self.teams is not None

    def load_public(self) -> StaffDashboardData:
        """
        Phase 1: fetch the staff team names

        Returns:
            Dashboard data with the team filter seeded with "All Teams"
            and an empty roster

        Raises:
            InvalidStateTransitionException: If phase 1 already ran
        """
        self._require("load public data", LoadState.LOADING)
        if self.public_loaded:
            raise InvalidStateTransitionException(self.state.value, "load public data twice")

        try:
            self.teams = self.lookup_service.get_system_staff_teams()
        except AttendanceTrackerException as e:
            self._fail(e.message)
        return self.snapshot()

    def authenticate(self, user: Optional[SessionUser]) -> LoadState:
        """
        Attach the verified session that gates phase 2

        Args:
            user: Session user, or None if the request has no session

        Returns:
            The new state
        """
        self._require("authenticate", LoadState.LOADING)
        if not self.public_loaded:
            raise InvalidStateTransitionException(self.state.value, "authenticate before public data")

        if user is None:
            self._fail(AuthenticationFailedException().message)
        else:
            self.user = user
            self.state = LoadState.AUTHENTICATED_LOADING
        return self.state

    def load_privileged(self, filters: Optional[StaffFilters] = None) -> StaffDashboardData:
        """
        Phase 2: fetch the staff roster for the authenticated session

        Args:
            filters: Team, status and search filters

        Returns:
            Dashboard data in state ``ready`` or ``error``
        """
        self._require("load privileged data", LoadState.AUTHENTICATED_LOADING, LoadState.READY)
        self.state = LoadState.AUTHENTICATED_LOADING

        try:
            self.staff_members = self.staff_service.list_staff(filters)
        except AttendanceTrackerException as e:
            self._fail(e.message)
        else:
            self.state = LoadState.READY
        return self.snapshot()

    def snapshot(self) -> StaffDashboardData:
        return StaffDashboardData(
            state=self.state,
            system_staff_teams=[ALL_TEAMS] + list(self.teams or []),
            initial_staff_members=list(self.staff_members),
            error=self.error,
        )
