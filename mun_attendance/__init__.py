"""
MUN Attendance Tracker Package

A Model United Nations attendance tracker built with Flask. Participants
and staff live in Firestore behind a privileged admin handle; a public
attendance board reads from Supabase through an anonymous client.

Main Components:
- models: Participants, staff, lookups and attendance states
- clients: Admin database provider and public client
- repositories: Document repositories (Firestore, Supabase, in-memory)
- services: Authentication, lookups, settings, participants, staff, analytics
- loading: Two-phase staff dashboard loader
- csv_io: CSV import and export
- exceptions: Custom exception classes for error handling
- app: Main Flask application class

Usage:
    from mun_attendance import create_app

    tracker = create_app()
    tracker.run()
"""

__version__ = "1.0.0"

from .app import AttendanceTrackerApp, create_app, create_development_app, create_production_app
from .clients import AdminDatabaseProvider, InitResult, PublicClient
from .config import Settings
from .exceptions import (
    AttendanceTrackerException,
    AuthenticationFailedException,
    AuthorizationException,
    ConfigurationException,
    DataAccessException,
    DatabaseInitializationException,
    DataValidationException,
    InvalidStateTransitionException,
    ParticipantNotFoundException,
    StaffMemberNotFoundException,
)
from .loading import LoadState, StaffDashboardLoader
from .models import (
    AttendanceStatus,
    Committee,
    Participant,
    School,
    StaffAttendanceStatus,
    StaffMember,
)
from .repositories import RepositoryFactory

__all__ = [
    # App factory functions
    'AttendanceTrackerApp',
    'create_app',
    'create_development_app',
    'create_production_app',
    'Settings',

    # Database handles
    'AdminDatabaseProvider',
    'InitResult',
    'PublicClient',
    'RepositoryFactory',

    # Data models
    'AttendanceStatus',
    'Committee',
    'Participant',
    'School',
    'StaffAttendanceStatus',
    'StaffMember',

    # Loading
    'LoadState',
    'StaffDashboardLoader',

    # Exceptions
    'AttendanceTrackerException',
    'AuthenticationFailedException',
    'AuthorizationException',
    'ConfigurationException',
    'DataAccessException',
    'DatabaseInitializationException',
    'DataValidationException',
    'InvalidStateTransitionException',
    'ParticipantNotFoundException',
    'StaffMemberNotFoundException',
]
