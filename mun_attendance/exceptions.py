"""
Custom Exceptions for the MUN Attendance Tracker

This module defines the exception classes used across the tracker. Every
exception carries a human-readable message and an error code that the web
layer uses to pick an HTTP status and build a JSON error body.
"""


class AttendanceTrackerException(Exception):
    """
    Base exception for the attendance tracker

    All custom exceptions in the tracker inherit from this class so the
    web layer can handle them with a single error handler.
    """

    def __init__(self, message: str, error_code: str = None):
        """
        Initialize tracker exception

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class ConfigurationException(AttendanceTrackerException):
    """Raised when a required environment value is missing or malformed"""

    def __init__(self, setting: str, details: str):
        message = f"Configuration error for '{setting}': {details}"
        super().__init__(message, "CONFIGURATION_ERROR")
        self.setting = setting
        self.details = details


class DatabaseInitializationException(AttendanceTrackerException):
    """
    Raised when a failed admin database initialization is unwrapped

    Initialization itself never raises; it returns a failure result. This
    exception surfaces the stored failure at the point where a caller
    actually needs the handle.
    """

    def __init__(self, reason: str):
        message = f"Admin database is not available: {reason}"
        super().__init__(message, "DB_INIT_FAILED")
        self.reason = reason


class ParticipantNotFoundException(AttendanceTrackerException):
    """Raised when a participant is not found in the store"""

    def __init__(self, participant_id: str):
        message = f"Participant with ID '{participant_id}' not found"
        super().__init__(message, "PARTICIPANT_NOT_FOUND")
        self.participant_id = participant_id


class StaffMemberNotFoundException(AttendanceTrackerException):
    """Raised when a staff member is not found in the store"""

    def __init__(self, staff_id: str):
        message = f"Staff member with ID '{staff_id}' not found"
        super().__init__(message, "STAFF_NOT_FOUND")
        self.staff_id = staff_id


class AuthenticationFailedException(AttendanceTrackerException):
    """
    Raised when authentication fails

    Thrown when no session is present or when an ID token cannot be
    verified against the admin database.
    """

    def __init__(self, reason: str = None):
        if reason:
            message = f"Authentication failed: {reason}"
        else:
            message = "Authentication failed - no valid session"
        super().__init__(message, "AUTH_FAILED")
        self.reason = reason


class AuthorizationException(AttendanceTrackerException):
    """Raised when an authenticated user lacks the role an action needs"""

    def __init__(self, uid: str, required_role: str):
        message = f"User '{uid}' requires role '{required_role}' for this action"
        super().__init__(message, "FORBIDDEN")
        self.uid = uid
        self.required_role = required_role


class DataValidationException(AttendanceTrackerException):
    """
    Raised when data validation fails

    This exception is thrown when input data doesn't meet
    the required validation criteria.
    """

    def __init__(self, field_name: str, validation_error: str):
        """
        Initialize data validation exception

        Args:
            field_name: Name of the field that failed validation
            validation_error: Description of the validation error
        """
        message = f"Validation error in field '{field_name}': {validation_error}"
        super().__init__(message, "VALIDATION_ERROR")
        self.field_name = field_name
        self.validation_error = validation_error


class DataAccessException(AttendanceTrackerException):
    """
    Raised when data access operations fail

    Wraps errors coming out of the Firestore and Supabase SDKs so callers
    only need to know about tracker exceptions.
    """

    def __init__(self, operation: str, details: str, reason: str = None):
        """
        Initialize data access exception

        Args:
            operation: The operation that failed (e.g., 'read', 'write')
            details: Detailed error information
            reason: Optional short cause such as 'permission_denied'
        """
        message = f"Data access error during {operation}: {details}"
        super().__init__(message, "DATA_ACCESS_ERROR")
        self.operation = operation
        self.details = details
        self.reason = reason


class InvalidStateTransitionException(AttendanceTrackerException):
    """Raised when the dashboard loader is driven out of order"""

    def __init__(self, current_state: str, attempted: str):
        message = f"Cannot {attempted} while loader is in state '{current_state}'"
        super().__init__(message, "INVALID_STATE")
        self.current_state = current_state
        self.attempted = attempted
