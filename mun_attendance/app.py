"""
Main Application Module for the MUN Attendance Tracker

This module contains the Flask application class that builds the database
handles once, wires repositories and services, and serves the dashboards
and their JSON endpoints.
"""

import logging
from typing import Callable, Dict, Optional

from flask import Flask, Response, jsonify, redirect, render_template, request, session, url_for

from .clients import AdminDatabaseProvider, PublicClient
from .config import Settings, configure_logging
from .csv_io import export_participants_csv, export_staff_csv, parse_participant_csv, parse_staff_csv
from .exceptions import (
    AttendanceTrackerException,
    AuthenticationFailedException,
    AuthorizationException,
    ConfigurationException,
    DatabaseInitializationException,
    DataValidationException,
    InvalidStateTransitionException,
    ParticipantNotFoundException,
    StaffMemberNotFoundException,
)
from .loading import LoadState, StaffDashboardLoader
from .models import ALL_COMMITTEES, ALL_SCHOOLS, ParticipantFilters, SessionUser, StaffFilters, UserRole
from .repositories import DocumentRepository, RepositoryFactory
from .services import (
    AnalyticsService,
    AuthenticationService,
    LookupService,
    ParticipantService,
    SettingsService,
    StaffService,
)

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"

ERROR_STATUS_CODES = (
    (ParticipantNotFoundException, 404),
    (StaffMemberNotFoundException, 404),
    (AuthenticationFailedException, 401),
    (AuthorizationException, 403),
    (DataValidationException, 400),
    (InvalidStateTransitionException, 409),
    (DatabaseInitializationException, 503),
    (ConfigurationException, 503),
)


def _status_code_for(error: AttendanceTrackerException) -> int:
    for exception_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, exception_type):
            return status_code
    return 500


class AttendanceTrackerApp:
    """
    Main Flask application class for the MUN Attendance Tracker

    Database handles, repositories and services are created here, once,
    and shared by every request handler. Tests pass in-memory repositories
    and fake providers through the constructor.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        settings: Optional[Settings] = None,
        admin_provider: Optional[AdminDatabaseProvider] = None,
        public_client: Optional[PublicClient] = None,
        repository: Optional[DocumentRepository] = None,
        public_repository: Optional[DocumentRepository] = None,
        token_verifier: Optional[Callable[[str], Dict]] = None,
    ):
        """
        Initialize the attendance tracker application

        Args:
            config: Optional configuration overrides
            settings: Settings to use instead of reading the environment
            admin_provider: Admin database provider to use
            public_client: Public client to use
            repository: Privileged repository (defaults to Firestore)
            public_repository: Public read-only repository (defaults to Supabase)
            token_verifier: Replaces Firebase ID token verification
        """
        self.settings = (settings or Settings.from_env()).with_overrides(config)
        configure_logging(self.settings.log_level)

        self.app = Flask(__name__)
        self._configure_app()

        # Database handles: the single initialization point for the process
        self.admin_provider = admin_provider or AdminDatabaseProvider(
            self.settings.service_account_key,
            app_name=self.settings.firebase_app_name,
        )
        self.public_client = public_client or PublicClient(
            self.settings.supabase_url,
            self.settings.supabase_anon_key,
        )
        self.init_result = self.admin_provider.get_admin_db()
        if not self.init_result.ok:
            logger.error("Starting without the admin database: %s", self.init_result.error)

        # Repositories
        self.repository = repository or RepositoryFactory.create_firestore_repository(self.admin_provider)
        self.public_repository = public_repository or RepositoryFactory.create_supabase_repository(
            self.public_client
        )

        # Services
        self.auth_service = AuthenticationService(
            self.repository,
            provider=self.admin_provider,
            owner_uid=self.settings.owner_uid,
            token_verifier=token_verifier,
        )
        self.lookup_service = LookupService(self.repository)
        self.settings_service = SettingsService(self.repository)
        self.participant_service = ParticipantService(self.repository, self.lookup_service, self.settings_service)
        self.staff_service = StaffService(self.repository, self.lookup_service, self.settings_service)
        self.analytics_service = AnalyticsService(self.repository)

        public_lookups = LookupService(self.public_repository)
        self.public_participant_service = ParticipantService(
            self.public_repository, public_lookups, SettingsService(self.public_repository)
        )

        self._register_routes()
        self._register_error_handlers()

    def _configure_app(self) -> None:
        self.app.secret_key = self.settings.secret_key
        self.app.permanent_session_lifetime = self.settings.session_lifetime
        self.app.config['DEBUG'] = self.settings.debug
        self.app.config['TESTING'] = self.settings.testing
        self.app.config.update(self.settings.extra)

    def _register_routes(self) -> None:
        """Register all Flask routes"""
        # Pages
        self.app.add_url_rule("/", "home", self.home)
        self.app.add_url_rule("/about", "about", self.about)
        self.app.add_url_rule("/public", "public_board", self.public_board)
        self.app.add_url_rule("/staff", "staff_dashboard", self.staff_dashboard)
        self.app.add_url_rule("/auth/login", "login", self.login, methods=["GET", "POST"])
        self.app.add_url_rule("/auth/logout", "logout", self.logout, methods=["GET", "POST"])

        # Authenticated data endpoints
        self.app.add_url_rule("/api/staff", "api_staff", self.api_staff)
        self.app.add_url_rule("/api/participants", "api_participants", self.api_participants)
        self.app.add_url_rule("/api/participants/<participant_id>", "api_participant", self.api_participant)
        self.app.add_url_rule(
            "/api/participants/<participant_id>/status", "api_participant_status",
            self.api_participant_status, methods=["POST"],
        )
        self.app.add_url_rule(
            "/api/participants/<participant_id>/reset", "api_participant_reset",
            self.api_participant_reset, methods=["POST"],
        )
        self.app.add_url_rule(
            "/api/staff/<staff_id>/status", "api_staff_status", self.api_staff_status, methods=["POST"],
        )
        self.app.add_url_rule("/api/system-items", "api_system_items", self.api_system_items, methods=["POST"])
        self.app.add_url_rule("/api/analytics", "api_analytics", self.api_analytics)

        # CSV
        self.app.add_url_rule("/participants/export.csv", "export_participants", self.export_participants)
        self.app.add_url_rule("/staff/export.csv", "export_staff", self.export_staff)
        self.app.add_url_rule("/participants/import", "import_participants", self.import_participants, methods=["POST"])
        self.app.add_url_rule("/staff/import", "import_staff", self.import_staff, methods=["POST"])

        self.app.add_url_rule("/health", "health", self.health)

    def _register_error_handlers(self) -> None:
        """Register error handlers for tracker exceptions"""

        @self.app.errorhandler(AttendanceTrackerException)
        def handle_tracker_exception(e):
            status_code = _status_code_for(e)
            if status_code >= 500:
                logger.error("Request to %s failed: %s", request.path, e)
            if request.path.startswith("/api/"):
                return jsonify({"error": e.message, "error_code": e.error_code}), status_code
            if isinstance(e, AuthenticationFailedException):
                return redirect(url_for("login"))
            return render_template(
                "error.html",
                error_title="Application Error",
                error_message=e.message,
                current_user=self._current_user(),
            ), status_code

    # Session helpers

    def _current_user(self) -> Optional[SessionUser]:
        data = session.get(SESSION_USER_KEY)
        if not data:
            return None
        return SessionUser(uid=data["uid"], email=data.get("email"), role=UserRole(data["role"]))

    def _require_user(self) -> SessionUser:
        user = self._current_user()
        if user is None:
            raise AuthenticationFailedException()
        return user

    def _require_privileged(self) -> SessionUser:
        return self.auth_service.require_privileged(self._current_user())

    @staticmethod
    def _json_body() -> Dict:
        return request.get_json(silent=True) or {}

    # Pages

    def home(self):
        """
        Participant dashboard page

        Renders the school and committee filters; the participant list is
        fetched by the browser from ``/api/participants`` once signed in.
        """
        return render_template(
            "dashboard.html",
            current_user=self._current_user(),
            system_schools=[ALL_SCHOOLS] + self.lookup_service.get_system_schools(),
            system_committees=[ALL_COMMITTEES] + self.lookup_service.get_system_committees(),
        )

    def about(self):
        return render_template("about.html", current_user=self._current_user())

    def public_board(self):
        """Public attendance board, read through the anonymous public client"""
        filters = ParticipantFilters(
            school=request.args.get("school"),
            committee=request.args.get("committee"),
            status=request.args.get("status"),
            search_term=request.args.get("q", ""),
        )
        participants = self.public_participant_service.list_participants(filters)
        return render_template(
            "public.html",
            current_user=self._current_user(),
            participants=participants,
            filters=filters,
        )

    def staff_dashboard(self):
        """
        Staff dashboard page

        Only phase 1 runs here: the team names are fetched server-side and
        the roster starts empty. The browser loads the roster from
        ``/api/staff`` after its session is established.
        """
        loader = StaffDashboardLoader(self.lookup_service, self.staff_service)
        dashboard = loader.load_public()
        status_code = 503 if dashboard.state is LoadState.ERROR else 200
        return render_template(
            "staff.html",
            current_user=self._current_user(),
            initial_staff_members=dashboard.initial_staff_members,
            system_staff_teams=dashboard.system_staff_teams,
            dashboard=dashboard.to_dict(),
        ), status_code

    def login(self):
        """
        Exchange a Firebase ID token for a session

        GET renders the sign-in page; POST accepts ``id_token`` as form
        field or JSON and answers with a redirect or JSON respectively.
        """
        if request.method == "GET":
            return render_template(
                "login.html",
                error=None,
                firebase_config=self.settings.firebase_web_config,
            )

        wants_json = request.is_json
        id_token = (self._json_body() if wants_json else request.form).get("id_token", "")
        try:
            user = self.auth_service.verify_session(id_token.strip())
        except AuthenticationFailedException as e:
            logger.info("Login rejected: %s", e)
            if wants_json:
                return jsonify({"error": e.message, "error_code": e.error_code}), 401
            return render_template(
                "login.html",
                error="Sign-in failed. Please try again.",
                firebase_config=self.settings.firebase_web_config,
            ), 401

        session.permanent = True
        session[SESSION_USER_KEY] = user.to_dict()
        logger.info("User %s signed in as %s", user.uid, user.role.value)

        if wants_json:
            return jsonify({"user": user.to_dict()})
        return redirect(url_for("home"))

    def logout(self):
        session.pop(SESSION_USER_KEY, None)
        if request.method == "POST" and request.is_json:
            return jsonify({"success": True})
        return redirect(url_for("login"))

    # Authenticated data endpoints

    def api_staff(self):
        """
        Staff roster for the signed-in user

        Runs both loading phases and answers with the loader's snapshot.
        """
        loader = StaffDashboardLoader(self.lookup_service, self.staff_service)
        dashboard = loader.load_public()
        if dashboard.state is LoadState.ERROR:
            return jsonify(dashboard.to_dict()), 503

        if loader.authenticate(self._current_user()) is LoadState.ERROR:
            return jsonify(loader.snapshot().to_dict()), 401

        filters = StaffFilters(
            team=request.args.get("team"),
            status=request.args.get("status"),
            search_term=request.args.get("q", ""),
        )
        # raises DataValidationException (400) for an unknown status
        filters.equality_filters()

        dashboard = loader.load_privileged(filters)
        status_code = 200 if dashboard.state is LoadState.READY else 500
        return jsonify(dashboard.to_dict()), status_code

    def api_participants(self):
        self._require_user()
        participants = self.participant_service.list_participants(ParticipantFilters(
            school=request.args.get("school"),
            committee=request.args.get("committee"),
            status=request.args.get("status"),
            search_term=request.args.get("q", ""),
        ))
        return jsonify({"participants": [p.to_dict() for p in participants]})

    def api_participant(self, participant_id: str):
        self._require_user()
        participant = self.participant_service.get_participant_or_raise(participant_id)
        return jsonify(participant.to_dict())

    def api_participant_status(self, participant_id: str):
        self._require_user()
        body = self._json_body()
        result = self.participant_service.quick_set_status(
            participant_id,
            body.get("status"),
            is_check_in=bool(body.get("check_in", False)),
        )
        return self._action_response(result)

    def api_participant_reset(self, participant_id: str):
        self._require_user()
        return self._action_response(self.participant_service.reset_attendance(participant_id))

    def api_staff_status(self, staff_id: str):
        self._require_user()
        result = self.staff_service.quick_set_status(staff_id, self._json_body().get("status"))
        return self._action_response(result)

    def api_system_items(self):
        self._require_privileged()
        body = self._json_body()
        result = self.lookup_service.add_system_items(
            new_schools=body.get("schools", []),
            new_committees=body.get("committees", []),
            new_teams=body.get("teams", []),
        )
        return self._action_response(result)

    def api_analytics(self):
        self._require_privileged()
        return jsonify(self.analytics_service.get_analytics().to_dict())

    @staticmethod
    def _action_response(result):
        if result.success:
            return jsonify(result.to_dict())
        status_code = {"missing_id": 400, "invalid_status": 400, "not_found": 404,
                       "permission_denied": 403, "db_unavailable": 503}.get(result.error_type, 500)
        return jsonify(result.to_dict()), status_code

    # CSV

    def export_participants(self):
        self._require_user()
        participants = self.participant_service.list_participants()
        return Response(
            export_participants_csv(participants),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=attendance_export.csv"},
        )

    def export_staff(self):
        self._require_user()
        staff = self.staff_service.list_staff()
        return Response(
            export_staff_csv(staff),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=staff_export.csv"},
        )

    @staticmethod
    def _uploaded_text() -> str:
        upload = request.files.get("file")
        raw = upload.read() if upload is not None else request.get_data()
        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise DataValidationException("file", f"CSV file must be UTF-8 encoded ({e.reason} at byte {e.start})")

    @staticmethod
    def _add_new_lookups() -> bool:
        return request.args.get("add_new_lookups", "").lower() in {"1", "true", "yes"}

    def import_participants(self):
        self._require_privileged()
        rows, skipped_lines = parse_participant_csv(self._uploaded_text())
        validation = self.participant_service.validate_import(rows)
        result = self.participant_service.import_participants(rows, add_new_lookups=self._add_new_lookups())
        payload = result.to_dict()
        payload.update({"skipped_lines": skipped_lines, "validation": validation.to_dict()})
        return jsonify(payload), (200 if result.success else 500)

    def import_staff(self):
        self._require_privileged()
        rows, skipped_lines = parse_staff_csv(self._uploaded_text())
        validation = self.staff_service.validate_import(rows)
        result = self.staff_service.import_staff(rows, add_new_lookups=self._add_new_lookups())
        payload = result.to_dict()
        payload.update({"skipped_lines": skipped_lines, "validation": validation.to_dict()})
        return jsonify(payload), (200 if result.success else 500)

    def health(self):
        result = self.init_result
        return jsonify({
            "admin_db": "ok" if result.ok else "error",
            "admin_db_error": result.error,
            "public_client_configured": self.public_client.configured,
        }), (200 if result.ok else 503)

    def run(self, host: str = '127.0.0.1', port: int = 5000, debug: bool = None) -> None:
        """
        Run the Flask development server

        Args:
            host: Host address to bind to
            port: Port number to listen on
            debug: Debug mode (overrides settings if provided)
        """
        if debug is not None:
            self.app.config['DEBUG'] = debug

        self.app.run(host=host, port=port, debug=self.app.config['DEBUG'])


def create_app(config: Optional[dict] = None, **kwargs) -> AttendanceTrackerApp:
    """
    Factory function to create and configure the application

    Args:
        config: Optional configuration overrides
        **kwargs: Injected handles, repositories or settings

    Returns:
        Configured AttendanceTrackerApp instance
    """
    return AttendanceTrackerApp(config, **kwargs)


def create_development_app() -> AttendanceTrackerApp:
    return create_app({'DEBUG': True, 'LOG_LEVEL': 'DEBUG'})


def create_production_app() -> AttendanceTrackerApp:
    return create_app({'DEBUG': False})


if __name__ == "__main__":
    create_development_app().run()
