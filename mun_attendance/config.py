"""
Configuration for the MUN Attendance Tracker

Settings are read from the environment once, in the application factory.
A ``.env`` file in the working directory is loaded first without
overriding variables that are already set.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Dict, Optional

from dotenv import load_dotenv


SERVICE_ACCOUNT_ENV = "FIREBASE_SERVICE_ACCOUNT_KEY"
SUPABASE_URL_ENV = "NEXT_PUBLIC_SUPABASE_URL"
SUPABASE_ANON_KEY_ENV = "NEXT_PUBLIC_SUPABASE_ANON_KEY"
SUPABASE_PUBLISHABLE_KEY_ENV = "NEXT_PUBLIC_SUPABASE_PUBLISHABLE_DEFAULT_KEY"

# Browser-side Firebase Auth configuration, keyed by the Firebase JS SDK option name
FIREBASE_WEB_CONFIG_ENV = {
    "apiKey": "NEXT_PUBLIC_FIREBASE_API_KEY",
    "authDomain": "NEXT_PUBLIC_FIREBASE_AUTH_DOMAIN",
    "projectId": "NEXT_PUBLIC_FIREBASE_PROJECT_ID",
    "appId": "NEXT_PUBLIC_FIREBASE_APP_ID",
}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """
    Application settings

    Attributes mirror the environment variables they come from. Overrides
    passed to ``create_app`` are applied with ``with_overrides``.
    """
    secret_key: str = "dev-secret-key-change-in-production"
    debug: bool = False
    testing: bool = False
    session_lifetime: timedelta = timedelta(days=1)
    service_account_key: Optional[str] = None
    supabase_url: str = ""
    supabase_anon_key: str = ""
    owner_uid: Optional[str] = None
    log_level: str = "INFO"
    firebase_app_name: str = "mun-attendance"
    firebase_web_config: Dict = field(default_factory=dict)
    extra: Dict = field(default_factory=dict)

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> 'Settings':
        """
        Build settings from environment variables

        Args:
            load_env_file: Load a ``.env`` file before reading the environment

        Returns:
            Settings instance
        """
        if load_env_file:
            load_dotenv(override=False)

        env = os.environ.get("APP_ENV", "development").lower()
        production = env in {"prod", "production"}

        return cls(
            secret_key=os.environ.get("SECRET_KEY") or cls.secret_key,
            debug=_env_flag("DEBUG", not production),
            testing=env in {"test", "testing"},
            service_account_key=os.environ.get(SERVICE_ACCOUNT_ENV),
            supabase_url=os.environ.get(SUPABASE_URL_ENV, ""),
            supabase_anon_key=(
                os.environ.get(SUPABASE_ANON_KEY_ENV)
                or os.environ.get(SUPABASE_PUBLISHABLE_KEY_ENV)
                or ""
            ),
            owner_uid=os.environ.get("OWNER_UID"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            firebase_web_config={
                option: os.environ[env_name]
                for option, env_name in FIREBASE_WEB_CONFIG_ENV.items()
                if os.environ.get(env_name)
            },
        )

    def with_overrides(self, overrides: Optional[Dict]) -> 'Settings':
        """
        Apply a dictionary of overrides

        Keys may be attribute names (``secret_key``) or Flask-style upper
        case names (``SECRET_KEY``). Unknown keys are kept in ``extra`` and
        copied into the Flask config.
        """
        if not overrides:
            return self

        known = {}
        extra = dict(self.extra)
        for key, value in overrides.items():
            name = key.lower()
            if name == "permanent_session_lifetime":
                name = "session_lifetime"
            if name in self.__dataclass_fields__ and name != "extra":
                known[name] = value
            else:
                extra[key] = value
        return replace(self, extra=extra, **known)


def configure_logging(level: str) -> None:
    """Configure root logging once for the process"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
