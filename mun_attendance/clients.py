"""
Database Client Wrappers

Two handles are built here, once, by the application factory:

- ``AdminDatabaseProvider`` owns the privileged Firebase Admin app and its
  Firestore client. Initialization returns an ``InitResult`` instead of
  raising, and runs at most once per provider.
- ``PublicClient`` owns the anonymous Supabase client. Construction never
  fails; missing configuration surfaces on first use.
"""

import base64
import binascii
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import firebase_admin
from firebase_admin import auth, credentials, firestore
from supabase import Client, create_client

from .config import SERVICE_ACCOUNT_ENV
from .exceptions import (
    ConfigurationException,
    DataAccessException,
    DatabaseInitializationException,
)

logger = logging.getLogger(__name__)


@dataclass
class AdminDatabase:
    """Privileged handle: the Firebase app plus its Firestore client"""
    app: Any
    client: Any

    def verify_id_token(self, id_token: str) -> Dict:
        """Verify a Firebase ID token and return its decoded claims"""
        return auth.verify_id_token(id_token, app=self.app)


@dataclass(frozen=True)
class InitResult:
    """
    Outcome of admin database initialization

    Exactly one of ``handle`` and ``error`` is set.
    """
    handle: Optional[AdminDatabase] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.handle is not None

    def unwrap(self) -> AdminDatabase:
        """
        Return the handle or raise

        Raises:
            DatabaseInitializationException: If initialization failed
        """
        if self.handle is None:
            raise DatabaseInitializationException(self.error or "not initialized")
        return self.handle


def parse_service_account_key(raw_key: Optional[str]) -> Dict:
    """
    Decode the service-account credential from its environment value

    The value is the credential JSON document, either as-is or base64
    encoded. Escaped newlines in ``private_key`` are restored.

    Args:
        raw_key: Raw environment value

    Returns:
        Credential dictionary

    Raises:
        ConfigurationException: If the value is missing or cannot be decoded
    """
    if not raw_key or not raw_key.strip():
        raise ConfigurationException(SERVICE_ACCOUNT_ENV, "environment variable not set")

    text = raw_key.strip()
    if not text.startswith(("{", "[")):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationException(SERVICE_ACCOUNT_ENV, f"not valid base64: {e}")

    try:
        service_account = json.loads(text, strict=False)
    except json.JSONDecodeError as e:
        raise ConfigurationException(SERVICE_ACCOUNT_ENV, f"not valid JSON: {e}")

    if not isinstance(service_account, dict):
        raise ConfigurationException(SERVICE_ACCOUNT_ENV, "credential must be a JSON object")

    private_key = service_account.get("private_key")
    if isinstance(private_key, str):
        service_account["private_key"] = private_key.replace("\\n", "\n")
    return service_account


def initialize_firebase(service_account: Dict, app_name: str) -> AdminDatabase:
    """Initialize (or reuse) a named Firebase Admin app and open Firestore"""
    try:
        app = firebase_admin.get_app(app_name)
    except ValueError:
        cred = credentials.Certificate(service_account)
        app = firebase_admin.initialize_app(cred, name=app_name)
    return AdminDatabase(app=app, client=firestore.client(app))


class AdminDatabaseProvider:
    """
    Single initialization point for the admin database handle

    The provider is constructed by the application factory and handed to
    whatever needs the privileged handle. The first ``get_admin_db`` call
    parses the credential and initializes the SDK under a lock; later calls
    return the same cached result.
    """

    def __init__(
        self,
        service_account_key: Optional[str],
        app_name: str = "mun-attendance",
        initializer: Callable[[Dict, str], AdminDatabase] = initialize_firebase,
    ):
        """
        Initialize provider

        Args:
            service_account_key: Raw credential value from the environment
            app_name: Firebase app name, so several providers can coexist
            initializer: Builds the handle from a parsed credential
        """
        self._service_account_key = service_account_key
        self._app_name = app_name
        self._initializer = initializer
        self._lock = threading.Lock()
        self._result: Optional[InitResult] = None

    def get_admin_db(self) -> InitResult:
        """
        Return the admin database initialization result

        Never raises. A bad credential or SDK error is logged and returned
        as a failure result, and is not retried.

        Returns:
            InitResult carrying the handle or the error message
        """
        if self._result is not None:
            return self._result

        with self._lock:
            if self._result is None:
                self._result = self._initialize()
        return self._result

    @property
    def initialized(self) -> bool:
        return self._result is not None

    def _initialize(self) -> InitResult:
        try:
            service_account = parse_service_account_key(self._service_account_key)
            handle = self._initializer(service_account, self._app_name)
        except Exception as e:
            logger.error("Firebase admin initialization error: %s", e)
            return InitResult(error=str(e))

        logger.info("Firebase admin app '%s' initialized", self._app_name)
        return InitResult(handle=handle)


class PublicClient:
    """
    Anonymous Supabase client

    The SDK client is created on first use. Missing configuration is only
    warned about at construction time.
    """

    def __init__(
        self,
        url: Optional[str],
        anon_key: Optional[str],
        factory: Callable[[str, str], Client] = create_client,
    ):
        self.url = url or ""
        self.anon_key = anon_key or ""
        self._factory = factory
        self._client: Optional[Client] = None

        if not self.configured:
            logger.warning(
                "Supabase URL or Anon Key is missing. Set NEXT_PUBLIC_SUPABASE_URL and "
                "NEXT_PUBLIC_SUPABASE_ANON_KEY (or NEXT_PUBLIC_SUPABASE_PUBLISHABLE_DEFAULT_KEY)."
            )

    @property
    def configured(self) -> bool:
        return bool(self.url and self.anon_key)

    @property
    def client(self) -> Client:
        """
        Return the SDK client, creating it on first use

        Raises:
            ConfigurationException: If the URL or key is missing
            DataAccessException: If the SDK rejects the configuration
        """
        if self._client is None:
            if not self.configured:
                raise ConfigurationException("supabase", "URL and anon key are required")
            try:
                self._client = self._factory(self.url, self.anon_key)
            except Exception as e:
                raise DataAccessException("connect", f"Supabase client creation failed: {e}")
        return self._client
