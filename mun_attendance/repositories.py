"""
Data Repository Classes for the MUN Attendance Tracker

This module implements the Repository pattern over document collections.
Services talk to a ``DocumentRepository``; the concrete class decides
whether documents live in Firestore (privileged admin handle), in Supabase
(anonymous public client, read-only) or in memory.
"""

import copy
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

from .clients import AdminDatabaseProvider, PublicClient
from .exceptions import AttendanceTrackerException, DataAccessException

logger = logging.getLogger(__name__)

PARTICIPANTS_COLLECTION = "participants"
STAFF_MEMBERS_COLLECTION = "staff_members"
SYSTEM_SCHOOLS_COLLECTION = "system_schools"
SYSTEM_COMMITTEES_COLLECTION = "system_committees"
SYSTEM_STAFF_TEAMS_COLLECTION = "system_staff_teams"
SYSTEM_CONFIG_COLLECTION = "system_config"
USERS_COLLECTION = "users"
APP_SETTINGS_DOC_ID = "main_settings"

Document = Tuple[str, Dict]


class DocumentRepository(ABC):
    """
    Abstract base class for document repositories

    Documents are ``(id, fields)`` pairs grouped into named collections.
    """

    @abstractmethod
    def list_documents(
        self,
        collection: str,
        filters: Optional[Dict] = None,
        order_by: Optional[str] = None,
    ) -> List[Document]:
        """
        List documents, optionally filtered by field equality and ordered

        Raises:
            DataAccessException: If the read fails
        """
        pass

    @abstractmethod
    def get_document(self, collection: str, document_id: str) -> Optional[Dict]:
        """
        Get one document's fields, or None if it doesn't exist

        Raises:
            DataAccessException: If the read fails
        """
        pass

    @abstractmethod
    def update_document(self, collection: str, document_id: str, updates: Dict) -> None:
        """
        Merge ``updates`` into an existing document

        Raises:
            DataAccessException: If the write fails or the document is missing
        """
        pass

    @abstractmethod
    def add_documents(self, collection: str, documents: Iterable[Dict]) -> List[str]:
        """
        Add new documents in one batch and return their generated ids

        Raises:
            DataAccessException: If the write fails
        """
        pass

    def count(self, collection: str) -> int:
        return len(self.list_documents(collection))


def _reason(error: google_exceptions.GoogleAPICallError) -> str:
    if isinstance(error, google_exceptions.PermissionDenied):
        return "permission_denied"
    if isinstance(error, google_exceptions.FailedPrecondition):
        return "failed_precondition"
    return "generic_error"


def _describe_google_error(error: google_exceptions.GoogleAPICallError) -> str:
    details = f"Firebase code: {error.code.name if error.code else 'Unknown'}."
    if isinstance(error, google_exceptions.FailedPrecondition) or "requires an index" in str(error):
        details += " A Firestore index is required; the server log has a link to create it."
    elif isinstance(error, google_exceptions.PermissionDenied):
        details += " Permission denied. Check Firestore rules."
    return f"{details} {error.message}"


class FirestoreRepository(DocumentRepository):
    """
    Firestore-backed repository using the privileged admin handle

    The handle is resolved through the provider on every call, so a failed
    initialization surfaces as ``DatabaseInitializationException`` at the
    point of use rather than at import time.
    """

    def __init__(self, provider: AdminDatabaseProvider):
        self.provider = provider

    @property
    def db(self):
        return self.provider.get_admin_db().unwrap().client

    def list_documents(self, collection, filters=None, order_by=None):
        query = self.db.collection(collection)
        for field_name, value in (filters or {}).items():
            query = query.where(filter=FieldFilter(field_name, "==", value))
        if order_by:
            query = query.order_by(order_by)

        try:
            return [(snap.id, snap.to_dict() or {}) for snap in query.stream()]
        except google_exceptions.GoogleAPICallError as e:
            logger.error("Firestore read of '%s' failed (filters=%s): %s", collection, filters, e)
            raise DataAccessException("read", _describe_google_error(e), _reason(e))

    def get_document(self, collection, document_id):
        try:
            snap = self.db.collection(collection).document(document_id).get()
        except google_exceptions.GoogleAPICallError as e:
            logger.error("Firestore read of '%s/%s' failed: %s", collection, document_id, e)
            raise DataAccessException("read", _describe_google_error(e), _reason(e))
        return snap.to_dict() if snap.exists else None

    def update_document(self, collection, document_id, updates):
        try:
            self.db.collection(collection).document(document_id).update(updates)
        except google_exceptions.NotFound:
            raise DataAccessException("write", f"'{collection}/{document_id}' does not exist")
        except google_exceptions.GoogleAPICallError as e:
            logger.error("Firestore update of '%s/%s' failed: %s", collection, document_id, e)
            raise DataAccessException("write", _describe_google_error(e), _reason(e))

    def add_documents(self, collection, documents):
        collection_ref = self.db.collection(collection)
        batch = self.db.batch()
        ids = []
        for data in documents:
            doc_ref = collection_ref.document()
            batch.set(doc_ref, data)
            ids.append(doc_ref.id)

        if not ids:
            return ids
        try:
            batch.commit()
        except google_exceptions.GoogleAPICallError as e:
            logger.error("Firestore batch write to '%s' failed: %s", collection, e)
            raise DataAccessException("write", _describe_google_error(e), _reason(e))
        return ids


class SupabaseRepository(DocumentRepository):
    """
    Read-only repository over the anonymous Supabase client

    Rows are expected to carry an ``id`` column. Writes are refused; the
    public client never holds privileges.
    """

    def __init__(self, public_client: PublicClient):
        self.public_client = public_client

    def list_documents(self, collection, filters=None, order_by=None):
        try:
            query = self.public_client.client.table(collection).select("*")
            for field_name, value in (filters or {}).items():
                query = query.eq(field_name, value)
            if order_by:
                query = query.order(order_by)
            response = query.execute()
        except AttendanceTrackerException:
            raise
        except Exception as e:
            logger.error("Supabase read of '%s' failed: %s", collection, e)
            raise DataAccessException("read", f"Supabase query on '{collection}' failed: {e}")

        return [(str(row.get("id", "")), row) for row in response.data or []]

    def get_document(self, collection, document_id):
        try:
            response = (
                self.public_client.client.table(collection)
                .select("*")
                .eq("id", document_id)
                .limit(1)
                .execute()
            )
        except AttendanceTrackerException:
            raise
        except Exception as e:
            logger.error("Supabase read of '%s/%s' failed: %s", collection, document_id, e)
            raise DataAccessException("read", f"Supabase query on '{collection}' failed: {e}")

        rows = response.data or []
        return rows[0] if rows else None

    def update_document(self, collection, document_id, updates):
        raise DataAccessException("write", "the public client is read-only")

    def add_documents(self, collection, documents):
        raise DataAccessException("write", "the public client is read-only")


class InMemoryRepository(DocumentRepository):
    """
    In-memory repository implementation for testing

    This class provides a simple in-memory storage mechanism,
    useful for unit testing and development.
    """

    def __init__(self, initial_data: Optional[Dict[str, Dict[str, Dict]]] = None):
        """
        Initialize in-memory repository

        Args:
            initial_data: Optional ``{collection: {id: fields}}`` mapping
        """
        self._data: Dict[str, Dict[str, Dict]] = copy.deepcopy(initial_data or {})
        self._ids = itertools.count(1)

    def list_documents(self, collection, filters=None, order_by=None):
        documents = [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._data.get(collection, {}).items()
            if all(data.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            documents.sort(key=lambda doc: (doc[1].get(order_by) is None, doc[1].get(order_by) or ""))
        return documents

    def get_document(self, collection, document_id):
        data = self._data.get(collection, {}).get(document_id)
        return copy.deepcopy(data) if data is not None else None

    def update_document(self, collection, document_id, updates):
        documents = self._data.get(collection, {})
        if document_id not in documents:
            raise DataAccessException("write", f"'{collection}/{document_id}' does not exist")
        documents[document_id].update(copy.deepcopy(updates))

    def add_documents(self, collection, documents):
        ids = []
        target = self._data.setdefault(collection, {})
        for data in documents:
            doc_id = f"{collection}-{next(self._ids)}"
            target[doc_id] = copy.deepcopy(data)
            ids.append(doc_id)
        return ids

    def clear(self) -> None:
        """Clear all data from memory"""
        self._data.clear()


class RepositoryFactory:
    """
    Factory class for creating repository instances

    This class provides a centralized way to create different
    types of repositories based on configuration.
    """

    @staticmethod
    def create_firestore_repository(provider: AdminDatabaseProvider) -> FirestoreRepository:
        return FirestoreRepository(provider)

    @staticmethod
    def create_supabase_repository(public_client: PublicClient) -> SupabaseRepository:
        return SupabaseRepository(public_client)

    @staticmethod
    def create_memory_repository(initial_data: Optional[Dict] = None) -> InMemoryRepository:
        return InMemoryRepository(initial_data)

    @staticmethod
    def create_repository(repo_type: str, **kwargs) -> DocumentRepository:
        """
        Create a repository based on type

        Args:
            repo_type: Type of repository ('firestore', 'supabase' or 'memory')
            **kwargs: Additional arguments for repository creation

        Returns:
            DocumentRepository instance

        Raises:
            ValueError: If repository type is not supported
        """
        if repo_type.lower() == 'firestore':
            if 'provider' not in kwargs:
                raise ValueError("provider is required for Firestore repository")
            return RepositoryFactory.create_firestore_repository(kwargs['provider'])

        elif repo_type.lower() == 'supabase':
            if 'public_client' not in kwargs:
                raise ValueError("public_client is required for Supabase repository")
            return RepositoryFactory.create_supabase_repository(kwargs['public_client'])

        elif repo_type.lower() == 'memory':
            return RepositoryFactory.create_memory_repository(kwargs.get('initial_data'))

        else:
            raise ValueError(f"Unsupported repository type: {repo_type}")
