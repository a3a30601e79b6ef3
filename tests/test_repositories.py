from types import SimpleNamespace

import pytest
from google.api_core import exceptions as google_exceptions

from mun_attendance.clients import AdminDatabase, InitResult, PublicClient
from mun_attendance.exceptions import ConfigurationException, DataAccessException, DatabaseInitializationException
from mun_attendance.repositories import FirestoreRepository, RepositoryFactory, SupabaseRepository


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data
        self.exists = data is not None

    def to_dict(self):
        return self._data


class FakeDocumentRef:
    def __init__(self, db, collection, doc_id):
        self.db = db
        self.collection = collection
        self.id = doc_id

    def get(self):
        if self.db.error:
            raise self.db.error
        return FakeSnapshot(self.id, self.db.data.get(self.collection, {}).get(self.id))

    def update(self, updates):
        if self.db.error:
            raise self.db.error
        documents = self.db.data.get(self.collection, {})
        if self.id not in documents:
            raise google_exceptions.NotFound(f"No document to update: {self.id}")
        documents[self.id].update(updates)


class FakeQuery:
    def __init__(self, db, collection):
        self.db = db
        self.collection = collection
        self.filters = []
        self.order = None

    def where(self, filter=None):
        self.filters.append(filter)
        return self

    def order_by(self, field_path):
        self.order = field_path
        return self

    def document(self, doc_id=None):
        if doc_id is None:
            self.db.generated += 1
            doc_id = f"auto-{self.db.generated}"
        return FakeDocumentRef(self.db, self.collection, doc_id)

    def stream(self):
        self.db.queries.append(self)
        if self.db.error:
            raise self.db.error
        rows = self.db.data.get(self.collection, {}).items()
        for f in self.filters:
            rows = [(i, d) for i, d in rows if d.get(f.field_path) == f.value]
        rows = sorted(rows, key=lambda row: row[1].get(self.order, "")) if self.order else list(rows)
        return [FakeSnapshot(doc_id, data) for doc_id, data in rows]


class FakeBatch:
    def __init__(self, db):
        self.db = db
        self.writes = []

    def set(self, doc_ref, data):
        self.writes.append((doc_ref, data))

    def commit(self):
        self.db.commits += 1
        if self.db.error:
            raise self.db.error
        for doc_ref, data in self.writes:
            self.db.data.setdefault(doc_ref.collection, {})[doc_ref.id] = data


class FakeFirestore:
    def __init__(self, data=None):
        self.data = data or {}
        self.error = None
        self.queries = []
        self.generated = 0
        self.commits = 0

    def collection(self, name):
        return FakeQuery(self, name)

    def batch(self):
        return FakeBatch(self)


class FakeProvider:
    def __init__(self, result):
        self.result = result

    def get_admin_db(self):
        return self.result


@pytest.fixture
def firestore_db():
    return FakeFirestore({
        "participants": {
            "p1": {"name": "Charlie Day", "committee": "UNSC"},
            "p2": {"name": "Alice Moreau", "committee": "UNHRC"},
            "p3": {"name": "Bob Okafor", "committee": "UNHRC"},
        },
    })


@pytest.fixture
def firestore_repository(firestore_db):
    handle = AdminDatabase(app=object(), client=firestore_db)
    return FirestoreRepository(FakeProvider(InitResult(handle=handle)))


def test_firestore_list_builds_filtered_ordered_query(firestore_repository, firestore_db):
    documents = firestore_repository.list_documents("participants", filters={"committee": "UNHRC"}, order_by="name")

    assert [doc_id for doc_id, _ in documents] == ["p2", "p3"]
    query = firestore_db.queries[-1]
    assert [(f.field_path, f.op_string, f.value) for f in query.filters] == [("committee", "==", "UNHRC")]
    assert query.order == "name"


def test_firestore_get_document(firestore_repository):
    assert firestore_repository.get_document("participants", "p1")["name"] == "Charlie Day"
    assert firestore_repository.get_document("participants", "missing") is None


@pytest.mark.parametrize("error, reason", [
    (google_exceptions.PermissionDenied("Missing or insufficient permissions."), "permission_denied"),
    (google_exceptions.FailedPrecondition("The query requires an index."), "failed_precondition"),
    (google_exceptions.DeadlineExceeded("Deadline exceeded"), "generic_error"),
])
def test_firestore_read_errors_carry_reason(firestore_repository, firestore_db, error, reason):
    firestore_db.error = error

    with pytest.raises(DataAccessException) as excinfo:
        firestore_repository.list_documents("participants")

    assert excinfo.value.reason == reason


def test_firestore_index_error_mentions_index(firestore_repository, firestore_db):
    firestore_db.error = google_exceptions.FailedPrecondition("The query requires an index.")

    with pytest.raises(DataAccessException) as excinfo:
        firestore_repository.get_document("participants", "p1")

    assert "index is required" in excinfo.value.message


def test_firestore_update(firestore_repository, firestore_db):
    firestore_repository.update_document("participants", "p1", {"status": "Present"})

    assert firestore_db.data["participants"]["p1"]["status"] == "Present"


def test_firestore_update_missing_document(firestore_repository):
    with pytest.raises(DataAccessException) as excinfo:
        firestore_repository.update_document("participants", "missing", {"status": "Present"})

    assert "does not exist" in excinfo.value.message
    assert excinfo.value.reason is None


def test_firestore_update_permission_denied(firestore_repository, firestore_db):
    firestore_db.error = google_exceptions.PermissionDenied("Missing or insufficient permissions.")

    with pytest.raises(DataAccessException) as excinfo:
        firestore_repository.update_document("participants", "p1", {"status": "Present"})

    assert excinfo.value.reason == "permission_denied"


def test_firestore_add_documents_commits_one_batch(firestore_repository, firestore_db):
    ids = firestore_repository.add_documents("system_schools", [{"name": "Oak"}, {"name": "Elm"}])

    assert ids == ["auto-1", "auto-2"]
    assert firestore_db.commits == 1
    assert firestore_db.data["system_schools"]["auto-2"] == {"name": "Elm"}


def test_firestore_add_nothing_skips_commit(firestore_repository, firestore_db):
    assert firestore_repository.add_documents("system_schools", []) == []
    assert firestore_db.commits == 0


def test_firestore_without_admin_db_raises_at_use():
    repository = FirestoreRepository(FakeProvider(InitResult(error="bad credential")))

    with pytest.raises(DatabaseInitializationException):
        repository.list_documents("participants")


class FakeSupabaseQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.calls = []

    def select(self, columns):
        self.calls.append(("select", columns))
        return self

    def eq(self, column, value):
        self.calls.append(("eq", column, value))
        return self

    def order(self, column):
        self.calls.append(("order", column))
        return self

    def limit(self, count):
        self.calls.append(("limit", count))
        return self

    def execute(self):
        self.client.queries.append(self)
        if self.client.error:
            raise self.client.error
        rows = self.client.rows.get(self.table, [])
        for call in self.calls:
            if call[0] == "eq":
                rows = [row for row in rows if row.get(call[1]) == call[2]]
        return SimpleNamespace(data=rows)


class FakeSupabase:
    def __init__(self, rows):
        self.rows = rows
        self.error = None
        self.queries = []

    def table(self, name):
        return FakeSupabaseQuery(self, name)


@pytest.fixture
def supabase():
    return FakeSupabase({"participants": [
        {"id": 2, "name": "Alice Moreau", "committee": "UNHRC"},
        {"id": 3, "name": "Bob Okafor", "committee": "UNHRC"},
        {"id": 1, "name": "Charlie Day", "committee": "UNSC"},
    ]})


@pytest.fixture
def supabase_repository(supabase):
    public_client = PublicClient("https://example.supabase.co", "anon-key", factory=lambda url, key: supabase)
    return SupabaseRepository(public_client)


def test_supabase_list_chains_filters_and_order(supabase_repository, supabase):
    documents = supabase_repository.list_documents("participants", filters={"committee": "UNHRC"}, order_by="name")

    assert [doc_id for doc_id, _ in documents] == ["2", "3"]
    assert supabase.queries[-1].calls == [("select", "*"), ("eq", "committee", "UNHRC"), ("order", "name")]


def test_supabase_get_document(supabase_repository, supabase):
    assert supabase_repository.get_document("participants", "1") is None
    supabase.rows["participants"][2]["id"] = "1"

    assert supabase_repository.get_document("participants", "1")["name"] == "Charlie Day"
    assert ("limit", 1) in supabase.queries[-1].calls


def test_supabase_errors_become_data_access_errors(supabase_repository, supabase):
    supabase.error = RuntimeError("JWT expired")

    with pytest.raises(DataAccessException) as excinfo:
        supabase_repository.list_documents("participants")

    assert "JWT expired" in excinfo.value.message


def test_supabase_repository_is_read_only(supabase_repository):
    with pytest.raises(DataAccessException):
        supabase_repository.update_document("participants", "1", {"status": "Present"})
    with pytest.raises(DataAccessException):
        supabase_repository.add_documents("participants", [{"name": "Zed"}])


def test_unconfigured_supabase_fails_with_configuration_error():
    repository = RepositoryFactory.create_repository("supabase", public_client=PublicClient("", ""))

    with pytest.raises(ConfigurationException):
        repository.list_documents("participants")


def test_factory_rejects_unknown_type():
    with pytest.raises(ValueError):
        RepositoryFactory.create_repository("sheets")
