"""Tests for the REST repository adapter and its retry behaviour.

The HTTP layer is replaced with a mocked ``requests.Session`` so each test
controls the status codes and payloads the adapter sees.
"""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

from recordmigrate.config.models import RepositoryConfig
from recordmigrate.exceptions import (
    AuthenticationError,
    ConfigError,
    ObjectNotFoundError,
    RepositoryConnectionError,
    RepositoryOperationFailed,
)
from recordmigrate.repository.base import AttributeType, RepositoryObject
from recordmigrate.repository.query import ChangeType, Eq, Query
from recordmigrate.repository.rest import JSON_TYPE, RestRepository

BASE_URL = "https://dms.example.com/dctm-rest/repositories/edms"


def response(status_code: int = 200, payload: dict | None = None) -> Mock:
    mock = Mock(status_code=status_code)
    mock.content = b"{}" if payload is not None else b""
    mock.json.return_value = payload if payload is not None else {}
    mock.text = ""
    return mock


def dql_page(rows: list[dict], has_next: bool = False) -> Mock:
    links = [{"rel": "next", "href": "..."}] if has_next else []
    return response(
        payload={"entries": [{"content": {"properties": row}} for row in rows], "links": links}
    )


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip retry back-off sleeps."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


@pytest.fixture
def http() -> Mock:
    """Mocked requests session used by every RestSession.

    Returns:
        Mock: The session instance; set ``request.side_effect`` per test.
    """
    with patch("recordmigrate.repository.rest.requests.Session") as session_class:
        yield session_class.return_value


@pytest.fixture
def repository() -> RestRepository:
    """REST repository factory for a test server.

    Returns:
        RestRepository: Factory with basic-auth credentials.
    """
    return RestRepository(
        RepositoryConfig(
            url="https://dms.example.com/dctm-rest",
            repository="edms",
            username="migrator",
            password="secret",
            timeout=30,
        )
    )


class TestRestSession:
    """Tests for session setup and HTTP error mapping."""

    def test_requires_url_and_repository(self) -> None:
        """Test that an unconfigured repository cannot be built."""
        with pytest.raises(ConfigError, match="url and repository name are required"):
            RestRepository(RepositoryConfig())

    def test_connect_authenticates(self, repository: RestRepository, http: Mock) -> None:
        """Test that connect opens a session and probes the repository."""
        http.request.return_value = response(payload={"name": "edms"})

        session = repository.connect()

        assert session.is_connected()
        assert http.auth == ("migrator", "secret")
        assert http.request.call_args.args == ("GET", BASE_URL)
        assert http.request.call_args.kwargs["timeout"] == 30

        session.disconnect()
        assert not session.is_connected()
        http.close.assert_called_once()

    def test_rejected_credentials_are_not_retried(self, repository: RestRepository, http: Mock) -> None:
        """Test that an authentication failure is raised on the first attempt."""
        http.request.return_value = response(401)

        with pytest.raises(AuthenticationError, match="Authentication rejected"):
            repository.connect()

        assert http.request.call_count == 1

    def test_unknown_repository(self, repository: RestRepository, http: Mock) -> None:
        """Test that a 404 on the repository root is a connection error."""
        http.request.return_value = response(404)

        with pytest.raises(RepositoryConnectionError, match="Repository not found"):
            repository.connect()

    def test_server_error_retried(self, repository: RestRepository, http: Mock) -> None:
        """Test that a transient 5xx is retried and the call then succeeds."""
        http.request.side_effect = [
            response(payload={}),
            response(503, {"message": "busy"}),
            response(payload={"properties": {"r_object_id": "0b01", "r_object_type": "dm_folder"}}),
        ]
        session = repository.connect()

        folder = session.fetch("0b01")

        assert folder.object_id == "0b01"
        assert http.request.call_count == 3

    def test_network_error_retried(self, repository: RestRepository, http: Mock) -> None:
        """Test that dropped connections are retried."""
        http.request.side_effect = [
            response(payload={}),
            requests.ConnectionError("connection reset"),
            response(payload={"properties": {"r_object_id": "0b01"}}),
        ]

        folder = repository.connect().fetch("0b01")

        assert folder.object_id == "0b01"

    def test_not_found_is_not_retried(self, repository: RestRepository, http: Mock) -> None:
        """Test that a missing object fails on the first attempt."""
        http.request.side_effect = [response(payload={}), response(404)]
        session = repository.connect()

        with pytest.raises(ObjectNotFoundError):
            session.fetch("0b00000000deadbeef")

        assert http.request.call_count == 2

    def test_client_error_message(self, repository: RestRepository, http: Mock) -> None:
        """Test that a 4xx body message is carried in the error."""
        http.request.side_effect = [response(payload={}), response(400, {"message": "Invalid attribute"})]
        session = repository.connect()

        with pytest.raises(RepositoryOperationFailed, match="Invalid attribute"):
            session.fetch("0b01")


class TestRestOperations:
    """Tests for queries, statements and object writes."""

    def test_query_follows_pages(self, repository: RestRepository, http: Mock) -> None:
        """Test that every DQL page is read."""
        http.request.side_effect = [
            response(payload={}),
            dql_page([{"user_name": "Rahul Kumar"}], has_next=True),
            dql_page([{"user_name": "Anita Desai"}]),
        ]
        session = repository.connect()

        rows = session.query(Query("dm_user", ("user_name",), (Eq("user_state", 0),)))

        assert rows == [{"user_name": "Rahul Kumar"}, {"user_name": "Anita Desai"}]
        params = http.request.call_args.kwargs["params"]
        assert params["dql"] == "SELECT user_name FROM dm_user WHERE user_state = 0"
        assert params["page"] == 2

    def test_change_type_uses_dql(self, repository: RestRepository, http: Mock) -> None:
        """Test that a type change runs as a DQL statement and reports its count."""
        http.request.side_effect = [response(payload={}), dql_page([{"objects_changed": 1}])]
        session = repository.connect()

        changed = session.execute(ChangeType("dm_folder", "cms_digidak_folder", "0b01"))

        assert changed == 1
        assert http.request.call_args.kwargs["params"]["dql"] == (
            "CHANGE dm_folder OBJECTS TO \"cms_digidak_folder\" WHERE r_object_id = '0b01'"
        )

    def test_save_new_object_in_folder(self, repository: RestRepository, http: Mock) -> None:
        """Test creating an object under its first parent folder."""
        http.request.side_effect = [
            response(payload={}),
            response(payload={"properties": {"r_object_id": "0901", "r_creation_date": "06/01/2024"}}),
        ]
        session = repository.connect()
        document = RepositoryObject(
            object_type="cms_digidak_document",
            attributes={"object_name": "letter", "r_modify_date": "stale"},
            folder_ids=["0b01"],
        )

        session.save(document)

        assert document.object_id == "0901"
        assert document.get("r_creation_date") == "06/01/2024"
        method, url = http.request.call_args.args
        assert (method, url) == ("POST", f"{BASE_URL}/folders/0b01/objects")
        kwargs = http.request.call_args.kwargs
        assert kwargs["json"] == {"properties": {"object_name": "letter", "r_object_type": "cms_digidak_document"}}
        assert kwargs["headers"]["Content-Type"] == JSON_TYPE

    def test_save_uploads_staged_content(self, repository: RestRepository, http: Mock, tmp_path: Path) -> None:
        """Test that staged content is posted after the object is created."""
        content = tmp_path / "letter.pdf"
        content.write_bytes(b"%PDF")
        http.request.side_effect = [
            response(payload={}),
            response(payload={"properties": {"r_object_id": "0901"}}),
            response(payload={}),
        ]
        session = repository.connect()
        document = RepositoryObject(object_type="cms_digidak_document", attributes={"object_name": "letter"})
        session.set_content(document, content, "pdf")

        session.save(document)

        method, url = http.request.call_args.args
        assert (method, url) == ("POST", f"{BASE_URL}/objects/0901/contents")
        assert http.request.call_args.kwargs["params"] == {"overwrite": "true", "format": "pdf"}
        assert document.content_path is None

    def test_timed_out_create_reuses_committed_object(self, repository: RestRepository, http: Mock) -> None:
        """Test that a create committed before its timeout is found instead of posted again."""
        http.request.side_effect = [
            response(payload={}),
            requests.Timeout("read timed out"),
            dql_page([{"r_object_id": "0b07"}]),
            response(payload={"properties": {"r_object_id": "0b07", "r_object_type": "dm_folder"}}),
        ]
        session = repository.connect()
        folder = RepositoryObject(
            object_type="dm_folder", attributes={"object_name": "4200-2024-25"}, folder_ids=["0b01"]
        )

        session.save(folder)

        assert folder.object_id == "0b07"
        methods = [call.args[0] for call in http.request.call_args_list]
        assert methods.count("POST") == 1
        lookup = http.request.call_args_list[2].kwargs["params"]["dql"]
        assert lookup == (
            "SELECT r_object_id FROM dm_folder WHERE ANY i_folder_id = '0b01' AND object_name = '4200-2024-25'"
        )

    def test_failed_create_posted_again_when_absent(self, repository: RestRepository, http: Mock) -> None:
        """Test that a create is repeated once the lookup shows it never landed."""
        http.request.side_effect = [
            response(payload={}),
            response(503, {"message": "busy"}),
            dql_page([]),
            response(payload={"properties": {"r_object_id": "0b08"}}),
        ]
        session = repository.connect()
        cabinet = RepositoryObject(object_type="dm_cabinet", attributes={"object_name": "Digidak Legacy"})

        session.save(cabinet)

        assert cabinet.object_id == "0b08"
        posts = [call.args[1] for call in http.request.call_args_list if call.args[0] == "POST"]
        assert posts == [f"{BASE_URL}/cabinets", f"{BASE_URL}/cabinets"]

    def test_create_without_key_is_not_retried(self, repository: RestRepository, http: Mock) -> None:
        """Test that an unfiled, unnamed create fails rather than risk a duplicate."""
        http.request.side_effect = [response(payload={}), requests.Timeout("read timed out")]
        session = repository.connect()

        with pytest.raises(RepositoryConnectionError):
            session.save(RepositoryObject(object_type="dm_document"))

        assert http.request.call_count == 2

    def test_content_upload_retried_with_full_file(
        self, repository: RestRepository, http: Mock, tmp_path: Path
    ) -> None:
        """Test that a failed upload is re-sent from the start of the file."""
        content = tmp_path / "letter.pdf"
        content.write_bytes(b"%PDF")
        uploaded: list[bytes] = []

        def handle(method: str, url: str, **kwargs) -> Mock:
            if url.endswith("/contents"):
                uploaded.append(kwargs["data"].read())
                return response(503) if len(uploaded) == 1 else response(payload={})
            if method == "POST":
                return response(payload={"properties": {"r_object_id": "0901"}})
            return response(payload={})

        http.request.side_effect = handle
        session = repository.connect()
        document = RepositoryObject(
            object_type="cms_digidak_document", attributes={"object_name": "letter"}, folder_ids=["0b01"]
        )
        session.set_content(document, content, "pdf")

        session.save(document)

        assert uploaded == [b"%PDF", b"%PDF"]
        creates = [call for call in http.request.call_args_list if call.args[1].endswith("/objects")]
        assert len(creates) == 1

    def test_set_content_missing_file(self, repository: RestRepository, http: Mock, tmp_path: Path) -> None:
        """Test that staging a missing file fails before any upload."""
        http.request.return_value = response(payload={})
        session = repository.connect()

        with pytest.raises(RepositoryOperationFailed, match="Content file not found"):
            session.set_content(RepositoryObject(object_type="dm_document"), tmp_path / "absent.pdf", None)

    def test_describe_attribute_caches_type(self, repository: RestRepository, http: Mock) -> None:
        """Test that a type is described once per repository."""
        http.request.side_effect = [
            response(payload={}),
            response(
                payload={
                    "properties": [
                        {"name": "assigned_user", "type": "STRING", "repeating": True},
                        {"name": "completed_date", "type": "TIME"},
                        {"name": "odd", "type": "BLOB"},
                    ]
                }
            ),
        ]
        session = repository.connect()

        assigned = session.describe_attribute("cms_digidak_movement_re", "assigned_user")
        completed = session.describe_attribute("cms_digidak_movement_re", "completed_date")

        assert assigned.repeating is True
        assert completed.data_type == AttributeType.TIME
        assert session.describe_attribute("cms_digidak_movement_re", "odd").data_type == AttributeType.STRING
        assert session.describe_attribute("cms_digidak_movement_re", "missing") is None
        assert http.request.call_count == 2
