"""REST adapter for a Documentum-style content repository.

Speaks the repository's JSON REST API over :class:`requests.Session` with HTTP
basic authentication. Read queries are rendered to DQL and paged through the
repository's ``dql`` endpoint; object writes use the object, folder and
content resources.
"""

import logging
from pathlib import Path
from typing import Any

import requests

from recordmigrate.config.models import RepositoryConfig
from recordmigrate.exceptions import (
    AuthenticationError,
    ConfigError,
    ObjectNotFoundError,
    RepositoryConnectionError,
    RepositoryOperationFailed,
)
from recordmigrate.repository.base import AttributeInfo, AttributeType, RepositoryObject
from recordmigrate.repository.query import (
    ChangeType,
    DestroyObject,
    Eq,
    InFolder,
    Query,
    Statement,
    UpdateObject,
)
from recordmigrate.repository.retry import with_retry

logger = logging.getLogger(__name__)

JSON_TYPE = "application/vnd.emc.documentum+json"
PAGE_SIZE = 100

# Attributes the server owns; never sent back on update
_READ_ONLY_PREFIXES = ("r_", "i_", "a_content_type")


class RestRepository:
    """Factory for REST sessions against one repository.

    Example:
        >>> repo = RestRepository(config.target)
        >>> pool = SessionPool(repo.connect, size=config.pool.size)
    """

    def __init__(self, config: RepositoryConfig):
        if config.url is None or not config.repository:
            raise ConfigError("Repository url and repository name are required")
        self.config = config
        self.base_url = f"{str(config.url).rstrip('/')}/repositories/{config.repository}"
        self._type_cache: dict[str, dict[str, AttributeInfo]] = {}

    def connect(self) -> "RestSession":
        """Open and authenticate a new session.

        Raises:
            RepositoryConnectionError: If the repository is unreachable or rejects the credentials
        """
        session = RestSession(self)
        session.authenticate()
        return session


class RestSession:
    """One authenticated HTTP session; not shared between threads."""

    def __init__(self, repository: RestRepository):
        self.repository = repository
        self.base_url = repository.base_url
        self.timeout = repository.config.timeout
        self._http = requests.Session()
        self._http.auth = (repository.config.username, repository.config.password)
        self._http.verify = repository.config.verify_ssl
        self._http.headers["Accept"] = JSON_TYPE
        self._connected = False

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Issue one HTTP request and map failures onto repository errors."""
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self._http.request(method, url, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RepositoryConnectionError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise ObjectNotFoundError(f"Not found: {url}")
        if response.status_code in (401, 403):
            self._connected = False
            raise AuthenticationError(f"Authentication rejected ({response.status_code})")
        if response.status_code >= 500:
            raise RepositoryConnectionError(
                f"{method} {url} returned {response.status_code}: {_error_message(response)}"
            )
        if response.status_code >= 400:
            raise RepositoryOperationFailed(
                f"{method} {url} returned {response.status_code}: {_error_message(response)}"
            )
        return response

    @with_retry(exceptions=(RepositoryConnectionError,))
    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Idempotent request, retried after network failures and 5xx responses."""
        return self._send(method, url, **kwargs)

    def _json(self, method: str, url: str, *, retry: bool = True, **kwargs: Any) -> dict[str, Any]:
        if "json" in kwargs:
            kwargs.setdefault("headers", {})["Content-Type"] = JSON_TYPE
        send = self._request if retry else self._send
        response = send(method, url, **kwargs)
        return response.json() if response.content else {}

    def authenticate(self) -> None:
        try:
            self._json("GET", self.base_url)
        except ObjectNotFoundError as e:
            raise RepositoryConnectionError(f"Repository not found: {self.base_url}") from e
        except RepositoryOperationFailed as e:
            raise RepositoryConnectionError(str(e)) from e
        self._connected = True

    def is_connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        self._connected = False
        self._http.close()

    def _object_url(self, object_id: str) -> str:
        return f"{self.base_url}/objects/{object_id}"

    # ------------------------------------------------------------------
    # RepositorySession protocol
    # ------------------------------------------------------------------

    def run_dql(self, dql: str) -> list[dict[str, Any]]:
        """Run a DQL statement, following pages until the result is exhausted."""
        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = self._json(
                "GET",
                self.base_url,
                params={"dql": dql, "page": page, "items-per-page": PAGE_SIZE, "inline": "true"},
            )
            entries = payload.get("entries", [])
            rows.extend(entry.get("content", {}).get("properties", {}) for entry in entries)
            has_next = any(link.get("rel") == "next" for link in payload.get("links", []))
            if not has_next or not entries:
                return rows
            page += 1

    def query(self, query: Query) -> list[dict[str, Any]]:
        logger.debug(f"DQL: {query.to_dql()}")
        return self.run_dql(query.to_dql())

    def execute(self, statement: Statement) -> int:
        if isinstance(statement, DestroyObject):
            self.destroy(statement.object_id)
            return 1
        if isinstance(statement, UpdateObject):
            return self._execute_update(statement)
        if isinstance(statement, ChangeType):
            rows = self.run_dql(statement.to_dql())
            return int(rows[0].get("objects_changed", 1)) if rows else 1
        raise RepositoryOperationFailed(f"Unsupported statement: {type(statement).__name__}")

    def _execute_update(self, statement: UpdateObject) -> int:
        try:
            current = self.fetch(statement.object_id)
        except ObjectNotFoundError:
            return 0

        properties: dict[str, Any] = {name: [] for name in statement.truncate}
        properties.update(statement.set_values)
        for name, values in statement.append_values.items():
            existing = [] if name in statement.truncate else current.values(name)
            properties[name] = existing + list(values)
        if properties:
            self._json("POST", self._object_url(statement.object_id), json={"properties": properties})

        if statement.unlink:
            folder = self.fetch_by_path(statement.unlink)
            if folder is None or folder.object_id not in current.folder_ids:
                raise RepositoryOperationFailed(
                    f"Object {statement.object_id} is not linked to {statement.unlink}"
                )
            self.unlink(statement.object_id, folder.object_id)
        return 1

    def fetch(self, object_id: str) -> RepositoryObject:
        payload = self._json("GET", self._object_url(object_id))
        return _to_object(payload)

    def fetch_by_path(self, path: str) -> RepositoryObject | None:
        path = path.rstrip("/")
        rows = self.query(Query("dm_folder", where=(Eq("r_folder_path", path, any_=True),)))
        if not rows:
            parent, _, name = path.rpartition("/")
            if not parent or not name:
                return None
            rows = self.query(Query("dm_sysobject", where=(InFolder(parent), Eq("object_name", name))))
        if not rows:
            return None
        return self.fetch(rows[0]["r_object_id"])

    def new_object(self, object_type: str) -> RepositoryObject:
        return RepositoryObject(object_type=object_type)

    def save(self, obj: RepositoryObject) -> RepositoryObject:
        properties = {
            name: value
            for name, value in obj.attributes.items()
            if not name.startswith(_READ_ONLY_PREFIXES)
        }

        if obj.is_new:
            properties["r_object_type"] = obj.object_type
            if obj.folder_ids:
                url = f"{self.base_url}/folders/{obj.folder_ids[0]}/objects"
            elif obj.object_type == "dm_cabinet":
                url = f"{self.base_url}/cabinets"
            else:
                url = f"{self.base_url}/objects"
            created = _to_object(self._create(obj, url, properties))
            obj.object_id = created.object_id
            for folder_id in obj.folder_ids[1:]:
                self.link(obj.object_id, folder_id)
            obj.attributes.update(
                {k: v for k, v in created.attributes.items() if k.startswith(("r_", "i_"))}
            )
        else:
            current = self.fetch(obj.object_id)
            self._json("POST", self._object_url(obj.object_id), json={"properties": properties})
            for folder_id in obj.folder_ids:
                if folder_id not in current.folder_ids:
                    self.link(obj.object_id, folder_id)

        if obj.content_path is not None:
            self._upload_content(obj)
        return obj

    def _create(self, obj: RepositoryObject, url: str, properties: dict[str, Any]) -> dict[str, Any]:
        """POST a new object, never creating it twice.

        A create that fails with a timeout or 5xx may still have been committed,
        so it is only posted again after a lookup by parent and name finds
        nothing. Objects without such a key are not retried.
        """
        lookup = _creation_key(obj)
        if lookup is None:
            return self._json("POST", url, retry=False, json={"properties": properties})

        posted = False

        @with_retry(exceptions=(RepositoryConnectionError,))
        def attempt() -> dict[str, Any]:
            nonlocal posted
            if posted:
                rows = self.query(lookup)
                if rows:
                    object_id = rows[0]["r_object_id"]
                    logger.warning(
                        f"Create of '{obj.name}' was committed before failing; reusing {object_id}"
                    )
                    return self._json("GET", self._object_url(object_id))
            posted = True
            return self._json("POST", url, retry=False, json={"properties": properties})

        return attempt()

    @with_retry(exceptions=(RepositoryConnectionError,))
    def _upload_content(self, obj: RepositoryObject) -> None:
        params = {"overwrite": "true"}
        if obj.content_format:
            params["format"] = obj.content_format
        with Path(obj.content_path).open("rb") as f:
            self._send(
                "POST",
                f"{self._object_url(obj.object_id)}/contents",
                params=params,
                data=f,
                headers={"Content-Type": "application/octet-stream"},
            )
        obj.content_path = None

    def set_content(self, obj: RepositoryObject, local_path: Path, content_format: str | None) -> None:
        if not Path(local_path).is_file():
            raise RepositoryOperationFailed(f"Content file not found: {local_path}")
        obj.content_path = Path(local_path)
        obj.content_format = content_format

    def get_content(self, object_id: str, destination: Path) -> Path:
        response = self._request("GET", f"{self._object_url(object_id)}/content-media", stream=True)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with destination.open("wb") as f:
            for chunk in response.iter_content(chunk_size=64 * 1024):
                f.write(chunk)
        return destination

    def set_acl(self, obj: RepositoryObject, acl: RepositoryObject) -> None:
        if acl.object_id is None:
            raise ObjectNotFoundError(f"ACL '{acl.name}' is not saved")
        obj.set("acl_name", acl.name)
        obj.set("acl_domain", acl.get("owner_name"))

    def link(self, object_id: str, folder_id: str) -> None:
        self._json(
            "POST",
            f"{self._object_url(object_id)}/folder-links",
            json={"href": f"{self.base_url}/folders/{folder_id}"},
        )

    def unlink(self, object_id: str, folder_id: str) -> None:
        self._request("DELETE", f"{self._object_url(object_id)}/folder-links/{folder_id}")

    def destroy(self, object_id: str) -> None:
        self._request("DELETE", self._object_url(object_id))

    def describe_attribute(self, object_type: str, name: str) -> AttributeInfo | None:
        cache = self.repository._type_cache
        if object_type not in cache:
            payload = self._json("GET", f"{self.base_url}/types/{object_type}")
            cache[object_type] = {
                prop["name"]: AttributeInfo(
                    name=prop["name"],
                    data_type=_attribute_type(prop.get("type", "STRING")),
                    repeating=bool(prop.get("repeating", False)),
                )
                for prop in payload.get("properties", [])
            }
        return cache[object_type].get(name)


def _attribute_type(raw: str) -> AttributeType:
    try:
        return AttributeType(raw.lower())
    except ValueError:
        return AttributeType.STRING


def _creation_key(obj: RepositoryObject) -> Query | None:
    """Query that finds an already-created copy of a new object, if it has a key."""
    name = obj.get("object_name")
    if not name:
        return None
    if obj.folder_ids:
        where = (Eq("i_folder_id", obj.folder_ids[0], any_=True), Eq("object_name", name))
        return Query(obj.object_type, where=where)
    if obj.object_type == "dm_cabinet":
        return Query(obj.object_type, where=(Eq("object_name", name),))
    return None


def _to_object(payload: dict[str, Any]) -> RepositoryObject:
    properties = dict(payload.get("properties", {}))
    folder_ids = properties.get("i_folder_id") or []
    if isinstance(folder_ids, str):
        folder_ids = [folder_ids]
    return RepositoryObject(
        object_type=properties.get("r_object_type") or payload.get("type", "dm_sysobject"),
        attributes=properties,
        object_id=properties.get("r_object_id"),
        folder_ids=list(folder_ids),
    )


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    return body.get("message") or body.get("details") or str(body)[:200]
