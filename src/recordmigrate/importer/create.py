"""Two-phase creation for types whose business-object wrapper blocks direct creation.

The object is created as the plain base type, switched to the target type
with a type-change statement, and only then given its attributes with an
update statement. Each step records the state it reached, so a retry resumes
where the previous attempt stopped instead of creating a second object.
"""

import logging
from collections.abc import Callable
from enum import IntEnum
from typing import Any

from tenacity import (
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recordmigrate.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_SECONDS,
    DEFAULT_RETRY_MAX_WAIT_SECONDS,
)
from recordmigrate.exceptions import ObjectNotFoundError, RepositoryError, RepositoryOperationFailed
from recordmigrate.importer.timeouts import TimeoutRunner
from recordmigrate.repository.base import RepositorySession
from recordmigrate.repository.query import ChangeType, Eq, InFolder, Query, UpdateObject

logger = logging.getLogger(__name__)


class CreateState(IntEnum):
    """Progress of a two-phase create; later states include the earlier ones."""

    PENDING = 0
    BASE_CREATED = 1
    TYPE_CHANGED = 2
    ATTRIBUTES_APPLIED = 3


class TwoPhaseCreate:
    """State machine for one two-phase create.

    Example:
        >>> create = TwoPhaseCreate(session, "4245-2024-25", parent_id, "dm_folder", "cms_digidak_folder",
        ...                         {"status": "Closed"}, {"workflow_groups": ["ecm_ho_delhi"]})
        >>> object_id = create.run()
        >>> create.state
        <CreateState.ATTRIBUTES_APPLIED: 3>
    """

    def __init__(
        self,
        session: RepositorySession,
        name: str,
        parent_id: str,
        base_type: str,
        target_type: str,
        attributes: dict[str, Any],
        repeating: dict[str, list[Any]] | None = None,
        max_attempts: int = DEFAULT_MAX_RETRIES,
        retry_wait: float = DEFAULT_RETRY_DELAY_SECONDS,
        runner: TimeoutRunner | None = None,
    ):
        """Initialize the create.

        Args:
            session: Session of the row being imported
            name: Object name (already normalized for use as a folder name)
            parent_id: Folder the object is linked into
            base_type: Plain type created first (e.g. dm_folder)
            target_type: Final type the object is changed to
            attributes: Single-valued attributes set by the update statement
            repeating: Repeating attributes, replaced wholesale by the update statement
            max_attempts: Attempts per step
            retry_wait: Base back-off between attempts, in seconds
            runner: Bounds the base save; unbounded when None
        """
        self.session = session
        self.name = name
        self.parent_id = parent_id
        self.base_type = base_type
        self.target_type = target_type
        self.attributes = dict(attributes)
        self.repeating = {k: list(v) for k, v in (repeating or {}).items()}
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait
        self.runner = runner
        self.state = CreateState.PENDING
        self.object_id: str | None = None
        self._create_attempted = False

    def run(self) -> str:
        """Drive the state machine to ``ATTRIBUTES_APPLIED``.

        Returns:
            Id of the created object

        Raises:
            RepositoryError: If a step still fails after its retries
        """
        self._step(CreateState.BASE_CREATED, self._create_base)
        self._step(CreateState.TYPE_CHANGED, self._change_type)
        self._step(CreateState.ATTRIBUTES_APPLIED, self._apply_attributes)
        return self.object_id

    def _step(self, reached: CreateState, action: Callable[[], None]) -> None:
        if self.state >= reached:
            return
        for attempt in Retrying(
            retry=retry_if_exception_type(RepositoryError) & retry_if_not_exception_type(ObjectNotFoundError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=DEFAULT_RETRY_MAX_WAIT_SECONDS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Retrying {reached.name.lower()} for {self.name} "
                        f"(attempt {attempt.retry_state.attempt_number}/{self.max_attempts})"
                    )
                action()
        self.state = reached
        logger.debug(f"{self.name}: {reached.name}")

    def _find_created(self) -> str | None:
        rows = self.session.query(
            Query(
                self.base_type,
                ("r_object_id",),
                (Eq("object_name", self.name), InFolder(self.parent_id)),
            )
        )
        return str(rows[0]["r_object_id"]) if rows else None

    def _create_base(self) -> None:
        # A failed attempt may still have saved the object
        if self._create_attempted:
            existing = self._find_created()
            if existing is not None:
                logger.debug(f"Adopting base object {existing} from an earlier attempt")
                self.object_id = existing
                return
        self._create_attempted = True

        folder = self.session.new_object(self.base_type)
        folder.set("object_name", self.name)
        folder.link(self.parent_id)
        if self.runner is None:
            saved = self.session.save(folder)
        else:
            saved = self.runner.run("save", self.session.save, folder, target=self.name)
        self.object_id = saved.object_id

    def _change_type(self) -> None:
        changed = self.session.execute(ChangeType(self.base_type, self.target_type, self.object_id))
        if changed:
            return
        current = self.session.fetch(self.object_id)
        if current.object_type != self.target_type:
            raise RepositoryOperationFailed(
                f"Type change of {self.object_id} to {self.target_type} affected no objects "
                f"(type is {current.object_type})"
            )

    def _apply_attributes(self) -> None:
        if not self.attributes and not self.repeating:
            return
        statement = UpdateObject(
            object_type=self.target_type,
            object_id=self.object_id,
            set_values=self.attributes,
            append_values=self.repeating,
            truncate=tuple(self.repeating),
        )
        if self.session.execute(statement) == 0:
            raise RepositoryOperationFailed(f"Attribute update of {self.object_id} affected no objects")
