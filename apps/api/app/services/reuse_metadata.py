"""In-database proof of state for built test databases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import inspect, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from apps.api.app.db.models import REUSE_TABLE_NAME, REUSE_TABLE_VERSION, ReuseMetaData
from apps.api.app.services.reuse_strategy import ReuseMechanism

logger = logging.getLogger("dbprep.metadata")

ARMED = 1
DISARMED = 0


@dataclass(frozen=True)
class ReuseRecord:
    project_name: str | None
    orig_db_name: str
    build_checksum: str
    snapshot_checksum: str | None
    scenario_checksum: str | None
    transaction_reusable: int | None
    journal_reusable: int | None
    validation_passed: int | None
    last_used: datetime
    reuse_table_version: str = REUSE_TABLE_VERSION


class ReuseMetadataStore:
    """Read and write the single-row reuse table inside one database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self.cant_reuse_reason: str | None = None

    def write(self, record: ReuseRecord) -> None:
        table = ReuseMetaData.__table__
        with self._engine.begin() as connection:
            table.drop(connection, checkfirst=True)
            table.create(connection)
        with Session(self._engine) as session, session.begin():
            session.add(
                ReuseMetaData(
                    project_name=record.project_name,
                    reuse_table_version=record.reuse_table_version,
                    orig_db_name=record.orig_db_name,
                    build_checksum=record.build_checksum,
                    snapshot_checksum=record.snapshot_checksum,
                    scenario_checksum=record.scenario_checksum,
                    transaction_reusable=record.transaction_reusable,
                    journal_reusable=record.journal_reusable,
                    validation_passed=record.validation_passed,
                    last_used=record.last_used,
                )
            )

    def read(self) -> ReuseRecord | None:
        # an absent table means "never built"; other driver errors propagate
        if not inspect(self._engine).has_table(REUSE_TABLE_NAME):
            return None
        with Session(self._engine) as session:
            row = session.scalars(select(ReuseMetaData).order_by(ReuseMetaData.id).limit(1)).first()
            if row is None:
                return None
            return ReuseRecord(
                project_name=row.project_name,
                reuse_table_version=row.reuse_table_version,
                orig_db_name=row.orig_db_name,
                build_checksum=row.build_checksum,
                snapshot_checksum=row.snapshot_checksum,
                scenario_checksum=row.scenario_checksum,
                transaction_reusable=row.transaction_reusable,
                journal_reusable=row.journal_reusable,
                validation_passed=row.validation_passed,
                last_used=row.last_used,
            )

    def arm_transaction(self, connection: Connection) -> None:
        """Commit the armed marker, then disarm it inside ``connection``'s transaction.

        A rollback restores the armed value; a commit by the code under test
        persists the disarmed one.
        """
        self._set(transaction_reusable=ARMED)
        connection.execute(update(ReuseMetaData).values(transaction_reusable=DISARMED))

    def transaction_was_committed(self) -> bool:
        record = self.read()
        return record is not None and record.transaction_reusable == DISARMED

    def arm_journal(self) -> None:
        self._set(journal_reusable=DISARMED)

    def mark_journal_reversed(self) -> None:
        self._set(journal_reusable=ARMED)

    def mark_validation(self, passed: bool) -> None:
        self._set(validation_passed=ARMED if passed else DISARMED)

    def touch(self) -> None:
        self._set(last_used=datetime.utcnow())

    def is_clean(
        self,
        *,
        build_checksum: str,
        scenario_checksum: str,
        project_name: str | None,
        mechanism: ReuseMechanism,
        verify: bool,
    ) -> bool:
        self.cant_reuse_reason = self._find_reason(
            build_checksum=build_checksum,
            scenario_checksum=scenario_checksum,
            project_name=project_name,
            mechanism=mechanism,
            verify=verify,
        )
        if self.cant_reuse_reason is not None:
            logger.debug("database not reusable reason=%s", self.cant_reuse_reason)
            return False
        return True

    def remove(self) -> None:
        with self._engine.begin() as connection:
            ReuseMetaData.__table__.drop(connection, checkfirst=True)

    def _find_reason(
        self,
        *,
        build_checksum: str,
        scenario_checksum: str,
        project_name: str | None,
        mechanism: ReuseMechanism,
        verify: bool,
    ) -> str | None:
        if mechanism == "none":
            return "no reuse mechanism is active"
        record = self.read()
        if record is None:
            return "the reuse metadata table is missing or empty"
        if record.reuse_table_version != REUSE_TABLE_VERSION:
            return (
                f"reuse table version {record.reuse_table_version!r} "
                f"differs from {REUSE_TABLE_VERSION!r}"
            )
        if record.project_name != project_name:
            return (
                f"the database belongs to project {record.project_name!r}, "
                f"not {project_name!r}"
            )
        if record.build_checksum != build_checksum:
            return "the build checksum has changed"
        if record.scenario_checksum != scenario_checksum:
            return "the scenario checksum has changed"
        if mechanism == "transaction" and record.transaction_reusable != ARMED:
            return "the reuse transaction was committed or never armed"
        if mechanism == "journal" and record.journal_reusable != ARMED:
            return "the journal was not reversed"
        if verify and record.validation_passed != ARMED:
            return "the last verification did not pass"
        return None

    def _set(self, **values: object) -> None:
        with self._engine.begin() as connection:
            connection.execute(update(ReuseMetaData).values(**values))
