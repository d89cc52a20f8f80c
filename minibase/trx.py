"""A simple transaction log supporting commit and rollback of inserts and deletes.

There is no concurrency control. Each record carries a 32-bit system field
holding the id of the transaction that last touched it; the top bit of that
field marks the record as deleted.
"""

from __future__ import annotations

import enum
import itertools
import logging
import struct
import threading
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)

DELETED_FLAG_BIT_MASK = 0x80000000
TRX_ID_BIT_MASK = 0x7FFFFFFF
_TRX_FIELD = struct.Struct("<I")

_id_counter = itertools.count(1)
_id_lock = threading.Lock()


class TrxError(Exception):
    """Raised when a transaction operation cannot be carried out."""


@dataclass(frozen=True, order=True)
class RID:
    """Location of a record: page number and slot within the page."""

    page_num: int = -1
    slot_num: int = -1


@dataclass
class Record:
    """A record's raw bytes together with its location."""

    data: bytearray
    rid: RID = field(default_factory=RID)


class OperationType(enum.Enum):
    INSERT = 0
    UPDATE = 1
    DELETE = 2
    UNDEFINED = 3


@dataclass(frozen=True)
class Operation:
    """A logged change to one record; operations are equal when their records are."""

    type: OperationType
    rid: RID

    @property
    def page_num(self) -> int:
        return self.rid.page_num

    @property
    def slot_num(self) -> int:
        return self.rid.slot_num

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Operation):
            return NotImplemented
        return self.rid == other.rid

    def __hash__(self) -> int:
        return hash(self.rid)


class TrxTable(Protocol):
    """What a transaction needs from a table."""

    trx_field_offset: int

    def commit_insert(self, trx: Trx, rid: RID) -> None: ...

    def commit_delete(self, trx: Trx, rid: RID) -> None: ...

    def rollback_insert(self, trx: Trx, rid: RID) -> None: ...

    def rollback_delete(self, trx: Trx, rid: RID) -> None: ...


class Trx:
    """Records the inserts and deletes of one transaction, per table."""

    def __init__(self) -> None:
        self._trx_id = 0
        self._operations: dict[TrxTable, dict[RID, Operation]] = {}

    # ----- identity of the system field --------------------------------

    @staticmethod
    def default_trx_id() -> int:
        return 0

    @staticmethod
    def next_trx_id() -> int:
        """Hand out a fresh, process-wide transaction id."""
        with _id_lock:
            return next(_id_counter)

    @staticmethod
    def trx_field_name() -> str:
        return "__trx"

    @staticmethod
    def trx_field_len() -> int:
        return _TRX_FIELD.size

    @property
    def trx_id(self) -> int:
        """The id of the running transaction, or 0 when none has started."""
        return self._trx_id

    # ----- logging changes ---------------------------------------------

    def insert_record(self, table: TrxTable, record: Record) -> None:
        """Log an insertion; the record must not already be logged."""
        if self.find_operation(table, record.rid) is not None:
            raise TrxError(f"record {record.rid} already has an operation in this transaction")
        self._start_if_not_started()
        self._insert_operation(table, OperationType.INSERT, record.rid)

    def delete_record(self, table: TrxTable, record: Record) -> None:
        """Log a deletion, or cancel a pending insertion of the same record."""
        self._start_if_not_started()
        old = self.find_operation(table, record.rid)
        if old is not None:
            if old.type is OperationType.INSERT:
                self._delete_operation(table, record.rid)
                return
            raise TrxError(f"record {record.rid} already has a {old.type.name} operation")
        self._set_record_trx_id(table, record, self._trx_id, deleted=True)
        self._insert_operation(table, OperationType.DELETE, record.rid)

    def find_operation(self, table: TrxTable, rid: RID) -> Operation | None:
        """Return the logged operation on a record, if any."""
        return self._operations.get(table, {}).get(rid)

    # ----- ending the transaction --------------------------------------

    def commit(self) -> None:
        """Apply every logged operation to its table and reset the transaction.

        Failures are logged and the remaining operations still run; a
        TrxError is raised if the last operation failed.
        """
        self._finish(
            {
                OperationType.INSERT: lambda table, rid: table.commit_insert(self, rid),
                OperationType.DELETE: lambda table, rid: table.commit_delete(self, rid),
            },
            "commit",
        )

    def rollback(self) -> None:
        """Undo every logged operation and reset the transaction.

        Failures are logged and the remaining operations still run; a
        TrxError is raised if the last operation failed.
        """
        self._finish(
            {
                OperationType.INSERT: lambda table, rid: table.rollback_insert(self, rid),
                OperationType.DELETE: lambda table, rid: table.rollback_delete(self, rid),
            },
            "rollback",
        )

    def _finish(self, actions, verb: str) -> None:
        last_error: Exception | None = None
        for table, operations in self._operations.items():
            for operation in operations.values():
                action = actions.get(operation.type)
                if action is None:
                    logger.critical("Unknown operation. type=%s", operation.type)
                    continue
                try:
                    action(table, operation.rid)
                except Exception as exc:  # the table's own error type is unknown here
                    logger.error(
                        "Failed to %s %s operation. rid=%d.%d: %s",
                        verb, operation.type.name.lower(),
                        operation.page_num, operation.slot_num, exc,
                    )
                    last_error = exc
                else:
                    last_error = None
        self._operations.clear()
        self._trx_id = 0
        if last_error is not None:
            raise TrxError(f"{verb} failed: {last_error}") from last_error

    # ----- record stamps -----------------------------------------------

    def commit_insert(self, table: TrxTable, record: Record) -> None:
        """Mark an inserted record as committed."""
        self._set_record_trx_id(table, record, 0, deleted=False)

    def rollback_delete(self, table: TrxTable, record: Record) -> None:
        """Clear a pending deletion mark on a record."""
        self._set_record_trx_id(table, record, 0, deleted=False)

    def is_visible(self, table: TrxTable, record: Record) -> bool:
        """Whether this transaction may see the record."""
        record_trx_id, deleted = self._get_record_trx_id(table, record)
        if record_trx_id == 0 or record_trx_id == self._trx_id:
            return not deleted
        # Another transaction's uncommitted change: an insert is hidden, a delete is not yet.
        return deleted

    def init_trx_info(self, table: TrxTable, record: Record) -> None:
        """Stamp a new record with this transaction's id."""
        self._set_record_trx_id(table, record, self._trx_id, deleted=False)

    @staticmethod
    def _set_record_trx_id(table: TrxTable, record: Record, trx_id: int, deleted: bool) -> None:
        value = trx_id | DELETED_FLAG_BIT_MASK if deleted else trx_id
        _TRX_FIELD.pack_into(record.data, table.trx_field_offset, value & 0xFFFFFFFF)

    @staticmethod
    def _get_record_trx_id(table: TrxTable, record: Record) -> tuple[int, bool]:
        (value,) = _TRX_FIELD.unpack_from(record.data, table.trx_field_offset)
        return value & TRX_ID_BIT_MASK, bool(value & DELETED_FLAG_BIT_MASK)

    # ----- bookkeeping -------------------------------------------------

    def _insert_operation(self, table: TrxTable, op_type: OperationType, rid: RID) -> None:
        self._operations.setdefault(table, {}).setdefault(rid, Operation(op_type, rid))

    def _delete_operation(self, table: TrxTable, rid: RID) -> None:
        operations = self._operations.get(table)
        if operations is not None:
            operations.pop(rid, None)

    def _start_if_not_started(self) -> None:
        if self._trx_id == 0:
            self._trx_id = self.next_trx_id()