"""
Task record model: kinds, states, and the row <-> Task mapping.

The enum values are the strings stored in the `type` and `state` columns.
The claim query and the (state, execution_time) index compare against them directly,
so they must never change.
"""
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from taskq.queue.errors import ConstraintError, DecodeError


class TaskKind(str, Enum):
    """Kind of work a task performs."""
    FIZZ = "Fizz"
    BUZZ = "Buzz"
    FIZZBUZZ = "FizzBuzz"

    @classmethod
    def from_sql(cls, value: Any) -> "TaskKind":
        try:
            return _KINDS_BY_SQL[value]
        except (KeyError, TypeError):
            raise DecodeError(f"cannot parse task kind: {value!r}") from None

    @property
    def duration_seconds(self) -> int:
        """How long the example executor works on this kind."""
        return _DURATIONS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


class TaskState(str, Enum):
    """Lifecycle state. Pending -> Completed is the only transition."""
    PENDING = "Pending"
    COMPLETED = "Completed"

    @classmethod
    def from_sql(cls, value: Any) -> "TaskState":
        try:
            return _STATES_BY_SQL[value]
        except (KeyError, TypeError):
            raise DecodeError(f"cannot parse task state: {value!r}") from None


_KINDS_BY_SQL: Dict[str, TaskKind] = {k.value: k for k in TaskKind}
_STATES_BY_SQL: Dict[str, TaskState] = {s.value: s for s in TaskState}

_DURATIONS: Dict[TaskKind, int] = {
    TaskKind.FIZZ: 3,
    TaskKind.BUZZ: 5,
    TaskKind.FIZZBUZZ: 15,
}

_DISPLAY_NAMES: Dict[TaskKind, str] = {
    TaskKind.FIZZ: "Fizz",
    TaskKind.BUZZ: "Buzz",
    TaskKind.FIZZBUZZ: "Fizz Buzz",
}

def to_utc(value: datetime) -> datetime:
    """
    Normalise an aware timestamp to UTC.

    Raises ConstraintError for naive values and for offsets that push the instant
    outside the datetime range (e.g. 0001-01-01T00:00:00+05:00); Postgres would store
    those as BC / year 10000 timestamps that can never be read back.
    """
    if value.tzinfo is None:
        raise ConstraintError("execution_time must be timezone-aware")
    try:
        return value.astimezone(timezone.utc)
    except (OverflowError, ValueError) as e:
        raise ConstraintError(f"execution_time out of range: {value.isoformat()}") from e


# Columns selected for every Task read, in table order.
TASK_COLUMNS = ("id", "type", "state", "execution_time", "created_at", "updated_at")


@dataclass(frozen=True)
class Task:
    """One row of the tasks table."""
    id: int
    kind: TaskKind
    execution_time: datetime
    state: TaskState
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        """Build a Task from a dict row; bad enumeration strings raise DecodeError."""
        try:
            return cls(
                id=row["id"],
                kind=TaskKind.from_sql(row["type"]),
                execution_time=row["execution_time"],
                state=TaskState.from_sql(row["state"]),
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
        except KeyError as e:
            raise DecodeError(f"task row missing column {e}") from None

    def is_ready(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.state is TaskState.PENDING and self.execution_time <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "execution_time": self.execution_time.isoformat(),
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TaskFilters:
    """Optional listing filters. Unset dimensions do not restrict the listing."""
    state: Optional[TaskState] = None
    kind: Optional[TaskKind] = None

    def predicates(self) -> "OrderedDict[str, str]":
        """Column -> bound value for every supplied dimension, in a stable order."""
        preds: "OrderedDict[str, str]" = OrderedDict()
        if self.state is not None:
            preds["state"] = self.state.value
        if self.kind is not None:
            preds["type"] = self.kind.value
        return preds
