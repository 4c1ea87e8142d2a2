"""
Built-in partitioning levels and janitorial rules.

Levels are abstract classes; concrete ones set class attributes rather than
repeating the policy::

    class ByCompanyId(ByForeignKey):
        partition_field = "company_id"
        referenced_table = "companies"

    class ByCreatedAt(ByWeeklyTimeField):
        partition_field = "created_at"

Time levels encode a period start as ``YYYYMMDD``; integer levels encode the
integer itself.
"""

from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable, List, Set, Tuple, Union
import logging

from sqlalchemy import column, select, table

from core.config import settings
from partitioning.policy import LevelPolicy, PartitionedBase
from schemas.partitioning import ForeignKeySpec, OrderType

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y%m%d"

Periods = Union[int, Callable[[], int]]


def today() -> date:
    return date.today()


# ============================================================================
# TIME PERIODS
# ============================================================================

class TimePeriod:
    """Calendar period a time level partitions by"""

    def __init__(self, name: str, start: Callable[[date], date], step: Callable[[date, int], date]):
        self.name = name
        self.start = start
        self.step = step

    def __repr__(self) -> str:
        return f"TimePeriod({self.name})"

    def range(self, value: Any) -> Tuple[date, date]:
        """[start, end) of the period containing ``value``"""
        start = self.start(as_date(value))
        return start, self.step(start, 1)


def _add_months(d: date, months: int) -> date:
    month_index = d.year * 12 + d.month - 1 + months
    return date(month_index // 12, month_index % 12 + 1, 1)


DAILY = TimePeriod("daily", lambda d: d, lambda d, n: d + timedelta(days=n))
WEEKLY = TimePeriod("weekly", lambda d: d - timedelta(days=d.weekday()), lambda d, n: d + timedelta(weeks=n))
MONTHLY = TimePeriod("monthly", lambda d: d.replace(day=1), _add_months)


def as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected a date, got {type(value).__name__}")


# ============================================================================
# JANITORIAL HELPERS
# ============================================================================

def level_class_for(manager, *values) -> type:
    """Class declaring the level whose children ``values`` address"""
    return manager.configurator.using_resolver(len(values)).level_class


def existing_children(manager, *values) -> List[Tuple[Any, ...]]:
    """Key values of every existing child of a partition"""
    return [
        manager.key_values_from_partition_name(name)
        for name in manager.child_partition_names(*values)
    ]


def missing_children(manager, values: Tuple[Any, ...], candidates: Iterable[Any]) -> List[Tuple[Any, ...]]:
    """Candidate children that do not exist yet"""
    return [
        tuple(values) + (candidate,)
        for candidate in candidates
        if not manager.partition_exists(*values, candidate)
    ]


def _count(periods: Periods) -> int:
    return periods() if callable(periods) else periods


def future_periods_needed(periods: Periods) -> Callable[..., List[Tuple[Any, ...]]]:
    """Create the current period and ``periods`` periods into the future"""
    def janitorial_creates_needed(manager, *values):
        period = level_class_for(manager, *values).partition_period
        current = period.start(today())
        candidates = [period.step(current, increment) for increment in range(_count(periods) + 1)]
        return missing_children(manager, values, candidates)
    return janitorial_creates_needed


def expired_periods(periods: Periods) -> Callable[..., List[Tuple[Any, ...]]]:
    """Drop children whose period started more than ``periods`` periods ago"""
    def janitorial_drops_needed(manager, *values):
        period = level_class_for(manager, *values).partition_period
        cutoff = period.step(period.start(today()), -_count(periods))
        return [child for child in existing_children(manager, *values) if child[-1] < cutoff]
    return janitorial_drops_needed


def archivable_periods(periods: Periods) -> Callable[..., List[Tuple[Any, ...]]]:
    """Archive a leaf whose period started more than ``periods`` periods ago"""
    def janitorial_archives_needed(manager, *values):
        period = manager.configurator.using_resolver(len(values) - 1).level_class.partition_period
        cutoff = period.step(period.start(today()), -_count(periods))
        return [tuple(values)] if values[-1] < cutoff else []
    return janitorial_archives_needed


def referenced_ids(manager, level: type) -> Set[Any]:
    """Values of the referenced column of a foreign key level"""
    schema, _, name = level.referenced_table.rpartition(".")
    query = select(column(level.referenced_field)).select_from(table(name, schema=schema or None))
    with manager.engine.connect() as conn:
        return set(conn.execute(query).scalars())


def referenced_keys_needed(manager, *values) -> List[Tuple[Any, ...]]:
    """A child for every referenced row that has none yet"""
    level = level_class_for(manager, *values)
    return missing_children(manager, values, sorted(referenced_ids(manager, level)))


def unreferenced_children(manager, *values) -> List[Tuple[Any, ...]]:
    """Children whose referenced row has been deleted"""
    level = level_class_for(manager, *values)
    alive = referenced_ids(manager, level)
    return [child for child in existing_children(manager, *values) if child[-1] not in alive]


# ============================================================================
# LEVELS
# ============================================================================

class ByIntegerField(PartitionedBase):
    """One partition per integer value of ``partition_field``"""

    partition_field = None

    __partition__ = LevelPolicy(
        on_field=lambda cls: cls.partition_field,
        base_name=lambda cls, value: str(int(value)),
        key_value=lambda cls, fragment: int(fragment),
        check_constraint=lambda cls, value: f"{cls.partition_field} = {int(value)}",
        order_type=OrderType(kind="numeric", descending=True),
    )


class ByForeignKey(ByIntegerField):
    """
    One partition per referenced row.

    Leaves reference the row through a foreign key; partitions are created
    for every referenced row and dropped when the row is deleted.
    """

    referenced_table = None
    referenced_field = "id"

    __partition__ = LevelPolicy(
        foreign_keys=lambda cls, *values: ForeignKeySpec(
            field=cls.partition_field,
            referenced_table=cls.referenced_table,
            referenced_field=cls.referenced_field
        ),
        janitorial_creates_needed=referenced_keys_needed,
        janitorial_drops_needed=unreferenced_children,
    )


def _time_check_constraint(cls, value):
    start, end = cls.partition_period.range(value)
    return f"{cls.partition_field} >= '{start.isoformat()}' AND {cls.partition_field} < '{end.isoformat()}'"


def _time_key_value(cls, fragment):
    return datetime.strptime(fragment, DATE_FORMAT).date()


class ByTimeField(PartitionedBase):
    """One partition per ``partition_period`` of ``partition_field``"""

    partition_field = None
    partition_period = None

    __partition__ = LevelPolicy(
        on_field=lambda cls: cls.partition_field,
        base_name=lambda cls, value: cls.partition_period.start(as_date(value)).strftime(DATE_FORMAT),
        key_value=_time_key_value,
        check_constraint=_time_check_constraint,
        order_type=OrderType(kind="lexical", descending=True),
    )


class ByDailyTimeField(ByTimeField):
    partition_period = DAILY


class ByWeeklyTimeField(ByTimeField):
    partition_period = WEEKLY


class ByMonthlyTimeField(ByTimeField):
    partition_period = MONTHLY


class ByCreatedAt(ByWeeklyTimeField):
    """Weekly partitions on ``created_at``, created ahead and dropped when expired"""

    partition_field = "created_at"

    __partition__ = LevelPolicy(
        janitorial_creates_needed=future_periods_needed(lambda: settings.FUTURE_PARTITION_WEEKS),
        janitorial_drops_needed=expired_periods(lambda: settings.EXPIRED_PARTITION_WEEKS),
    )


class ArchivedByCreatedAt(ByCreatedAt):
    """``ByCreatedAt`` that archives old weeks instead of dropping them"""

    __partition__ = LevelPolicy(
        janitorial_archives_needed=archivable_periods(lambda: settings.ARCHIVE_PARTITION_WEEKS),
        janitorial_drops_needed=lambda manager, *values: [],
    )
