"""Счётчик трафика: опрос Stats API sing-box, дельты по снимкам, атомарный учёт и проверка квоты.

Каждый тик:
  1. абсолютные значения user>>>{label}>>>traffic>>>{uplink,downlink};
  2. дельта = текущее - последнее увиденное; если меньше нуля (демон перезапущен) - текущее;
  3. traffic_used += дельта одним UPDATE, коммит по каждой метке отдельно;
  4. последнее увиденное = текущее, только после коммита этой метки;
  5. проверка квоты; при переходе active -> expired - пересборка конфига.

Если запись метки не прошла (например, database is locked), её отметки не двигаются
и та же дельта будет учтена на следующем тике.

Последние увиденные значения живут только в памяти процесса. После перезапуска
(нашего или демона) и после каждого reload sing-box трафик между последним
успешным опросом и перезапуском не учитывается - недосчёт, но не двойной счёт.
"""
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import LOG_LEVEL, METER_INTERVAL
from db.crud import get_account_by_username, increment_traffic
from db.session import SessionLocal
from services.exceptions import DaemonUnavailableError, StatsQueryError
from services.quota import expire_if_over_quota
from services.reload import ConfigReloader, apply_config, get_reloader
from services.stats_client import StatsClient

logger = logging.getLogger(__name__)

CounterKey = tuple[str, str]  # (label, direction)


class HighWaterMarks:
    """Последние увиденные абсолютные значения счётчиков. Не персистится."""

    def __init__(self, initial: dict[CounterKey, int] | None = None):
        self._values: dict[CounterKey, int] = dict(initial or {})
        self._lock = threading.Lock()

    def delta(self, key: CounterKey, value: int) -> int:
        """Дельта к последнему значению, без запоминания (при сбросе счётчика - само значение)."""
        with self._lock:
            delta = value - self._values.get(key, 0)
        return value if delta < 0 else delta

    def update(self, values: dict[CounterKey, int]) -> None:
        with self._lock:
            self._values.update(values)

    def advance(self, key: CounterKey, value: int) -> int:
        """Запомнить новое значение и вернуть дельту."""
        with self._lock:
            delta = value - self._values.get(key, 0)
            self._values[key] = value
        return value if delta < 0 else delta

    def retain(self, keys: Iterable[CounterKey]) -> None:
        """Забыть счётчики, которых демон больше не отдаёт (метка удалена или выключена)."""
        keep = set(keys)
        with self._lock:
            for key in [k for k in self._values if k not in keep]:
                del self._values[key]

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def get(self, key: CounterKey) -> int | None:
        with self._lock:
            return self._values.get(key)

    def snapshot(self) -> dict[CounterKey, int]:
        with self._lock:
            return dict(self._values)

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


def group_counters(counters: dict[CounterKey, int]) -> dict[str, dict[CounterKey, int]]:
    groups: dict[str, dict[CounterKey, int]] = defaultdict(dict)
    for key, value in counters.items():
        groups[key[0]][key] = value
    return dict(groups)


def compute_deltas(marks: HighWaterMarks, counters: dict[CounterKey, int]) -> dict[str, int]:
    """Суммарная дельта по каждой метке (uplink + downlink). Отметки не меняются."""
    return {
        label: sum(marks.delta(key, value) for key, value in values.items())
        for label, values in group_counters(counters).items()
    }


@dataclass
class TickReport:
    polled: bool = False
    applied: dict[str, int] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    reloaded: bool = False


class UsageMeter:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        stats_client: StatsClient | None = None,
        marks: HighWaterMarks | None = None,
        reloader: ConfigReloader | None = None,
    ):
        self.session_factory = session_factory
        self.stats_client = stats_client or StatsClient()
        self.marks = marks if marks is not None else HighWaterMarks()
        self.reloader = reloader
        self._generation: int | None = None

    def _poll(self, reloader: ConfigReloader) -> dict[CounterKey, int]:
        # под lock публикации: reload не может пройти между опросом и сверкой generation
        with reloader.lock:
            counters = self.stats_client.query_user_counters()
            if self._generation is not None and reloader.generation != self._generation:
                logger.info("Usage meter: sing-box reloaded since last poll, counters restart from zero")
                self.marks.clear()
            self._generation = reloader.generation
        return counters

    def tick(self) -> TickReport:
        report = TickReport()
        reloader = self.reloader or get_reloader()
        try:
            counters = self._poll(reloader)
        except DaemonUnavailableError as e:
            logger.debug("Usage meter: daemon unavailable, tick skipped (%s)", e)
            return report
        except StatsQueryError as e:
            logger.warning("Usage meter: stats query failed, tick skipped: %s", e)
            return report
        report.polled = True
        self.marks.retain(counters)

        db = self.session_factory()
        try:
            for label, values in group_counters(counters).items():
                if self._apply(db, label, values, report):
                    self.marks.update(values)
            if report.applied:
                logger.debug("Usage meter: applied %s", report.applied)
            if report.expired or reloader.stale:
                if not report.expired:
                    logger.info("Usage meter: daemon on stale config, publishing again")
                outcome = apply_config(db, reloader)
                report.reloaded = not outcome.stale
        finally:
            db.close()
        return report

    def _apply(self, db: Session, label: str, values: dict[CounterKey, int], report: TickReport) -> bool:
        """Учесть дельту одной метки. False - запись не прошла, отметки метки не двигать."""
        delta = sum(self.marks.delta(key, value) for key, value in values.items())
        if delta <= 0:
            return True
        try:
            account = get_account_by_username(db, label)
            if not account or not increment_traffic(db, account.id, delta):
                # удалён между снимком stats и записью
                db.rollback()
                logger.info("Usage meter: account %s not found, %s bytes dropped", label, delta)
                report.skipped.append(label)
                return True
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Usage meter: %s bytes for %s not written, retry next tick: %s", delta, label, e)
            report.failed.append(label)
            return False
        report.applied[label] = delta

        try:
            if expire_if_over_quota(db, account.id):
                report.expired.append(label)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Usage meter: quota check for %s failed, retry with next traffic: %s", label, e)
        return True


def run_worker() -> None:
    """Отдельный процесс без API: цикл с фиксированным интервалом."""
    meter = UsageMeter()
    logger.info("Usage meter worker started (interval: %d sec)", METER_INTERVAL)
    while True:
        try:
            meter.tick()
            time.sleep(METER_INTERVAL)
        except KeyboardInterrupt:
            logger.info("Usage meter worker stopped")
            break
        except Exception:
            logger.exception("Usage meter: tick failed")
            time.sleep(METER_INTERVAL)


if __name__ == "__main__":
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    run_worker()
