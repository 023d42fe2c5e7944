import threading

from sqlalchemy.exc import OperationalError

from db.crud import get_account, increment_traffic, soft_delete
from services.accounts import update_limit, update_status
from services.exceptions import DaemonUnavailableError, StatsQueryError
from services.reload import ReloadStatus, apply_config
from workers.usage_meter import HighWaterMarks, UsageMeter, compute_deltas
from tests.conftest import make_account, make_reality, store


class FakeStatsClient:
    """Отдаёт заранее заданные снимки по одному на тик."""

    def __init__(self, *snapshots):
        self.snapshots = list(snapshots)

    def query_user_counters(self):
        snapshot = self.snapshots.pop(0)
        if isinstance(snapshot, Exception):
            raise snapshot
        return snapshot


def test_deltas_with_counter_reset():
    marks = HighWaterMarks()
    key = ("alice", "downlink")
    assert [marks.advance(key, v) for v in (100, 150, 30, 80)] == [100, 50, 30, 50]
    assert marks.get(key) == 80


def test_compute_deltas_sums_directions():
    marks = HighWaterMarks({("alice", "uplink"): 10, ("alice", "downlink"): 100})
    deltas = compute_deltas(marks, {
        ("alice", "uplink"): 15,
        ("alice", "downlink"): 160,
        ("bob", "downlink"): 7,
    })
    assert deltas == {"alice": 65, "bob": 7}
    # отметки двигает только успешная запись
    assert len(marks) == 2
    assert marks.get(("alice", "downlink")) == 100


def test_tick_applies_deltas(db, session_factory, reloader):
    alice = store(db, make_account(username="alice"))
    stats = FakeStatsClient(
        {("alice", "uplink"): 100, ("alice", "downlink"): 400},
        {("alice", "uplink"): 150, ("alice", "downlink"): 400},
    )
    meter = UsageMeter(session_factory, stats)

    first = meter.tick()
    second = meter.tick()

    assert first.polled and first.applied == {"alice": 500}
    assert second.applied == {"alice": 50}
    db.expire_all()
    assert get_account(db, alice.id).traffic_used == 550
    assert reloader.reloads == 0


def test_daemon_unavailable_is_noop(db, session_factory, reloader):
    alice = store(db, make_account(username="alice", traffic_used=10))
    marks = HighWaterMarks({("alice", "downlink"): 100})
    meter = UsageMeter(session_factory, FakeStatsClient(DaemonUnavailableError("UNAVAILABLE")), marks)

    report = meter.tick()

    assert not report.polled
    assert marks.snapshot() == {("alice", "downlink"): 100}
    db.expire_all()
    assert get_account(db, alice.id).traffic_used == 10


def test_stats_error_is_noop(session_factory, reloader):
    meter = UsageMeter(session_factory, FakeStatsClient(StatsQueryError("INTERNAL")))
    assert not meter.tick().polled
    assert len(meter.marks) == 0


def test_unknown_label_skipped(db, session_factory, reloader):
    store(db, make_account(username="alice"))
    stats = FakeStatsClient({("ghost", "downlink"): 300, ("alice", "downlink"): 20})
    report = UsageMeter(session_factory, stats).tick()
    assert report.skipped == ["ghost"]
    assert report.applied == {"alice": 20}


def test_deleted_account_not_credited(db, session_factory, reloader):
    alice = store(db, make_account(username="alice"))
    soft_delete(db, alice)
    db.commit()
    report = UsageMeter(session_factory, FakeStatsClient({("alice", "downlink"): 300})).tick()
    assert report.skipped == ["alice"]
    assert report.applied == {}


def test_meter_expires_account_and_reloads_once(db, session_factory, reloader):
    store(db, make_reality())
    alice = store(db, make_account(username="alice", traffic_limit=1000, traffic_used=900))
    bob = store(db, make_account(username="bob", traffic_limit=500, traffic_used=0))
    carol = store(db, make_account(username="carol"))
    stats = FakeStatsClient({
        ("alice", "downlink"): 100,
        ("bob", "uplink"): 600,
        ("carol", "downlink"): 5,
    })

    report = UsageMeter(session_factory, stats).tick()

    assert sorted(report.expired) == ["alice", "bob"]
    assert report.reloaded
    assert reloader.reloads == 1
    db.expire_all()
    assert get_account(db, alice.id).status == "expired"
    assert get_account(db, bob.id).status == "expired"
    assert get_account(db, carol.id).status == "active"
    users = [u["name"] for u in reloader.read()["inbounds"][0]["users"]]
    assert users == ["carol"]


def test_restart_undercounts_never_double_counts(db, session_factory, reloader):
    alice = store(db, make_account(username="alice"))
    UsageMeter(session_factory, FakeStatsClient({("alice", "downlink"): 100})).tick()

    # трафик 100 -> 180 прошёл до перезапуска, демон тоже перезапустился и начал с нуля
    restarted = UsageMeter(session_factory, FakeStatsClient({("alice", "downlink"): 40}))
    restarted.tick()

    db.expire_all()
    assert get_account(db, alice.id).traffic_used == 140  # 80 байт потеряны


def test_concurrent_increments_not_lost(db, session_factory):
    alice = store(db, make_account(username="alice"))
    errors = []

    def worker():
        session = session_factory()
        try:
            for _ in range(25):
                increment_traffic(session, alice.id, 10)
                session.commit()
        except Exception as e:  # noqa: BLE001
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    db.expire_all()
    assert get_account(db, alice.id).traffic_used == 4 * 25 * 10


def test_failed_write_keeps_delta_for_next_tick(db, session_factory, reloader, monkeypatch):
    alice = store(db, make_account(username="alice"))
    bob = store(db, make_account(username="bob"))
    calls = []

    def locked_once(session, account_id, delta):
        calls.append(account_id)
        if account_id == alice.id and calls.count(alice.id) == 1:
            raise OperationalError("UPDATE accounts", {}, Exception("database is locked"))
        return increment_traffic(session, account_id, delta)

    monkeypatch.setattr("workers.usage_meter.increment_traffic", locked_once)
    counters = {("alice", "downlink"): 300, ("bob", "downlink"): 40}
    meter = UsageMeter(session_factory, FakeStatsClient(counters, dict(counters)))

    first = meter.tick()
    assert first.failed == ["alice"]
    assert first.applied == {"bob": 40}
    assert meter.marks.get(("alice", "downlink")) is None

    second = meter.tick()
    assert second.failed == []
    assert second.applied == {"alice": 300}

    db.expire_all()
    assert get_account(db, alice.id).traffic_used == 300
    assert get_account(db, bob.id).traffic_used == 40


def test_marks_reset_after_config_reload(db, session_factory, reloader):
    store(db, make_reality())
    alice = store(db, make_account(username="alice"))
    stats = FakeStatsClient({("alice", "downlink"): 100}, {("alice", "downlink"): 150})
    meter = UsageMeter(session_factory, stats)

    assert meter.tick().applied == {"alice": 100}
    # reload обнуляет счётчики sing-box: 150 - это трафик уже после него
    assert apply_config(db).status is ReloadStatus.WRITTEN
    assert meter.tick().applied == {"alice": 150}

    db.expire_all()
    assert get_account(db, alice.id).traffic_used == 250


def test_failed_reload_keeps_marks(db, session_factory, reloader):
    store(db, make_reality())
    store(db, make_account(username="alice"))
    stats = FakeStatsClient({("alice", "downlink"): 100}, {("alice", "downlink"): 150})
    meter = UsageMeter(session_factory, stats)
    meter.tick()

    reloader.failures = 1
    apply_config(db)
    assert meter.tick().applied == {"alice": 50}


def test_vanished_counters_are_pruned(db, session_factory, reloader):
    store(db, make_account(username="alice"), make_account(username="bob"))
    stats = FakeStatsClient(
        {("alice", "downlink"): 10, ("bob", "downlink"): 20, ("bob", "uplink"): 5},
        {("alice", "downlink"): 15},
    )
    meter = UsageMeter(session_factory, stats)

    meter.tick()
    assert len(meter.marks) == 3
    meter.tick()
    assert meter.marks.snapshot() == {("alice", "downlink"): 15}


def test_stale_config_published_again_on_next_tick(db, session_factory, reloader):
    store(db, make_reality())
    alice = store(db, make_account(username="alice"))
    store(db, make_account(username="carol"))
    reloader.failures = 1

    _, outcome = update_status(db, alice.id, "banned")
    assert outcome.stale and reloader.stale

    report = UsageMeter(session_factory, FakeStatsClient({("carol", "downlink"): 5})).tick()

    assert report.reloaded
    assert reloader.stale is False
    assert reloader.reloads == 1
    users = [u["name"] for u in reloader.read()["inbounds"][0]["users"]]
    assert users == ["carol"]


class GrowingStatsClient:
    """Счётчик alice растёт на step при каждом опросе."""

    def __init__(self, step: int):
        self.step = step
        self.value = 0

    def query_user_counters(self):
        self.value += self.step
        return {("alice", "downlink"): self.value}


def test_ticks_with_concurrent_admin_edits(db, session_factory, reloader):
    store(db, make_reality())
    alice = store(db, make_account(username="alice", traffic_limit=0))
    meter = UsageMeter(session_factory, GrowingStatsClient(step=10))
    applied = []
    errors = []

    def meter_loop():
        try:
            for _ in range(40):
                report = meter.tick()
                applied.append(report.applied.get("alice", 0))
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    def admin_loop():
        session = session_factory()
        try:
            for _ in range(10):
                update_limit(session, alice.id, 0)
                update_status(session, alice.id, "active")
        except Exception as e:  # noqa: BLE001
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=meter_loop), threading.Thread(target=admin_loop)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    db.expire_all()
    account = get_account(db, alice.id)
    assert account.traffic_used == sum(applied)
    assert account.status == "active"
