import threading

import pytest

from chromactl import repository
from chromactl.db import connect_db
from chromactl.errors import PolicyError, TransientError
from chromactl.models import (
    POLICY, PROCESSING, QUEUED, SOURCE_COMPLETED, SOURCE_PARTIAL, SOURCE_QUEUED, TRANSIENT,
    Combined, OptionSet, Settings,
)
from chromactl.workspace import Workspace

from conftest import FakeGenerator


def workspace(**selections):
    return Workspace(options=OptionSet(selections=selections))


def test_add_source_fans_out_jobs(image):
    ws = workspace(gender=["A", "B"], clothes=Combined(("Boots", "Anklets")))
    source, jobs = ws.add_source(image())
    assert source.total_variations == 2
    assert len(jobs) == 2
    assert [j.summary for j in ws.queue] == ["A, Boots + Anklets", "B, Boots + Anklets"]
    assert ws.source_status(source.id) == SOURCE_QUEUED


def test_add_source_rejects_missing_and_non_image_files(tmp_path):
    ws = workspace()
    with pytest.raises(ValueError):
        ws.add_source(str(tmp_path / "nope.png"))
    txt = tmp_path / "notes.txt"
    txt.write_text("hi")
    with pytest.raises(ValueError):
        ws.add_source(str(txt))


def test_batch_shares_one_snapshot(image):
    ws = workspace(gender=["A"])
    added = ws.add_sources([image("a.png"), image("b.png")])
    ws.options = ws.options.with_values("gender", ["Z"])
    assert all(s.options.values("gender") == ("A",) for s, _ in added)
    assert {j.summary for j in ws.queue} == {"A"}


def test_duplicate_jobs_are_skipped(image):
    ws = workspace(gender=["A", "B"])
    source, _ = ws.add_source(image())
    assert ws.rerun_source(source.id) == []
    assert len(ws.queue) == 2


def test_retry_preserves_counter_and_goes_to_front(image):
    ws = workspace(gender=["A", "B"])
    ws.add_source(image())
    sched = ws.scheduler(FakeGenerator(delay=0, fail=lambda p: TransientError("overloaded")))
    sched.run()
    assert len(ws.failed) == 2
    item = list(ws.failed)[0]
    assert item.retry_count == 1

    job = ws.retry(item.id)
    assert job.retry_count == 1
    assert job.id != item.job.id
    assert ws.queue.snapshot()[0] is job

    ws.scheduler(FakeGenerator(delay=0, fail=lambda p: TransientError("overloaded"))).run()
    counts = sorted(f.retry_count for f in ws.failed)
    assert counts == [1, 2]


def test_blocked_items_cannot_be_retried(image):
    ws = Workspace(options=OptionSet(selections={"gender": ["A"]}, settings=Settings(max_policy_retries=1)))
    ws.add_source(image())
    ws.scheduler(FakeGenerator(delay=0, fail=lambda p: PolicyError("prohibited"))).run()
    item = next(iter(ws.failed))
    assert item.category == POLICY
    with pytest.raises(ValueError):
        ws.retry(item.id)
    assert ws.retry_all() == []
    assert len(ws.failed) == 1
    assert ws.source_status(item.source_id) == SOURCE_PARTIAL


def test_retry_all_filters_by_kind(image):
    ws = workspace(gender=["A", "B"])
    ws.add_source(image())

    def fail(prompt):
        return PolicyError("blocked") if "Gender: A" in prompt else TransientError("overloaded")

    ws.options = ws.options.with_settings(Settings(max_policy_retries=3))
    ws.scheduler(FakeGenerator(delay=0, fail=fail)).run()
    assert {f.category for f in ws.failed} == {POLICY, TRANSIENT}
    jobs = ws.retry_all(TRANSIENT)
    assert [j.summary for j in jobs] == ["B"]
    assert [f.category for f in ws.failed] == [POLICY]


def test_remove_source_drops_pending_work(image):
    ws = workspace(gender=["A", "B"])
    source, _ = ws.add_source(image())
    assert ws.remove_source(source.id)
    assert len(ws.queue) == 0
    assert not ws.remove_source(source.id)


def test_completed_source_status_and_progress(image):
    ws = workspace(gender=["A", "B"])
    source, _ = ws.add_source(image())
    ws.scheduler(FakeGenerator(delay=0)).run()
    assert ws.progress(source.id) == (2, 2)
    assert ws.source_status(source.id) == SOURCE_COMPLETED


def test_state_survives_save_and_load(image, tmp_path):
    ws = workspace(gender=["A", "B", "C"])
    source, _ = ws.add_source(image())
    ws.scheduler(FakeGenerator(delay=0, fail=lambda p: TransientError("overloaded") if "Gender: C" in p else None)).run()
    ws.rerun_source(source.id)
    ws.queue.dequeue_next_eligible()

    conn = connect_db(str(tmp_path / "state.db"))
    try:
        repository.save_options(conn, ws.options)
        ws.save(conn)
        loaded = Workspace.load(conn)
    finally:
        conn.close()

    assert list(loaded.sources) == [source.id]
    assert loaded.sources[source.id].options.values("gender") == ("A", "B", "C")
    assert [j.id for j in loaded.queue] == [j.id for j in ws.queue]
    assert all(j.status == QUEUED for j in loaded.queue)
    assert {r.summary for r in loaded.results} == {"A", "B"}
    assert len(loaded.failed) == 0


def test_load_resets_interrupted_jobs(image, tmp_path):
    ws = workspace(gender=["A"])
    ws.add_source(image())
    job = ws.queue.dequeue_next_eligible()
    assert job.status == PROCESSING

    conn = connect_db(str(tmp_path / "state.db"))
    try:
        ws.save(conn)
        jobs, sources = repository.load_state(conn)
        assert jobs[0].status == PROCESSING
        loaded = Workspace.load(conn)
    finally:
        conn.close()
    assert [j.status for j in loaded.queue] == [QUEUED]


def test_marker_arms_are_all_queued(image):
    ws = workspace(gender=["Female", "Original", "Default"])
    source, jobs = ws.add_source(image())
    assert len(jobs) == source.total_variations == 3
    assert len(ws.queue) == 3
    assert [j.summary for j in ws.queue] == ["Female", "Default", "Default"]

    ws.scheduler(FakeGenerator(delay=0)).run()
    assert ws.progress(source.id) == (3, 3)
    assert ws.rerun_source(source.id) == []


def test_save_is_a_consistent_cut(image, tmp_path):
    ws = workspace(gender=["A"])
    ws.add_source(image())
    job = ws.queue.dequeue_next_eligible()
    sched = ws.scheduler(FakeGenerator(delay=0))
    settler = threading.Thread(target=sched._settle, args=(job, "mem://a", None, 1.0))
    take_snapshot = ws.queue.snapshot

    def snapshot_then_settle():
        jobs = take_snapshot()
        # the job settles while save is still collecting
        settler.start()
        settler.join(timeout=0.2)
        return jobs

    ws.queue.snapshot = snapshot_then_settle
    conn = connect_db(str(tmp_path / "state.db"))
    try:
        ws.save(conn)
        settler.join(timeout=5)
        jobs, _ = repository.load_state(conn)
        results = repository.load_results(conn)
    finally:
        conn.close()

    assert [j.id for j in jobs] == [job.id]
    assert results == []
    assert [r.summary for r in ws.results] == ["A"]


def test_event_log_survives_reload(image, tmp_path):
    ws = workspace(gender=["A"])
    ws.add_source(image())
    ws.scheduler(FakeGenerator(delay=0)).run()

    conn = connect_db(str(tmp_path / "state.db"))
    try:
        ws.save(conn)
        loaded = Workspace.load(conn)
    finally:
        conn.close()

    titles = [e.title for e in loaded.log.entries()]
    assert titles[0] == "Source added"
    assert "Job completed" in titles
    assert [e.id for e in loaded.log.entries()] == [e.id for e in ws.log.entries()]
