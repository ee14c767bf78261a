import pytest

from chromactl import factory
from chromactl.errors import InvariantViolation
from chromactl.factory import create_jobs
from chromactl.models import QUEUED, OptionSet


def test_one_job_per_combination_sharing_source_and_snapshot():
    opts = OptionSet(selections={"gender": ["A", "B"], "aspect_ratio": ["16:9", "Original"]})
    jobs = create_jobs("src-1", opts)
    assert len(jobs) == 4
    assert {j.source_id for j in jobs} == {"src-1"}
    assert all(j.status == QUEUED and j.retry_count == 0 for j in jobs)
    assert len({j.id for j in jobs}) == 4
    assert [j.aspect_ratio for j in jobs] == ["16:9", None, "16:9", None]
    assert jobs[0].summary == "A, 16:9"
    assert jobs[1].summary == "A"
    assert all(j.options is jobs[0].options for j in jobs)


def test_later_option_edits_do_not_reach_created_jobs():
    live = OptionSet(selections={"gender": ["A"]})
    jobs = create_jobs("src-1", live)
    live = live.toggle("gender", "B").with_combined("hair")
    assert jobs[0].options.values("gender") == ("A",)
    assert not jobs[0].options.is_combined("hair")
    assert live.values("gender") == ("A", "B")


def test_empty_expansion_is_an_invariant_violation(monkeypatch):
    monkeypatch.setattr(factory, "expand", lambda opts: [])
    with pytest.raises(InvariantViolation):
        create_jobs("src-1", OptionSet())
