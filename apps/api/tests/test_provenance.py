"""Tests for the provenance event log."""

import pytest

from attest_api.events.bus import PROVENANCE_APPENDED, EventBus
from attest_api.models import ProvenanceEvent
from attest_api.provenance.log import ProvenanceLog


def test_append_returns_id_and_ts(db):
    log = ProvenanceLog(db)
    result = log.append("42", "rename", "human", actor_id="u1", details={"from": "a", "to": "b"})
    assert result.id > 0
    assert result.ts > 0

    event = db.query(ProvenanceEvent).one()
    assert event.subject_id == "42"
    assert event.actor == "human"
    assert event.details == {"from": "a", "to": "b"}


def test_append_takes_workspace_from_details(db):
    ProvenanceLog(db).append("1", "export:pdf", "system", details={"workspaceId": "ws9"})
    assert db.query(ProvenanceEvent).one().workspace_id == "ws9"


def test_unknown_actor_is_rejected(db):
    with pytest.raises(ValueError):
        ProvenanceLog(db).append("1", "rename", "robot")
    assert db.query(ProvenanceEvent).count() == 0


def test_empty_action_is_rejected(db):
    with pytest.raises(ValueError):
        ProvenanceLog(db).append("1", "", "human")


def test_recent_is_newest_first_with_ranges(db):
    log = ProvenanceLog(db)
    for ts in (100, 200, 300, 300):
        log.append("1", "edit", "human", ts=ts)
    log.append("2", "edit", "human", ts=250)

    events = log.recent("1", limit=10)
    assert [e.ts for e in events] == [300, 300, 200, 100]
    assert events[0].id > events[1].id

    assert [e.ts for e in log.recent("1", limit=10, before=300)] == [200, 100]
    assert [e.ts for e in log.recent("1", limit=10, from_ts=200, to_ts=300)] == [300, 300, 200]
    assert len(log.recent("1", limit=2)) == 2


def test_append_publishes_event(db):
    bus = EventBus()
    received = []
    bus.subscribe(PROVENANCE_APPENDED, received.append)
    result = ProvenanceLog(db, bus=bus).append("1", "rename", "human", ts=5)
    assert received == [{"subjectId": "1", "action": "rename", "id": result.id, "ts": 5}]
