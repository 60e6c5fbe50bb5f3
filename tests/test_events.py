from __future__ import annotations

from ballotbox.events import BroadcastEvent, EventBus


def test_publish_reaches_subscribers_of_that_topic_only() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(BroadcastEvent.VOTES_UPDATED, lambda: seen.append("votes"))
    bus.subscribe(BroadcastEvent.CANDIDATES_UPDATED, lambda: seen.append("candidates"))

    bus.publish(BroadcastEvent.VOTES_UPDATED)

    assert seen == ["votes"]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[str] = []
    unsubscribe = bus.subscribe(BroadcastEvent.VOTING_STATUS_CHANGED, lambda: seen.append("x"))

    unsubscribe()
    unsubscribe()
    bus.publish(BroadcastEvent.VOTING_STATUS_CHANGED)

    assert seen == []
    assert bus.subscriber_count(BroadcastEvent.VOTING_STATUS_CHANGED) == 0


def test_failing_handler_does_not_break_others() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    bus.subscribe(BroadcastEvent.AUDIT_LOGS_UPDATED, broken)
    bus.subscribe(BroadcastEvent.AUDIT_LOGS_UPDATED, lambda: seen.append("ok"))

    bus.publish(BroadcastEvent.AUDIT_LOGS_UPDATED)

    assert seen == ["ok"]


def test_topic_names_match_wire_names() -> None:
    assert {str(t) for t in BroadcastEvent} == {
        "votesUpdated",
        "votingStatusChanged",
        "resultsVisibilityChanged",
        "candidatesUpdated",
        "auditLogsUpdated",
    }
