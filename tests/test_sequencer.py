import threading

import pytest

from literate_loader.loading import EventSequencer, LoadEventType


def test_concurrent_emits_are_gap_free():
    received = []
    sequencer = EventSequencer("p1", [received.append])

    def produce():
        for _ in range(200):
            sequencer.emit(LoadEventType.FOUND_FILE, path="x.md")

    threads = [threading.Thread(target=produce) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    events = sequencer.events
    assert len(sequencer) == 1600
    assert [e.sequence_number for e in events] == list(range(1600))
    assert [e.sequence_number for e in received] == list(range(1600))


def test_late_subscribers_only_see_new_events():
    sequencer = EventSequencer("p1")
    sequencer.emit(LoadEventType.STARTED_WALK)
    late = []
    sequencer.subscribe(late.append)
    sequencer.emit(LoadEventType.FINISHED_WALK)
    assert [e.sequence_number for e in late] == [1]


def test_event_wire_shape_omits_unset_fields():
    event = EventSequencer("p1").emit(LoadEventType.FOUND_FILE, path="a.md", event_data={"size_bytes": 3})
    payload = event.to_dict()
    assert payload["event_type"] == "found_file"
    assert payload["sequence_number"] == 0
    assert payload["event_data"] == {"size_bytes": 3}
    assert "task_ref" not in payload
    assert event.category == "walk"
    assert not event.is_error


def test_listener_can_emit_without_deadlock():
    sequencer = EventSequencer("p1")
    seen = []

    def follow_up(event):
        seen.append((event.sequence_number, event.event_type))
        if event.event_type == LoadEventType.FOUND_FILE:
            sequencer.emit(LoadEventType.STARTED_PARSING_DOC, path=event.path)

    sequencer.subscribe(follow_up)
    sequencer.emit(LoadEventType.FOUND_FILE, path="a.md")
    sequencer.emit(LoadEventType.FINISHED_WALK)

    assert seen == [
        (0, LoadEventType.FOUND_FILE),
        (1, LoadEventType.STARTED_PARSING_DOC),
        (2, LoadEventType.FINISHED_WALK),
    ]


def test_failing_listener_does_not_block_later_events():
    sequencer = EventSequencer("p1")
    seen = []

    def flaky(event):
        if event.sequence_number == 0:
            raise RuntimeError("listener failed")
        seen.append(event.sequence_number)

    sequencer.subscribe(flaky)
    with pytest.raises(RuntimeError):
        sequencer.emit(LoadEventType.STARTED_WALK)
    sequencer.emit(LoadEventType.FINISHED_WALK)
    assert seen == [1]
