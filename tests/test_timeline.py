import pytest

from voicevisit.realtime.timeline import Milestone, Timeline, elapsed_since_start


def test_marks_are_write_once(clock):
    updates = []
    timeline = Timeline(clock=clock, on_update=updates.append)

    assert timeline.mark(Milestone.SESSION_CREATED) is True
    assert timeline.mark(Milestone.SESSION_CREATED) is False
    assert timeline.get(Milestone.SESSION_CREATED) == 100.0
    assert len(updates) == 1


def test_snapshot_is_read_only(clock):
    timeline = Timeline(clock=clock)
    timeline.mark(Milestone.OFFER_CREATED)
    snapshot = timeline.snapshot()

    with pytest.raises(TypeError):
        snapshot[Milestone.OFFER_CREATED] = 0.0
    timeline.mark(Milestone.ANSWER_RECEIVED)
    assert Milestone.ANSWER_RECEIVED not in snapshot


def test_milestone_values_are_camel_case():
    assert [m.value for m in Milestone] == [
        "sessionCreated",
        "offerCreated",
        "answerReceived",
        "audioStarted",
        "firstTranscript",
    ]


def test_elapsed_since_start(clock):
    timeline = Timeline(clock=clock)
    timeline.mark(Milestone.SESSION_CREATED)
    timeline.mark(Milestone.OFFER_CREATED)
    timeline.mark(Milestone.ANSWER_RECEIVED)

    elapsed = elapsed_since_start(timeline.snapshot())
    assert elapsed[Milestone.OFFER_CREATED] == 1.0
    assert elapsed[Milestone.ANSWER_RECEIVED] == 2.0
    assert elapsed[Milestone.AUDIO_STARTED] is None
    assert Milestone.SESSION_CREATED not in elapsed


def test_elapsed_without_start_is_unknown(clock):
    timeline = Timeline(clock=clock)
    timeline.mark(Milestone.OFFER_CREATED)
    assert elapsed_since_start(timeline.snapshot())[Milestone.OFFER_CREATED] is None
