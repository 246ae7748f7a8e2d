from __future__ import annotations

from typing import List

from ab.agent.phases import AgentPhase, PhaseEvent, PhaseTracker, chunk_words


def _tracker(events: List[PhaseEvent], sleeps: List[float], chunk_size: int = 2) -> PhaseTracker:
    return PhaseTracker(events.append, chunk_size=chunk_size, delay_ms=25, sleep=sleeps.append)


def test_chunk_words_keeps_whitespace() -> None:
    assert chunk_words("one two three four five", 2) == ["one two ", "three four ", "five"]
    assert chunk_words("", 3) == []
    assert "".join(chunk_words("  spaced\n\nout  text ", 1)) == "  spaced\n\nout  text "


def test_text_then_tools_replays_reasoning() -> None:
    events: List[PhaseEvent] = []
    sleeps: List[float] = []
    tracker = _tracker(events, sleeps)

    tracker.begin_request()
    tracker.begin_turn()
    tracker.observe_text("I will read ")
    tracker.observe_text("the file first.")
    tracker.tools_requested()

    assert tracker.transitions == [AgentPhase.THINKING, AgentPhase.REASONING, AgentPhase.CODE_WRITING]
    assert [event.text for event in events if event.phase is AgentPhase.REASONING and event.text] == [
        "I will ",
        "read the ",
        "file first.",
    ]
    assert sleeps == [0.025, 0.025]
    assert tracker.buffered_text == ""


def test_closing_text_after_tools_replays_as_building() -> None:
    events: List[PhaseEvent] = []
    tracker = _tracker(events, [])

    tracker.begin_request()
    tracker.begin_turn()
    tracker.tools_requested()
    tracker.begin_turn()
    tracker.observe_text("All done.")
    tracker.finish(tools_ran=True)

    assert tracker.transitions == [AgentPhase.CODE_WRITING, AgentPhase.BUILDING, AgentPhase.COMPLETED]
    assert PhaseEvent(AgentPhase.BUILDING, "All done.") in events
    assert tracker.phase is AgentPhase.COMPLETED


def test_plain_answer_goes_thinking_to_completed() -> None:
    events: List[PhaseEvent] = []
    tracker = _tracker(events, [])

    tracker.begin_request()
    tracker.begin_turn()
    tracker.observe_text("Hello!")
    tracker.finish(tools_ran=False)

    assert tracker.transitions == [AgentPhase.THINKING, AgentPhase.COMPLETED]
    assert all(event.text is None for event in events)


def test_begin_request_resets_state() -> None:
    tracker = PhaseTracker(sleep=lambda _: None)
    tracker.observe_text("x")
    tracker.finish(tools_ran=False)

    tracker.begin_request()

    assert tracker.phase is AgentPhase.IDLE
    assert tracker.transitions == []
    assert tracker.buffered_text == ""
