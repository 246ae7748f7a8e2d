from __future__ import annotations

import json
from pathlib import Path

from ab.agent.transcript import TranscriptRecorder


def test_transcript_round_trip(tmp_path: Path) -> None:
    recorder = TranscriptRecorder(tmp_path / "transcripts")

    transcript_id = recorder.start("Build a counter")
    recorder.add_entry("user", "Build a counter")
    recorder.add_entry("assistant", [{"type": "text", "text": "Done"}], {"model": "m", "stopReason": "end_turn"})
    recorder.end(transcript_id, "Done")
    path = recorder.save()

    assert path == tmp_path / "transcripts" / f"transcript-{transcript_id}.json"
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["id"] == transcript_id
    assert document["request"] == "Build a counter"
    assert document["result"] == "Done"
    assert document["endTime"] is not None
    assert [entry["role"] for entry in document["entries"]] == ["user", "assistant"]
    assert "metadata" not in document["entries"][0]
    assert document["entries"][1]["metadata"]["stopReason"] == "end_turn"


def test_disabled_recorder_writes_nothing(tmp_path: Path) -> None:
    recorder = TranscriptRecorder(tmp_path, enabled=False)
    recorder.start("x")

    assert recorder.save() is None
    assert list(tmp_path.iterdir()) == []


def test_entries_without_active_transcript_are_ignored(tmp_path: Path) -> None:
    recorder = TranscriptRecorder(tmp_path)
    recorder.add_entry("user", "orphan")
    recorder.end("unknown")

    assert recorder.current is None
    assert recorder.save() is None


def test_save_failure_returns_none(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    recorder = TranscriptRecorder(blocker)
    recorder.start("x")

    assert recorder.save() is None
