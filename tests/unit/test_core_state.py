"""Unit tests for the state store."""

from pathlib import Path

import pytest

from provisioner.core.errors import ConfigError
from provisioner.core.state import Outcome, ProvisioningState, StateStore, StepResult


class TestProvisioningState:
    """Tests for ProvisioningState."""

    def test_latest_result_wins(self) -> None:
        """Test that a newer result supersedes an older one."""
        state = ProvisioningState()
        state.record(StepResult(step_id="a", outcome=Outcome.FAILED))
        state.record(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        assert state.get("a").outcome is Outcome.SUCCEEDED
        assert len(state) == 1

    def test_completed(self) -> None:
        """Test that succeeded and skipped results count as done."""
        state = ProvisioningState(
            {
                "ok": StepResult(step_id="ok", outcome=Outcome.SUCCEEDED),
                "skip": StepResult(step_id="skip", outcome=Outcome.SKIPPED),
                "bad": StepResult(step_id="bad", outcome=Outcome.FAILED),
            }
        )
        assert state.completed("ok")
        assert state.completed("skip")
        assert not state.completed("bad")
        assert not state.completed("missing")

    def test_contains_and_iter(self) -> None:
        """Test membership and iteration."""
        state = ProvisioningState()
        state.record(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        assert "a" in state
        assert "b" not in state
        assert [r.step_id for r in state] == ["a"]


class TestStateStore:
    """Tests for StateStore."""

    def test_load_missing_file(self, state_path: Path) -> None:
        """Test that a missing state file loads as empty state."""
        assert len(StateStore(state_path).load()) == 0

    def test_append_and_load(self, state_path: Path) -> None:
        """Test that appended results survive a new store instance."""
        store = StateStore(state_path)
        store.append(
            StepResult(step_id="a", outcome=Outcome.SUCCEEDED, duration=1.5, diagnostic="ok")
        )
        store.append(
            StepResult(step_id="b", outcome=Outcome.FAILED, diagnostic="boom", error="execution")
        )

        state = StateStore(state_path).load()
        assert state.get("a").outcome is Outcome.SUCCEEDED
        assert state.get("a").duration == 1.5
        assert state.get("b").error == "execution"
        assert state.get("b").diagnostic == "boom"

    def test_append_creates_directory(self, tmp_path: Path) -> None:
        """Test that missing parent directories are created."""
        path = tmp_path / "deep" / "er" / "state.yaml"
        StateStore(path).append(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        assert path.exists()

    def test_file_is_append_only(self, state_path: Path) -> None:
        """Test that each result is a separate YAML document."""
        store = StateStore(state_path)
        store.append(StepResult(step_id="a", outcome=Outcome.FAILED))
        store.append(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))

        text = state_path.read_text()
        assert text.count("---\n") == 2
        assert "outcome: failed" in text
        assert store.load().get("a").outcome is Outcome.SUCCEEDED

    def test_timestamps_round_trip(self, state_path: Path) -> None:
        """Test that timestamps are kept as timezone aware datetimes."""
        store = StateStore(state_path)
        result = StepResult(step_id="a", outcome=Outcome.SUCCEEDED)
        store.append(result)
        assert store.load().get("a").timestamp == result.timestamp

    def test_corrupt_file(self, state_path: Path) -> None:
        """Test that an unparsable complete entry raises ConfigError."""
        state_path.parent.mkdir(parents=True)
        state_path.write_text("---\nstep_id: [unclosed\n...\n")
        with pytest.raises(ConfigError, match="is corrupt"):
            StateStore(state_path).load()

    def test_invalid_document(self, state_path: Path) -> None:
        """Test that a complete entry with an unknown outcome raises ConfigError."""
        state_path.parent.mkdir(parents=True)
        state_path.write_text("---\nstep_id: a\noutcome: exploded\n...\n")
        with pytest.raises(ConfigError, match="is corrupt"):
            StateStore(state_path).load()

    def test_interrupted_append_is_dropped(self, state_path: Path) -> None:
        """Test that a half-written last entry does not block loading."""
        store = StateStore(state_path)
        store.append(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        with state_path.open("a") as f:
            f.write("---\nstep_id: b\nout")

        state = store.load()

        assert state.completed("a")
        assert "b" not in state

    def test_append_after_interrupted_entry(self, state_path: Path) -> None:
        """Test that results recorded after a cut-short entry still load."""
        store = StateStore(state_path)
        store.append(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        with state_path.open("a") as f:
            f.write("---\nstep_id: b\nout")
        store.append(StepResult(step_id="b", outcome=Outcome.FAILED, error="execution"))
        store.append(StepResult(step_id="c", outcome=Outcome.SUCCEEDED))

        state = StateStore(state_path).load()

        assert state.completed("a")
        assert state.get("b").outcome is Outcome.FAILED
        assert state.completed("c")

    def test_entries_end_with_marker(self, state_path: Path) -> None:
        """Test that every written entry is terminated."""
        store = StateStore(state_path)
        store.append(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        assert state_path.read_text().endswith("\n...\n")

    def test_empty_documents_ignored(self, state_path: Path) -> None:
        """Test that empty documents in the stream are skipped."""
        state_path.parent.mkdir(parents=True)
        state_path.write_text("---\n---\nstep_id: a\noutcome: succeeded\n")
        assert StateStore(state_path).load().completed("a")

    def test_clear(self, state_path: Path) -> None:
        """Test that clear forgets every result and tolerates a missing file."""
        store = StateStore(state_path)
        store.append(StepResult(step_id="a", outcome=Outcome.SUCCEEDED))
        store.clear()
        assert not state_path.exists()
        store.clear()
        assert len(store.load()) == 0
