"""Tests for SessionStore."""

from __future__ import annotations

import logging

import pytest

from gittyup.session import (
    INITIAL_STATE,
    SessionIntegrityError,
    SessionState,
    SessionStore,
    UserRecord,
    initialize,
    log,
)


class TestSessionStore:
    def test_starts_from_initial_state(self) -> None:
        assert SessionStore().state is INITIAL_STATE

    def test_dispatch_replaces_snapshot(self, store: SessionStore) -> None:
        before = store.state
        after = store.dispatch(log("hello"))

        assert store.state is after
        assert before.logs == ()
        assert after.logs[-1].text == "hello"

    def test_subscribers_see_each_snapshot_in_order(self, store: SessionStore) -> None:
        seen: list[tuple[str, int]] = []
        store.subscribe(lambda state: seen.append(("first", len(state.logs))))
        store.subscribe(lambda state: seen.append(("second", len(state.logs))))

        store.dispatch(log("a"))
        store.dispatch(log("b"))

        assert seen == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]

    def test_unsubscribe(self, store: SessionStore) -> None:
        seen: list[SessionState] = []
        unsubscribe = store.subscribe(seen.append)
        store.dispatch(log("a"))
        unsubscribe()
        unsubscribe()
        store.dispatch(log("b"))
        assert len(seen) == 1

    def test_failing_subscriber_does_not_stop_others(
        self, store: SessionStore, caplog: pytest.LogCaptureFixture
    ) -> None:
        seen: list[SessionState] = []

        def broken(state: SessionState) -> None:
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="gittyup.session"):
            store.dispatch(log("a"))

        assert len(seen) == 1
        assert "Session listener failed" in caplog.text

    def test_integrity_error_propagates_and_keeps_snapshot(self, store: SessionStore) -> None:
        before = store.state
        with pytest.raises(SessionIntegrityError):
            store.dispatch(
                initialize(
                    current_user_id=1,
                    users=[UserRecord(id=2, name="Ann")],
                    files=[],
                    repository_id="r",
                    commit_id="c",
                )
            )
        assert store.state is before
