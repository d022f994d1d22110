"""Holder for the current session snapshot.

The store is the only place the live snapshot is replaced. Anything that
wants to change the session dispatches an action; anything that reacts to
changes subscribes. Subscribers run synchronously, in subscription order,
after each dispatch.
"""

from __future__ import annotations

from collections.abc import Callable

from gittyup.logging import get_logger
from gittyup.session.actions import Action
from gittyup.session.reducer import transition
from gittyup.session.state import INITIAL_STATE, SessionState

log = get_logger("session")

Listener = Callable[[SessionState], None]


class SessionStore:
    """Owns the current ``SessionState`` and applies actions to it.

    Example:
        store = SessionStore()
        unsubscribe = store.subscribe(lambda state: print(state.phase))
        store.dispatch(log("hello"))
        unsubscribe()
    """

    def __init__(self, initial: SessionState | None = None) -> None:
        self._state = initial or INITIAL_STATE
        self._listeners: list[Listener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def dispatch(self, action: Action) -> SessionState:
        """Apply ``action`` and notify subscribers.

        Exceptions from the reducer (``SessionIntegrityError``) propagate to
        the caller and leave the stored snapshot untouched. Exceptions from
        subscribers are logged and do not stop the remaining subscribers.
        """
        self._state = transition(self._state, action)
        state = self._state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                log.exception("Session listener failed on %s", type(action).__name__)
        return state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
