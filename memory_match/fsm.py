from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from memory_match.exceptions import InvariantViolation
from memory_match.models import Card, CardState, Session, SessionPhase


class CardFSM(StateMachine):
    """Per-card lifecycle.

    hidden -> revealing -> revealed -> hiding -> hidden, or revealed -> matched (final).
    The machine knows nothing about sibling cards; the coordinator enforces the
    two-face-up limit.
    """

    hidden = State(CardState.hidden.value, value=CardState.hidden.value, initial=True)
    revealing = State(CardState.revealing.value, value=CardState.revealing.value)
    revealed = State(CardState.revealed.value, value=CardState.revealed.value)
    hiding = State(CardState.hiding.value, value=CardState.hiding.value)
    matched = State(CardState.matched.value, value=CardState.matched.value, final=True)

    reveal = hidden.to(revealing)
    reveal_done = revealing.to(revealed)
    hide = revealed.to(hiding)
    hide_done = hiding.to(hidden)
    match = revealed.to(matched)

    def __init__(self, card: Card):
        self.card = card
        super().__init__(start_value=card.state.value)

    def sync_state_to_model(self) -> None:
        self.card.state = CardState(str(self.current_state.value))


class SessionFSM(StateMachine):
    """Session phases: setup -> preview_all -> active <-> resolving -> complete."""

    setup = State(SessionPhase.setup.value, value=SessionPhase.setup.value, initial=True)
    preview_all = State(SessionPhase.preview_all.value, value=SessionPhase.preview_all.value)
    active = State(SessionPhase.active.value, value=SessionPhase.active.value)
    resolving = State(SessionPhase.resolving.value, value=SessionPhase.resolving.value)
    complete = State(SessionPhase.complete.value, value=SessionPhase.complete.value, final=True)

    start_preview = setup.to(preview_all)
    start_play = preview_all.to(active)
    begin_resolution = active.to(resolving)
    end_resolution = resolving.to(active)
    finish = resolving.to(complete)

    def __init__(self, session: Session):
        self.session = session
        super().__init__(start_value=session.phase.value)

    def sync_phase_to_model(self) -> None:
        self.session.phase = SessionPhase(str(self.current_state.value))


def transition_card(card: Card, event: str) -> Card:
    fsm = CardFSM(card)
    try:
        fsm.send(event)
    except TransitionNotAllowed as e:
        raise InvariantViolation(f"Card {card.position} cannot '{event}' from state '{card.state.value}'") from e
    fsm.sync_state_to_model()
    return card


def transition_session(session: Session, event: str) -> Session:
    fsm = SessionFSM(session)
    try:
        fsm.send(event)
    except TransitionNotAllowed as e:
        raise InvariantViolation(f"Session cannot '{event}' from phase '{session.phase.value}'") from e
    fsm.sync_phase_to_model()
    return session
