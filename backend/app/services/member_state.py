"""
Member lifecycle rules

    trial ──────────► ativo ◄──────────┐
      │                 │              │
      │                 ▼              │
      │           inadimplente ────────┘
      │                 │
      ▼                 ▼
    removido ◄──────────┘   (ativo → removido as well)

`removido` is terminal here. Re-entry goes through the dedicated
reactivation store operations, never through `transition_status`.
"""
from app.enums import MemberStatus

VALID_TRANSITIONS: dict[MemberStatus, frozenset[MemberStatus]] = {
    MemberStatus.trial: frozenset({MemberStatus.ativo, MemberStatus.removido}),
    MemberStatus.ativo: frozenset({MemberStatus.inadimplente, MemberStatus.removido}),
    MemberStatus.inadimplente: frozenset({MemberStatus.ativo, MemberStatus.removido}),
    MemberStatus.removido: frozenset(),
}


def _as_status(value: str) -> MemberStatus | None:
    try:
        return MemberStatus(value)
    except ValueError:
        return None


def can_transition(current: str, new: str) -> bool:
    """
    Whether a member may move from `current` to `new`

    Unknown statuses and self-transitions are rejected.
    """
    current_status = _as_status(current)
    new_status = _as_status(new)
    if current_status is None or new_status is None:
        return False
    if current_status == new_status:
        return False
    return new_status in VALID_TRANSITIONS[current_status]
