"""Entity lifecycle states and the transitions allowed between them."""

from enum import Enum


class EntityState(str, Enum):
    """Lifecycle state of an entity relative to its backing row."""

    DETACHED = "detached"
    ADDED = "added"
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    DELETED = "deleted"


# from-state -> states it may move to. Detached is the default for a fresh
# object so it may go anywhere; Added is treated the same way.
VALID_TRANSITIONS: dict[EntityState, frozenset[EntityState]] = {
    EntityState.DETACHED: frozenset(
        {EntityState.UNCHANGED, EntityState.DELETED, EntityState.ADDED, EntityState.MODIFIED}
    ),
    EntityState.ADDED: frozenset(
        {EntityState.DETACHED, EntityState.UNCHANGED, EntityState.DELETED, EntityState.MODIFIED}
    ),
    EntityState.UNCHANGED: frozenset({EntityState.MODIFIED, EntityState.DELETED}),
    EntityState.MODIFIED: frozenset({EntityState.UNCHANGED, EntityState.DELETED}),
    EntityState.DELETED: frozenset({EntityState.MODIFIED, EntityState.UNCHANGED}),
}

# States in which an entity is known to have a row in the database.
PERSISTED_STATES = frozenset({EntityState.UNCHANGED, EntityState.MODIFIED, EntityState.DELETED})


def try_set_state(current: EntityState, requested: EntityState) -> EntityState:
    """Return the state an entity ends up in after requesting a transition.

    Invalid transitions are ignored: the current state is returned and no
    error is raised.

    Args:
        current: State the entity is in now
        requested: State the caller wants to move to

    Returns:
        ``requested`` if the transition is allowed, otherwise ``current``
    """
    if requested in VALID_TRANSITIONS.get(current, frozenset()):
        return requested
    return current
