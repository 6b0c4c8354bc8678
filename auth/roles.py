"""
auth/roles.py -- Role hierarchy resolver.

USER < EDITOR < ADMIN. The rank table is the only place the ordering lives;
every privileged check goes through satisfies().
"""

from __future__ import annotations

from auth.models import Role

_RANKS: dict[Role, int] = {
    Role.USER: 0,
    Role.EDITOR: 1,
    Role.ADMIN: 2,
}


def rank(role: Role) -> int:
    """Return the numeric rank of a role."""
    return _RANKS[Role(role)]


def satisfies(actual: Role, required: Role) -> bool:
    """Return True if a caller holding `actual` may act where `required` is needed."""
    return rank(actual) >= rank(required)
