"""
tests/test_roles.py -- Unit tests for the role hierarchy in auth/roles.py.
"""

from __future__ import annotations

import pytest

from auth.models import Role
from auth.roles import rank, satisfies


def test_ranks_are_strictly_ordered():
    assert rank(Role.USER) < rank(Role.EDITOR) < rank(Role.ADMIN)


@pytest.mark.parametrize(
    ("actual", "required", "expected"),
    [
        (Role.ADMIN, Role.ADMIN, True),
        (Role.ADMIN, Role.EDITOR, True),
        (Role.ADMIN, Role.USER, True),
        (Role.EDITOR, Role.ADMIN, False),
        (Role.EDITOR, Role.EDITOR, True),
        (Role.EDITOR, Role.USER, True),
        (Role.USER, Role.ADMIN, False),
        (Role.USER, Role.EDITOR, False),
        (Role.USER, Role.USER, True),
    ],
)
def test_satisfies_matrix(actual, required, expected):
    assert satisfies(actual, required) is expected


def test_rank_accepts_raw_role_strings():
    """Values read back from the database arrive as plain strings."""
    assert rank("EDITOR") == rank(Role.EDITOR)


def test_unknown_role_is_rejected():
    with pytest.raises(ValueError):
        rank("SUPERUSER")
