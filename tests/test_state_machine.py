"""Unit tests for order status transition rules and actor resolution."""

import pytest

from vaultmarket.common.errors import BadRequestError, ForbiddenError
from vaultmarket.common.state_machine import (
    ADMIN,
    ALLOWED_TRANSITIONS,
    BUYER,
    ORDER_STATUSES,
    SELLER,
    SYSTEM_ROLE,
    TERMINAL_STATUSES,
    ActorContext,
    allowed_actor_transitions,
    allowed_transitions,
    assert_actor_transition,
    assert_transition,
    can_transition,
    resolve_actor,
    resolve_role,
)


class _Order:
    buyer_id = "b"
    seller_id = "s"


@pytest.mark.parametrize(
    ("current", "new", "role"),
    [
        ("pending", "paid", SYSTEM_ROLE),
        ("pending", "cancelled", BUYER),
        ("pending", "cancelled", SELLER),
        ("pending", "cancelled", SYSTEM_ROLE),
        ("paid", "shipped", SELLER),
        ("paid", "disputed", BUYER),
        ("paid", "cancelled", ADMIN),
        ("shipped", "delivered", BUYER),
        ("shipped", "disputed", BUYER),
        ("disputed", "refunded", ADMIN),
        ("disputed", "delivered", ADMIN),
    ],
)
def test_legal_transitions(current, new, role):
    """Every row of the transition table is accepted for its role."""

    assert can_transition(current, new, role)
    assert_transition(current, new, role)


def test_unreachable_transition_is_bad_request():
    """Skipping a step is rejected regardless of role."""

    with pytest.raises(BadRequestError) as exc:
        assert_transition("pending", "shipped", SELLER)
    assert exc.value.message == 'Cannot transition order from "pending" to "shipped"'


def test_wrong_role_is_forbidden():
    with pytest.raises(ForbiddenError):
        assert_transition("paid", "shipped", BUYER)
    assert not can_transition("paid", "shipped", BUYER)


def test_only_system_marks_paid():
    for role in (BUYER, SELLER, ADMIN):
        assert not can_transition("pending", "paid", role)


def test_terminal_statuses_have_no_exits():
    assert TERMINAL_STATUSES == {"delivered", "refunded", "cancelled"}
    for status in TERMINAL_STATUSES:
        assert allowed_transitions(status) == []
        for target in ORDER_STATUSES:
            assert not can_transition(status, target, ADMIN)


def test_unknown_status_is_rejected():
    with pytest.raises(BadRequestError):
        assert_transition("lost", "paid", SYSTEM_ROLE)
    assert not can_transition("lost", "paid", SYSTEM_ROLE)


def test_allowed_transitions_filters_by_role():
    assert allowed_transitions("paid") == list(ALLOWED_TRANSITIONS["paid"])
    assert allowed_transitions("paid", SELLER) == ["shipped"]
    assert allowed_transitions("paid", BUYER) == ["disputed"]
    assert allowed_transitions("shipped", SELLER) == []


def test_resolve_role():
    assert resolve_role("b", _Order()) == BUYER
    assert resolve_role("s", _Order()) == SELLER
    assert resolve_role("x", _Order()) is None


def test_actor_without_roles_is_refused():
    """Non-participants are refused before the table is consulted."""

    actor = resolve_actor("x", _Order())
    assert actor.roles == ()
    with pytest.raises(ForbiddenError):
        assert_actor_transition("paid", "shipped", actor)


def test_admin_actor_applies_admin_transitions():
    actor = resolve_actor("x", _Order(), is_admin=True)
    assert actor.roles == (ADMIN,)
    assert assert_actor_transition("disputed", "refunded", actor) == ADMIN
    assert allowed_actor_transitions("paid", actor) == ["cancelled"]


def test_participant_admin_holds_both_roles():
    actor = ActorContext(user_id="s", participant_role=SELLER, is_admin=True)
    assert actor.roles == (SELLER, ADMIN)
    assert allowed_actor_transitions("paid", actor) == ["shipped", "cancelled"]
    assert assert_actor_transition("paid", "shipped", actor) == SELLER


def test_actor_with_wrong_role_is_forbidden():
    actor = resolve_actor("b", _Order())
    with pytest.raises(ForbiddenError) as exc:
        assert_actor_transition("paid", "shipped", actor)
    assert "seller" in exc.value.message


def test_every_triple_matches_the_table():
    """Absent -> bad request, present but wrong role -> forbidden, otherwise allowed."""

    for current in ORDER_STATUSES:
        for new in ORDER_STATUSES:
            for role in (BUYER, SELLER, SYSTEM_ROLE, ADMIN):
                allowed_by = ALLOWED_TRANSITIONS[current].get(new)
                if allowed_by is None:
                    with pytest.raises(BadRequestError):
                        assert_transition(current, new, role)
                elif role not in allowed_by:
                    with pytest.raises(ForbiddenError):
                        assert_transition(current, new, role)
                else:
                    assert_transition(current, new, role)
