"""Order state machine: which status transitions are legal and who may apply them.

Every code path that changes an order status consults this table first.

    pending ──> paid ──> shipped ──> delivered
       │          │         │
       v          v         v
    cancelled  disputed  disputed
                  │
                  v
         refunded / delivered (admin resolution)
"""

from dataclasses import dataclass

from vaultmarket.common.errors import BadRequestError, ForbiddenError

PENDING = "pending"
PAID = "paid"
SHIPPED = "shipped"
DELIVERED = "delivered"
DISPUTED = "disputed"
REFUNDED = "refunded"
CANCELLED = "cancelled"

ORDER_STATUSES = (PENDING, PAID, SHIPPED, DELIVERED, DISPUTED, REFUNDED, CANCELLED)

BUYER = "buyer"
SELLER = "seller"
SYSTEM_ROLE = "system"
ADMIN = "admin"

TRANSITION_ROLES = (BUYER, SELLER, SYSTEM_ROLE, ADMIN)

# from-status -> {to-status: roles allowed to apply it}. Insertion order is the
# order in which actions are offered.
ALLOWED_TRANSITIONS: dict[str, dict[str, frozenset[str]]] = {
    PENDING: {
        PAID: frozenset({SYSTEM_ROLE}),
        CANCELLED: frozenset({BUYER, SELLER, SYSTEM_ROLE}),
    },
    PAID: {
        SHIPPED: frozenset({SELLER}),
        DISPUTED: frozenset({BUYER}),
        CANCELLED: frozenset({ADMIN}),
    },
    SHIPPED: {
        DELIVERED: frozenset({BUYER}),
        DISPUTED: frozenset({BUYER}),
    },
    DELIVERED: {},
    DISPUTED: {
        REFUNDED: frozenset({ADMIN}),
        DELIVERED: frozenset({ADMIN}),
    },
    REFUNDED: {},
    CANCELLED: {},
}

TERMINAL_STATUSES = frozenset(status for status, rules in ALLOWED_TRANSITIONS.items() if not rules)


def _rules(current: str) -> dict[str, frozenset[str]]:
    if current not in ALLOWED_TRANSITIONS:
        raise BadRequestError(f'Unknown order status "{current}"')
    return ALLOWED_TRANSITIONS[current]


def can_transition(current: str, new: str, role: str) -> bool:
    """Return whether `role` may move an order from `current` to `new`."""

    return role in ALLOWED_TRANSITIONS.get(current, {}).get(new, frozenset())


def assert_transition(current: str, new: str, role: str) -> None:
    """Raise unless `role` may move an order from `current` to `new`.

    `BadRequestError` when no role can reach `new` from `current`,
    `ForbiddenError` when the transition exists but belongs to other roles.
    """

    allowed_by = _rules(current).get(new)
    if allowed_by is None:
        raise BadRequestError(f'Cannot transition order from "{current}" to "{new}"')
    if role not in allowed_by:
        raise ForbiddenError(
            f'Role "{role}" cannot transition order from "{current}" to "{new}" '
            f"(requires {_describe_roles(allowed_by)})"
        )


def allowed_transitions(current: str, role: str | None = None) -> list[str]:
    """List statuses reachable from `current`, optionally only those open to `role`."""

    rules = _rules(current)
    if role is None:
        return list(rules)
    return [target for target, allowed_by in rules.items() if role in allowed_by]


def resolve_role(user_id: str, order) -> str | None:
    """Return the caller's relationship to `order`, or None for non-participants."""

    if user_id == order.buyer_id:
        return BUYER
    if user_id == order.seller_id:
        return SELLER
    return None


def _describe_roles(roles) -> str:
    return " or ".join(sorted(roles))


@dataclass(frozen=True)
class ActorContext:
    """Who is acting on an order, resolved once per request."""

    user_id: str
    participant_role: str | None
    is_admin: bool = False

    @property
    def roles(self) -> tuple[str, ...]:
        roles = []
        if self.participant_role is not None:
            roles.append(self.participant_role)
        if self.is_admin:
            roles.append(ADMIN)
        return tuple(roles)


def resolve_actor(user_id: str, order, is_admin: bool = False) -> ActorContext:
    """Build the actor context for `user_id` acting on `order`."""

    return ActorContext(user_id=user_id, participant_role=resolve_role(user_id, order), is_admin=is_admin)


def assert_actor_transition(current: str, new: str, actor: ActorContext) -> str:
    """Check a transition against every role the actor holds.

    Returns the role the transition is applied under. Actors without any role
    are refused outright.
    """

    if not actor.roles:
        raise ForbiddenError("Only the buyer or seller of this order can change it")
    allowed_by = _rules(current).get(new)
    if allowed_by is None:
        raise BadRequestError(f'Cannot transition order from "{current}" to "{new}"')
    for role in actor.roles:
        if role in allowed_by:
            return role
    raise ForbiddenError(
        f'Only the {_describe_roles(allowed_by)} can transition this order from "{current}" to "{new}"'
    )


def allowed_actor_transitions(current: str, actor: ActorContext) -> list[str]:
    """Statuses the actor may move an order to, in table order."""

    return [
        target
        for target, allowed_by in _rules(current).items()
        if any(role in allowed_by for role in actor.roles)
    ]
