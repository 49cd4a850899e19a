"""Order settlement logic.

Consults the state machine before every status change, applies changes as
conditional updates guarded by the expected prior status, and then runs the
consequences: durable seller balance updates inside the request, email and
in-app notifications through the fire-and-forget dispatcher.
"""

from sqlalchemy import select, update
from sqlalchemy.orm import joinedload

from vaultmarket.common.config import CommonSettings
from vaultmarket.common.dispatch import Dispatcher
from vaultmarket.common.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from vaultmarket.common.fees import split_fees
from vaultmarket.common.logging import logger, order_id_ctx
from vaultmarket.common.metrics import order_transition_conflicts_total, order_transitions_total
from vaultmarket.common.state_machine import (
    ADMIN,
    CANCELLED,
    DELIVERED,
    DISPUTED,
    PAID,
    PENDING,
    REFUNDED,
    SHIPPED,
    SYSTEM_ROLE,
    ActorContext,
    allowed_actor_transitions,
    assert_actor_transition,
    assert_transition,
    resolve_actor,
)
from vaultmarket.services.ledger.service import LedgerService
from vaultmarket.services.marketplace.models import Dispute, Listing, Order, OrderTimeline, ShippingAddress, User
from vaultmarket.services.marketplace.schemas import CreateOrderParams, ShippingAddressIn
from vaultmarket.services.notification.email import EmailClient, OrderDetails
from vaultmarket.services.notification.service import NotificationService
from vaultmarket.services.payments.providers import build_gateways


class AuthorizationService:
    """Answers whether a user holds the platform admin role."""

    def is_admin(self, db, user_id: str) -> bool:
        role = db.execute(select(User.role).where(User.id == user_id)).scalar_one_or_none()
        return role == ADMIN


class SettlementService:
    """Owns order status progression and the side effects of each step."""

    def __init__(
        self,
        session_factory,
        ledger: LedgerService,
        notifications: NotificationService,
        email: EmailClient,
        dispatcher: Dispatcher,
        gateways: dict | None = None,
        fee_bps: int | None = None,
        authz: AuthorizationService | None = None,
        service_name: str = "marketplace",
    ) -> None:
        self.session_factory = session_factory
        self.ledger = ledger
        self.notifications = notifications
        self.email = email
        self.dispatcher = dispatcher
        self.gateways = gateways or {}
        self.fee_bps = fee_bps
        self.authz = authz or AuthorizationService()
        self.service_name = service_name

    @classmethod
    def from_settings(cls, config: CommonSettings, session_factory, dispatcher: Dispatcher) -> "SettlementService":
        """Wire the service with configured providers, as each app does at startup."""

        return cls(
            session_factory,
            ledger=LedgerService(session_factory, service_name=config.service_name),
            notifications=NotificationService(session_factory, service_name=config.service_name),
            email=EmailClient.from_settings(config),
            dispatcher=dispatcher,
            gateways=build_gateways(config),
            fee_bps=config.platform_fee_bps,
            service_name=config.service_name,
        )

    # -- lookups -----------------------------------------------------------

    def _load_order(self, db, order_id: str) -> Order | None:
        return db.execute(
            select(Order)
            .where(Order.id == order_id)
            .options(joinedload(Order.listing), joinedload(Order.buyer), joinedload(Order.seller))
        ).scalar_one_or_none()

    def _require_order(self, db, order_id: str) -> Order:
        order = self._load_order(db, order_id)
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def resolve_actor(self, db, user_id: str, order: Order) -> ActorContext:
        return resolve_actor(user_id, order, is_admin=self.authz.is_admin(db, user_id))

    def _order_details(self, order: Order, tracking_number=None, shipping_carrier=None) -> OrderDetails:
        return OrderDetails(
            order_id=order.id,
            listing_title=order.listing.title if order.listing else "your item",
            total_amount=order.total_amount,
            buyer_name=_display_name(order.buyer),
            seller_name=_display_name(order.seller),
            tracking_number=tracking_number or order.tracking_number,
            shipping_carrier=shipping_carrier or order.shipping_carrier,
        )

    # -- transitions -------------------------------------------------------

    def _conditional_update(
        self,
        db,
        order_id: str,
        expected: str,
        new: str,
        actor_role: str,
        reason: str,
        **values,
    ) -> bool:
        """Set `new` status only where the order is still in `expected`.

        Returns whether a row changed. Exactly one of several concurrent
        callers racing on the same order observes True.
        """

        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected)
            .values(status=new, state_version=Order.state_version + 1, **values)
        )
        if result.rowcount != 1:
            order_transition_conflicts_total.labels(service=self.service_name, to_state=new).inc()
            logger.info("order_transition_skipped order_id=%s expected=%s to=%s", order_id, expected, new)
            return False
        db.add(
            OrderTimeline(order_id=order_id, from_state=expected, to_state=new, actor_role=actor_role, reason=reason)
        )
        order_transitions_total.labels(
            service=self.service_name, from_state=expected, to_state=new, actor_role=actor_role
        ).inc()
        logger.info("order_transition order_id=%s from=%s to=%s role=%s", order_id, expected, new, actor_role)
        return True

    def confirm_payment(self, order_id: str, **provider_refs) -> bool:
        """Move a pending order to paid after a verified provider callback.

        Returns False when the order is missing or no longer pending (for
        example a redelivered webhook); settlement effects run only on True.
        """

        order_id_ctx.set(order_id)
        assert_transition(PENDING, PAID, SYSTEM_ROLE)
        refs = {key: value for key, value in provider_refs.items() if value is not None}
        with self.session_factory() as db:
            if not self._conditional_update(db, order_id, PENDING, PAID, SYSTEM_ROLE, "payment_confirmed", **refs):
                db.rollback()
                return False
            listing_id = db.execute(select(Order.listing_id).where(Order.id == order_id)).scalar_one()
            db.execute(update(Listing).where(Listing.id == listing_id).values(status="sold"))
            db.commit()
        self.handle_payment_confirmed(order_id)
        return True

    def cancel_unpaid(self, order_id: str, reason: str) -> bool:
        """Cancel an order whose payment failed or expired, if still pending."""

        order_id_ctx.set(order_id)
        assert_transition(PENDING, CANCELLED, SYSTEM_ROLE)
        with self.session_factory() as db:
            if not self._conditional_update(db, order_id, PENDING, CANCELLED, SYSTEM_ROLE, reason):
                db.rollback()
                return False
            db.commit()
        return True

    def update_status(
        self,
        order_id: str,
        user_id: str,
        target: str,
        tracking_number: str | None = None,
        shipping_carrier: str | None = None,
    ) -> Order:
        """Apply a buyer/seller action (ship, confirm delivery, cancel)."""

        order_id_ctx.set(order_id)
        with self.session_factory() as db:
            order = self._require_order(db, order_id)
            actor = self.resolve_actor(db, user_id, order)
            role = assert_actor_transition(order.status, target, actor)
            values = {}
            if target == SHIPPED:
                if tracking_number:
                    values["tracking_number"] = tracking_number
                if shipping_carrier:
                    values["shipping_carrier"] = shipping_carrier
            if not self._conditional_update(db, order.id, order.status, target, role, f"{role}_action", **values):
                db.rollback()
                raise ConflictError("Order status changed; reload the order and try again")
            db.commit()
            db.refresh(order)

        if target == SHIPPED:
            self.handle_order_shipped(order_id, tracking_number, shipping_carrier)
        elif target == DELIVERED:
            self.handle_delivery_confirmed(order_id)
        return order

    def allowed_actions(self, order_id: str, user_id: str) -> tuple[Order, list[str]]:
        """Statuses this user may move the order to, for rendering actions."""

        with self.session_factory() as db:
            order = self._require_order(db, order_id)
            actor = self.resolve_actor(db, user_id, order)
            if not actor.roles:
                raise ForbiddenError("Only the buyer or seller can view this order")
            return order, allowed_actor_transitions(order.status, actor)

    def get_order(self, order_id: str, user_id: str) -> Order:
        with self.session_factory() as db:
            order = self._require_order(db, order_id)
            if not self.resolve_actor(db, user_id, order).roles:
                raise ForbiddenError("Only the buyer or seller can view this order")
            return order

    # -- settlement handlers -----------------------------------------------

    def handle_payment_confirmed(self, order_id: str) -> None:
        """Credit the seller's pending balance and announce the payment."""

        with self.session_factory() as db:
            order = self._load_order(db, order_id)
            if order is None:
                logger.warning("payment_confirmed_order_missing order_id=%s", order_id)
                return
            self.ledger.credit_seller_balance(db, order.seller_id, order.payout_amount)
            db.commit()

        details = self._order_details(order)
        self._email("payment_received_email", self.email.send_payment_received, order.seller, details)
        self._email("order_confirmed_email", self.email.send_order_confirmation, order.buyer, details)
        self._notify(
            "payment_received_notification",
            order.seller_id,
            "payment_received",
            "Payment received",
            f"Payment confirmed for {details.listing_title}. Please ship the item.",
            order.id,
        )
        self._notify(
            "order_confirmed_notification",
            order.buyer_id,
            "order_confirmed",
            "Order confirmed",
            f"Your payment for {details.listing_title} went through.",
            order.id,
        )

    def handle_order_shipped(
        self,
        order_id: str,
        tracking_number: str | None = None,
        shipping_carrier: str | None = None,
    ) -> None:
        """Tell the buyer the item is on its way. Balances are untouched."""

        with self.session_factory() as db:
            order = self._load_order(db, order_id)
        if order is None:
            logger.warning("order_shipped_order_missing order_id=%s", order_id)
            return

        details = self._order_details(order, tracking_number, shipping_carrier)
        body = f"{details.listing_title} has shipped."
        if details.tracking_number:
            body += f" Tracking: {details.tracking_number}"
        self._email("order_shipped_email", self.email.send_order_shipped, order.buyer, details)
        self._notify("order_shipped_notification", order.buyer_id, "order_shipped", "Order shipped", body, order.id)

    def handle_delivery_confirmed(self, order_id: str) -> None:
        """Release the seller's payout from pending to available funds."""

        with self.session_factory() as db:
            order = self._load_order(db, order_id)
            if order is None:
                logger.warning("delivery_confirmed_order_missing order_id=%s", order_id)
                return
            released = self.ledger.release_seller_funds(db, order.seller_id, order.payout_amount)
            db.commit()
        if not released:
            return

        details = self._order_details(order)
        self._email("funds_available_email", self.email.send_funds_available, order.seller, details)
        self._notify(
            "funds_available_notification",
            order.seller_id,
            "funds_available",
            "Funds available",
            f"Delivery of {details.listing_title} was confirmed. Your earnings are available.",
            order.id,
        )

    # -- order creation ----------------------------------------------------

    def validate_listing_for_purchase(self, db, listing_id: str, buyer_id: str) -> Listing:
        """Guard run before any order is created for a listing."""

        listing = db.get(Listing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if listing.status != "active":
            raise BadRequestError("Listing is no longer available")
        if listing.seller_id == buyer_id:
            raise BadRequestError("Cannot purchase your own listing")
        return listing

    def _new_order(self, db, listing_id, buyer_id, seller_id, total_amount, reason, **values) -> Order:
        fees = split_fees(total_amount, self.fee_bps)
        order = Order(
            listing_id=listing_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            total_amount=total_amount,
            platform_fee_bps=fees.platform_fee_bps,
            platform_fee_amount=fees.platform_fee_amount,
            seller_payout_amount=fees.seller_payout_amount,
            status=PENDING,
            state_version=0,
            **values,
        )
        db.add(order)
        db.flush()
        db.add(OrderTimeline(order_id=order.id, from_state=None, to_state=PENDING, actor_role="buyer", reason=reason))
        return order

    def create_order_with_shipping(self, db, params: CreateOrderParams) -> Order:
        """Persist the shipping address and a pending order with its fee split.

        Runs inside the caller's transaction; the caller commits.
        """

        address = ShippingAddress(**params.shipping_address.model_dump())
        db.add(address)
        db.flush()
        return self._new_order(
            db,
            params.listing_id,
            params.buyer_id,
            params.seller_id,
            params.total_amount,
            "checkout_created",
            shipping_address_id=address.id,
            payment_method=params.payment_method,
        )

    def create_order_from_offer(self, db, listing_id: str, buyer_id: str, offer_amount: int) -> Order:
        """Open a pending order at a negotiated price, with the same fee split as checkout."""

        listing = self.validate_listing_for_purchase(db, listing_id, buyer_id)
        return self._new_order(db, listing.id, buyer_id, listing.seller_id, offer_amount, "offer_accepted")

    def accept_offer(self, listing_id: str, seller_user_id: str, buyer_id: str, offer_amount: int) -> Order:
        with self.session_factory() as db:
            listing = db.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError("Listing not found")
            if listing.seller_id != seller_user_id:
                raise ForbiddenError("Only the seller can accept offers on this listing")
            order = self.create_order_from_offer(db, listing_id, buyer_id, offer_amount)
            db.commit()
            logger.info("offer_accepted order_id=%s listing_id=%s amount=%s", order.id, listing_id, offer_amount)
            return order

    def start_checkout(
        self,
        listing_id: str,
        buyer_id: str,
        shipping_address: ShippingAddressIn,
        payment_method: str,
    ) -> tuple[Order, str]:
        """Create the pending order, then open the provider's hosted checkout."""

        gateway = self.gateways.get(payment_method)
        if gateway is None:
            raise BadRequestError(f'Unsupported payment method "{payment_method}"')
        with self.session_factory() as db:
            listing = self.validate_listing_for_purchase(db, listing_id, buyer_id)
            order = self.create_order_with_shipping(
                db,
                CreateOrderParams(
                    listing_id=listing.id,
                    buyer_id=buyer_id,
                    seller_id=listing.seller_id,
                    total_amount=listing.price,
                    shipping_address=shipping_address,
                    payment_method=payment_method,
                ),
            )
            db.commit()

        order_id_ctx.set(order.id)
        checkout = gateway.create_checkout(order, listing)
        reference_column = "checkout_session_id" if payment_method == "stripe" else "crypto_payment_id"
        with self.session_factory() as db:
            db.execute(update(Order).where(Order.id == order.id).values(**{reference_column: checkout.reference}))
            db.commit()
        setattr(order, reference_column, checkout.reference)
        logger.info("checkout_started order_id=%s method=%s", order.id, payment_method)
        return order, checkout.url

    # -- disputes ----------------------------------------------------------

    def open_dispute(self, order_id: str, user_id: str, reason: str, description: str) -> Dispute:
        """Buyer contests a paid or shipped order."""

        order_id_ctx.set(order_id)
        with self.session_factory() as db:
            order = self._require_order(db, order_id)
            actor = self.resolve_actor(db, user_id, order)
            role = assert_actor_transition(order.status, DISPUTED, actor)
            existing = db.execute(select(Dispute.id).where(Dispute.order_id == order.id)).scalar_one_or_none()
            if existing is not None:
                raise ConflictError("A dispute already exists for this order")
            if not self._conditional_update(db, order.id, order.status, DISPUTED, role, "dispute_opened"):
                db.rollback()
                raise ConflictError("Order status changed; reload the order and try again")
            dispute = Dispute(
                order_id=order.id,
                filer_id=user_id,
                against_id=order.seller_id,
                reason=reason,
                description=description,
                status="open",
            )
            db.add(dispute)
            db.commit()

        details = self._order_details(order)
        self._email("dispute_opened_email", self.email.send_dispute_opened, order.seller, details, reason)
        self._notify(
            "dispute_opened_notification",
            order.seller_id,
            "dispute_opened",
            "Dispute opened",
            f"The buyer opened a dispute on {details.listing_title}.",
            order.id,
        )
        return dispute

    def resolve_dispute(self, dispute_id: str, user_id: str, outcome: str, resolution: str | None = None) -> Dispute:
        """Admin settles a dispute by refunding the buyer or completing the sale."""

        with self.session_factory() as db:
            dispute = db.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError("Dispute not found")
            order = self._require_order(db, dispute.order_id)
            order_id_ctx.set(order.id)
            actor = self.resolve_actor(db, user_id, order)
            if not actor.is_admin:
                raise ForbiddenError("Only an admin can resolve disputes")
            role = assert_actor_transition(order.status, outcome, actor)
            if not self._conditional_update(db, order.id, order.status, outcome, role, "dispute_resolved"):
                db.rollback()
                raise ConflictError("Order status changed; reload the order and try again")
            dispute.status = "resolved_buyer" if outcome == REFUNDED else "resolved_seller"
            if resolution is not None:
                dispute.resolution = resolution
            db.commit()

        if outcome == DELIVERED:
            self.handle_delivery_confirmed(order.id)
        details = self._order_details(order)
        for party in (order.buyer, order.seller):
            self._email("dispute_resolved_email", self.email.send_dispute_resolved, party, details, outcome)
            self._notify(
                "dispute_resolved_notification",
                party.id,
                "dispute_resolved",
                "Dispute resolved",
                f"The dispute on {details.listing_title} was resolved: {outcome}.",
                order.id,
            )
        return dispute

    # -- side effects ------------------------------------------------------

    def _email(self, effect: str, send, recipient: User | None, *args) -> None:
        if recipient is None or not recipient.email:
            return
        self.dispatcher.submit(effect, send, recipient.email, *args)

    def _notify(self, effect: str, user_id: str, type: str, title: str, body: str, order_id: str) -> None:
        self.dispatcher.submit(
            effect,
            self.notifications.create_notification,
            user_id,
            type,
            title,
            body,
            link=f"/orders/{order_id}",
            metadata={"order_id": order_id},
        )


def _display_name(user: User | None) -> str:
    if user is None:
        return "Unknown"
    return user.name or user.email
