"""Seller balance ledger.

Every mutation is a single SQL statement of the form `SET col = col + :amount`
so concurrent credits and releases for one seller compose without lost
updates. Guards on the WHERE clause keep pending and available funds from
going negative.
"""

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite

from vaultmarket.common.errors import BadRequestError, NotFoundError
from vaultmarket.common.logging import logger
from vaultmarket.common.metrics import seller_balance_mutations_total
from vaultmarket.services.ledger.models import PayoutRequest, SellerBalance

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


class LedgerService:
    """Owns seller balance rows and payout requests."""

    def __init__(self, session_factory, service_name: str = "ledger") -> None:
        self.session_factory = session_factory
        self.service_name = service_name

    def _count(self, kind: str) -> None:
        seller_balance_mutations_total.labels(service=self.service_name, kind=kind).inc()

    def _upsert(self, db, user_id: str, pending: int, earned: int) -> None:
        """Insert the balance row or atomically add to the existing one."""

        insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
        if insert is None:
            raise RuntimeError(f"seller balance upsert unsupported on {db.get_bind().dialect.name}")
        stmt = insert(SellerBalance).values(
            user_id=user_id,
            pending_amount=pending,
            available_amount=0,
            total_earned=earned,
        )
        if pending == 0 and earned == 0:
            stmt = stmt.on_conflict_do_nothing(index_elements=[SellerBalance.user_id])
        else:
            stmt = stmt.on_conflict_do_update(
                index_elements=[SellerBalance.user_id],
                set_={
                    "pending_amount": SellerBalance.pending_amount + pending,
                    "total_earned": SellerBalance.total_earned + earned,
                    "updated_at": func.now(),
                },
            )
        db.execute(stmt)

    def credit_seller_balance(self, db, seller_id: str, amount: int) -> None:
        """Hold `amount` for the seller until delivery is confirmed."""

        if amount <= 0:
            logger.warning("balance_credit_skipped seller_id=%s amount=%s", seller_id, amount)
            return
        self._upsert(db, seller_id, pending=amount, earned=amount)
        self._count("credit")
        logger.info("balance_credited seller_id=%s amount=%s", seller_id, amount)

    def release_seller_funds(self, db, seller_id: str, amount: int) -> bool:
        """Move `amount` from pending to available. Returns False if nothing moved."""

        if amount <= 0:
            logger.warning("balance_release_skipped seller_id=%s amount=%s", seller_id, amount)
            return False
        result = db.execute(
            update(SellerBalance)
            .where(SellerBalance.user_id == seller_id, SellerBalance.pending_amount >= amount)
            .values(
                pending_amount=SellerBalance.pending_amount - amount,
                available_amount=SellerBalance.available_amount + amount,
            )
        )
        if result.rowcount != 1:
            logger.error("balance_release_failed seller_id=%s amount=%s reason=insufficient_pending", seller_id, amount)
            self._count("release_failed")
            return False
        self._count("release")
        logger.info("balance_released seller_id=%s amount=%s", seller_id, amount)
        return True

    def find_balance(self, db, user_id: str) -> SellerBalance | None:
        return db.execute(select(SellerBalance).where(SellerBalance.user_id == user_id)).scalar_one_or_none()

    def get_balance(self, user_id: str) -> SellerBalance:
        """Return the seller's balance, creating an empty row on first read."""

        with self.session_factory() as db:
            self._upsert(db, user_id, pending=0, earned=0)
            db.commit()
            return self.find_balance(db, user_id)

    def request_payout(self, user_id: str, amount: int, method: str) -> PayoutRequest:
        """Withdraw available funds into a payout request in one transaction."""

        with self.session_factory() as db:
            if self.find_balance(db, user_id) is None:
                raise NotFoundError("Seller balance not found")
            result = db.execute(
                update(SellerBalance)
                .where(SellerBalance.user_id == user_id, SellerBalance.available_amount >= amount)
                .values(available_amount=SellerBalance.available_amount - amount)
            )
            if result.rowcount != 1:
                db.rollback()
                raise BadRequestError("Insufficient available balance")
            payout = PayoutRequest(user_id=user_id, amount=amount, method=method, status="pending")
            db.add(payout)
            db.commit()
            self._count("payout")
            logger.info("payout_requested user_id=%s amount=%s method=%s", user_id, amount, method)
            return payout
