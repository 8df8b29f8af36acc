"""
Order Store

Persistence for orders, products and users over an async SQLAlchemy session
factory. Every public method opens its own session and commits once, so each
call is a single atomic store operation and no transaction is ever held open
across a gateway network call.

Concurrent creation is resolved by the unique constraint on
payment_reference: a losing insert is rolled back and the winner's row is
returned instead of an error.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func, or_, and_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..db.models import OrderModel, ProductModel, UserModel
from ..models.orders import NewOrder, Order, OrderDetails, OrderStatus, Product, StatusCount

logger = logging.getLogger(__name__)


class OrderStore:
    """Order persistence. Instances are shared by request handlers, webhooks and the sweeper."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        """Find the order for a payment attempt, or None."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(OrderModel).where(OrderModel.payment_reference == payment_reference)
            )
            row = result.scalar_one_or_none()
            return Order.model_validate(row) if row else None

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        async with self._session_factory() as db:
            row = await db.get(OrderModel, order_id)
            return Order.model_validate(row) if row else None

    async def get_order_details(self, payment_reference: str) -> Optional[OrderDetails]:
        """Order joined with its product and user."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(OrderModel, ProductModel, UserModel.email)
                .outerjoin(ProductModel, OrderModel.product_id == ProductModel.id)
                .outerjoin(UserModel, OrderModel.user_id == UserModel.id)
                .where(OrderModel.payment_reference == payment_reference)
                .limit(1)
            )
            row = result.first()
            if row is None:
                return None

            order_row, product_row, user_email = row
            return OrderDetails(
                order=Order.model_validate(order_row),
                product=Product.model_validate(product_row) if product_row else None,
                user_email=user_email
            )

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with self._session_factory() as db:
            row = await db.get(ProductModel, product_id)
            return Product.model_validate(row) if row else None

    async def list_products(self) -> List[Product]:
        async with self._session_factory() as db:
            result = await db.execute(select(ProductModel).order_by(ProductModel.id))
            return [Product.model_validate(row) for row in result.scalars().all()]

    async def list_sync_candidates(self, stale_before: datetime) -> List[Order]:
        """
        Orders the reconciliation sweep should look at.

        Every provisional order, plus processing orders never synced or last
        synced before stale_before.
        """
        async with self._session_factory() as db:
            result = await db.execute(
                select(OrderModel)
                .where(
                    or_(
                        OrderModel.is_provisional.is_(True),
                        and_(
                            OrderModel.status == OrderStatus.PROCESSING.value,
                            or_(
                                OrderModel.last_sync_attempt.is_(None),
                                OrderModel.last_sync_attempt < stale_before
                            )
                        )
                    )
                )
                .order_by(OrderModel.id)
            )
            return [Order.model_validate(row) for row in result.scalars().all()]

    async def count_by_status(self) -> List[StatusCount]:
        """Order counts grouped by status and provisional flag."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(OrderModel.status, OrderModel.is_provisional, func.count(OrderModel.id))
                .group_by(OrderModel.status, OrderModel.is_provisional)
                .order_by(OrderModel.status, OrderModel.is_provisional)
            )
            return [
                StatusCount(status=status, is_provisional=bool(is_provisional), count=count)
                for status, is_provisional, count in result.all()
            ]

    async def ping(self) -> bool:
        """Check database connectivity."""
        async with self._session_factory() as db:
            await db.execute(text("SELECT 1"))
            return True

    # ========================================================================
    # Writes
    # ========================================================================

    async def create_or_get(self, values: NewOrder) -> Tuple[Order, bool]:
        """
        Insert an order unless one already exists for its payment reference.

        Returns:
            (order, created). created is False when the reference already had
            a row, including when a concurrent writer won the insert race.
        """
        existing = await self.get_by_payment_reference(values.payment_reference)
        if existing:
            return existing, False

        async with self._session_factory() as db:
            row = OrderModel(
                **values.model_dump(exclude={"status"}),
                status=values.status.value,
                sync_attempts=0
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                conflict = exc
                logger.info(
                    f"Concurrent insert lost for payment reference "
                    f"{values.payment_reference}; using existing order"
                )
            else:
                await db.refresh(row)
                return Order.model_validate(row), True

        winner = await self.get_by_payment_reference(values.payment_reference)
        if winner is None:
            # The violated constraint was not the payment reference (e.g. unknown product)
            raise conflict
        return winner, False

    async def update_status(
        self,
        payment_reference: str,
        status: OrderStatus,
        allowed_from: Iterable[OrderStatus]
    ) -> bool:
        """
        Move an order to a non-provisional status in one guarded UPDATE.

        The WHERE clause only matches rows currently in one of allowed_from,
        so duplicate deliveries and racing writers cannot flip a status twice.

        Returns:
            True if a row changed
        """
        async with self._session_factory() as db:
            result = await db.execute(
                update(OrderModel)
                .where(
                    OrderModel.payment_reference == payment_reference,
                    OrderModel.status.in_([s.value for s in allowed_from])
                )
                .values(
                    status=status.value,
                    is_provisional=False,
                    updated_at=datetime.utcnow()
                )
            )
            await db.commit()
            return result.rowcount > 0

    async def record_sync_attempt(self, order_id: int) -> bool:
        """Atomically bump sync_attempts and stamp last_sync_attempt."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id)
                .values(
                    sync_attempts=OrderModel.sync_attempts + 1,
                    last_sync_attempt=datetime.utcnow()
                )
            )
            await db.commit()
            return result.rowcount > 0

    async def find_or_create_user(self, email: str) -> int:
        """Resolve a user id by email, creating the user on first sight."""
        async with self._session_factory() as db:
            result = await db.execute(select(UserModel.id).where(UserModel.email == email))
            user_id = result.scalar_one_or_none()
            if user_id is not None:
                return user_id

            user = UserModel(email=email)
            db.add(user)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
            else:
                await db.refresh(user)
                return user.id

            result = await db.execute(select(UserModel.id).where(UserModel.email == email))
            return result.scalar_one()

    async def add_product(
        self,
        name: str,
        price: int,
        currency: str = "usd",
        description: Optional[str] = None
    ) -> Product:
        """Insert a catalog product (seeding and tests)."""
        async with self._session_factory() as db:
            row = ProductModel(name=name, price=price, currency=currency, description=description)
            db.add(row)
            await db.commit()
            await db.refresh(row)
            return Product.model_validate(row)
