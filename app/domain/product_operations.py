"""Domain operations for Product model - plan correlation for billing reads."""

import uuid as uuid_pkg

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.product import BillingType, Product, ProductCreate


class ProductOperations:
    """Operations on the product catalog."""

    async def get(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
    ) -> Product | None:
        """Get a product by ID."""
        statement = select(Product).where(Product.id == id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def create(
        self,
        db: AsyncSession,
        obj_in: ProductCreate,
        stripe_product_id: str | None = None,
        stripe_price_id: str | None = None,
    ) -> Product:
        """Create a catalog entry."""
        db_obj = Product(
            **obj_in.model_dump(),
            stripe_product_id=stripe_product_id,
            stripe_price_id=stripe_price_id,
        )
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj

    async def get_by_price_id(
        self,
        db: AsyncSession,
        stripe_price_id: str,
    ) -> Product | None:
        """Find the product correlated with a Stripe price."""
        if not stripe_price_id:
            return None
        statement = select(Product).where(Product.stripe_price_id == stripe_price_id)
        result = await db.execute(statement)
        return result.scalars().first()

    async def get_free_product(self, db: AsyncSession) -> Product | None:
        """The designated free-tier product, if one exists and is active."""
        statement = (
            select(Product)
            .where(Product.is_free == True, Product.is_active == True)  # noqa: E712
            .order_by(Product.created_at)
        )
        result = await db.execute(statement)
        return result.scalars().first()

    async def list_plans(self, db: AsyncSession) -> list[Product]:
        """Active subscription plans: the free product plus recurring paid products."""
        statement = (
            select(Product)
            .where(
                Product.is_active == True,  # noqa: E712
                (Product.is_free == True)  # noqa: E712
                | (Product.billing_type == BillingType.RECURRING.value),
            )
            .order_by(Product.price_cents, Product.name)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())


product_ops = ProductOperations()
