import logging
import uuid as uuid_pkg

from fastapi import APIRouter, status

from app.api.deps import AdminUser, BillingGateway, DbSession
from app.core.exceptions import NotFoundError
from app.domain import product_ops
from app.models.product import BillingInterval, BillingType, ProductCreate, ProductRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/plans", response_model=list[ProductRead])
async def list_plans(db: DbSession) -> list[ProductRead]:
    """
    Public plan catalogue: the free tier plus active recurring products.

    No authentication required.
    """
    plans = await product_ops.list_plans(db)
    return [ProductRead.model_validate(plan) for plan in plans]


@router.get("/{product_id}", response_model=ProductRead)
async def get_product(product_id: uuid_pkg.UUID, db: DbSession) -> ProductRead:
    product = await product_ops.get(db, product_id)
    if not product:
        raise NotFoundError("Product")
    return ProductRead.model_validate(product)


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(
    data: ProductCreate,
    db: DbSession,
    admin: AdminUser,
    gateway: BillingGateway,
) -> ProductRead:
    """
    Add a catalog entry (admin only).

    Paid products get a Stripe product and price first, so checkout and the
    plan join on `stripe_price_id` work as soon as the row exists. Free
    products never touch Stripe.
    """
    data = _normalize(data)

    stripe_product_id = None
    stripe_price_id = None
    if not data.is_free:
        stripe_product_id = gateway.create_product(
            data.name, data.description, metadata={"createdBy": str(admin.id)}
        )
        stripe_price_id = gateway.create_price(
            stripe_product_id,
            data.price_cents,
            currency=data.currency,
            interval=data.billing_interval,
            interval_count=data.billing_interval_count,
        )

    product = await product_ops.create(
        db, data, stripe_product_id=stripe_product_id, stripe_price_id=stripe_price_id
    )
    logger.info(f"Admin {admin.id} created product {product.id} ({stripe_price_id or 'free'})")
    return ProductRead.model_validate(product)


def _normalize(data: ProductCreate) -> ProductCreate:
    """A zero price means free; only recurring products carry an interval."""
    if data.is_free or data.price_cents == 0:
        return data.model_copy(
            update={"is_free": True, "price_cents": 0, "billing_interval": None}
        )
    if data.billing_type == BillingType.RECURRING.value:
        interval = data.billing_interval or BillingInterval.MONTH.value
        return data.model_copy(update={"billing_interval": interval})
    return data.model_copy(update={"billing_interval": None, "billing_interval_count": 1})
