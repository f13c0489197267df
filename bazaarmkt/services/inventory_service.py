"""
Inventory reconciliation for failed and canceled orders.

Each line item's quantity goes back to the field that is authoritative for
the product's fulfillment type. Every product is updated with a single
UPDATE statement so concurrent restorations for the same product add up
instead of overwriting each other.

The restoration itself is not idempotent. Callers must guarantee that an
order is restored at most once (see ``Order.inventory_restored``).
"""
import logging
import uuid
from typing import Any, Dict, List

from sqlalchemy import select, update, case
from sqlalchemy.ext.asyncio import AsyncSession

from bazaarmkt.db_types import utcnow
from bazaarmkt.models.order import Order
from bazaarmkt.models.product import Product, ProductStatus, INVENTORY_FIELDS

logger = logging.getLogger(__name__)


class InventoryService:
    """Returns order line-item quantities to the catalog."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def restore_order_items(self, order: Order) -> List[Dict[str, Any]]:
        """
        Restore every line item of an order.

        A missing product is logged and skipped; it never blocks the
        remaining items.

        Returns:
            One summary dict per item with ``restored`` True/False
        """
        results = []
        for item in order.items:
            results.append(await self.restore_item(item.product_id, item.quantity))

        restored = sum(1 for r in results if r["restored"])
        logger.info(
            f"Inventory restored for order {order.id}: "
            f"{restored}/{len(results)} items"
        )
        return results

    async def restore_item(self, product_id: uuid.UUID, quantity: int) -> Dict[str, Any]:
        """Add ``quantity`` back to one product in a single atomic update."""
        summary = {"product_id": str(product_id), "quantity": quantity, "restored": False}

        if quantity <= 0:
            logger.warning(f"Skipping restore of non-positive quantity {quantity} for product {product_id}")
            summary["reason"] = "invalid_quantity"
            return summary

        product_type = await self.db.scalar(
            select(Product.product_type).where(Product.id == product_id)
        )
        if product_type is None:
            logger.warning(f"Product {product_id} not found, skipping inventory restore")
            summary["reason"] = "product_not_found"
            return summary

        fields = INVENTORY_FIELDS.get(product_type)
        if fields is None:
            logger.warning(f"Product {product_id} has unknown type '{product_type}', skipping")
            summary["reason"] = "unknown_product_type"
            return summary

        # SET expressions read the pre-update row
        authoritative = getattr(Product, fields[0])
        values = {field: getattr(Product, field) + quantity for field in fields}
        values["sold_count"] = case(
            (Product.sold_count > quantity, Product.sold_count - quantity),
            else_=0,
        )
        values["status"] = case(
            (
                (Product.status == ProductStatus.OUT_OF_STOCK.value) & (authoritative + quantity > 0),
                ProductStatus.ACTIVE.value,
            ),
            else_=Product.status,
        )
        values["updated_at"] = utcnow()

        result = await self.db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(**values)
            .returning(authoritative, Product.status)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        if row is None:
            # Deleted between the type lookup and the update
            logger.warning(f"Product {product_id} disappeared during inventory restore")
            summary["reason"] = "product_not_found"
            return summary

        new_quantity, new_status = row
        logger.info(
            f"Restored {quantity} of product {product_id} ({product_type}): "
            f"{fields[0]}={new_quantity}, status={new_status}"
        )
        summary.update(
            restored=True,
            product_type=product_type,
            field=fields[0],
            quantity_after=new_quantity,
            status=new_status,
        )
        return summary
