"""
Pricing Resolver.

Determines the amount to bill for a work order.
Follows priority:
1. Configured work-type price table (settings.work_type_prices)
2. Price stamped on the work order
"""

from decimal import Decimal
from typing import Dict, Mapping, Optional

from dentallab.app.core.config import settings
from dentallab.app.domain.billing.money import ZERO, to_money
from dentallab.app.models.work_order import WorkOrder
from dentallab.app.models.work_order_enums import WorkType


class PricingResolver:

    @staticmethod
    def price_table(table: Optional[Mapping[str, Decimal]] = None) -> Dict[str, Decimal]:
        """Price table with upper-cased work-type keys."""
        source = settings.work_type_prices if table is None else table
        return {str(key).upper(): to_money(value) for key, value in source.items()}

    @staticmethod
    def price_for_work_type(work_type, table: Optional[Mapping[str, Decimal]] = None) -> Decimal:
        """Table price for a work type, zero when unknown or missing."""
        if not work_type:
            return ZERO
        key = work_type.value if isinstance(work_type, WorkType) else str(work_type).upper()
        return PricingResolver.price_table(table).get(key, ZERO)

    @staticmethod
    def resolve_order_amount(order: WorkOrder, table: Optional[Mapping[str, Decimal]] = None) -> Decimal:
        """
        Amount to invoice for an order.

        Returns:
            Positive amount, or zero when neither the table nor the order
            carries a usable price (caller decides whether that is an error).
        """
        from_table = PricingResolver.price_for_work_type(order.work_type, table)
        if from_table > ZERO:
            return from_table

        stamped = to_money(order.price)
        if stamped > ZERO:
            return stamped
        return ZERO
