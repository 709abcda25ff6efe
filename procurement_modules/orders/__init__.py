"""
Orders Module (``procurement_modules.orders``).

A vendor's request for goods: submitted ``pending``, approved or rejected by
the department head, processed into a Purchase, and finally ``received``
when the warehouse books the delivery.
"""

from procurement_modules.orders.models import Order, OrderComment, OrderLine, OrderStatus
from procurement_modules.orders.workflows import ORDER_WORKFLOW

__all__ = ["Order", "OrderComment", "OrderLine", "OrderStatus", "ORDER_WORKFLOW"]
