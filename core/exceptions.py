"""
Error taxonomy for order processing.

Every failure raised out of the order workflow carries a machine-readable
``kind`` and a human-readable message. The request layer decides which
status code a kind maps to.
"""
from decimal import Decimal


class OrderProcessingError(Exception):
    """Base class for failures that abort an order."""
    kind = 'order_error'

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {'error': self.kind, 'detail': self.message}


class OrderValidationError(OrderProcessingError):
    """Raised when an order request is malformed."""
    kind = 'validation_error'


class CustomerNotFound(OrderProcessingError):
    kind = 'customer_not_found'

    def __init__(self, customer_id):
        self.customer_id = customer_id
        super().__init__(f"Customer {customer_id} not found")


class OrderNotFound(OrderProcessingError):
    kind = 'order_not_found'

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ProductNotFound(OrderProcessingError):
    """Raised when a line item references a product that does not exist."""
    kind = 'product_not_found'

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class InsufficientStock(OrderProcessingError):
    """Raised by the reject shortfall policy when lots cannot cover a request."""
    kind = 'insufficient_stock'

    def __init__(self, product_id: int, requested: Decimal, available: Decimal):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class InvalidStatusTransition(OrderProcessingError):
    kind = 'invalid_status_transition'

    def __init__(self, order_id, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} cannot move from {current} to {requested}"
        )


class AllocationInconsistency(OrderProcessingError):
    """
    Internal invariant violation: demand left over after shortfall handling.

    This signals a defect, not a business outcome.
    """
    kind = 'allocation_inconsistency'

    def __init__(self, product_id: int, requested: Decimal, unallocated: Decimal):
        self.product_id = product_id
        self.requested = requested
        self.unallocated = unallocated
        super().__init__(
            f"Allocation for product {product_id} left {unallocated} of "
            f"{requested} unallocated"
        )


class PersistenceFailure(OrderProcessingError):
    """Raised when the database rejects a write or becomes unavailable."""
    kind = 'persistence_failure'
