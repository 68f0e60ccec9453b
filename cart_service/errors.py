"""Failure kinds raised by the cart engine and its collaborators.

Each exception carries a stable ``kind`` string so callers can tell the
outcomes apart without looking at messages. Only ``StoreUnavailable`` (and its
``CartConflict`` subclass) is worth retrying.
"""


class CartError(Exception):
    kind = "cart_error"
    transient = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ProductNotFound(CartError):
    kind = "product_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class CartNotFound(CartError):
    kind = "cart_not_found"

    def __init__(self, owner: str):
        super().__init__("Cart not found")
        self.owner = owner


class ItemNotFound(CartError):
    kind = "item_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Item {product_id} not found in cart")
        self.product_id = product_id


class InvalidQuantity(CartError):
    kind = "invalid_quantity"

    def __init__(self, quantity):
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")
        self.quantity = quantity


class StoreUnavailable(CartError):
    kind = "store_unavailable"
    transient = True


class CartConflict(StoreUnavailable):
    kind = "cart_conflict"

    def __init__(self, owner: str):
        super().__init__("Cart was modified concurrently")
        self.owner = owner
