from enum import Enum


class OrderStatus(str, Enum):
    AWAITING_PAYMENT = "awaiting_payment"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAYMENT_FAILED = "payment_failed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    ONLINE = "online"
    COD = "cod"


# Statuts dans lesquels un signal de paiement en ligne peut encore s'appliquer
PAYABLE_STATUSES = (OrderStatus.AWAITING_PAYMENT.value, OrderStatus.PAYMENT_FAILED.value)

# Colonnes d'une commande exposées au client
ORDER_FIELDS = (
    "id, user_id, subtotal, shipping_fee, tax, total, payment_method, payment_provider, "
    "shipping_address, status, payment_status, tran_ref, paid_at, created_at"
)
ORDER_ITEM_FIELDS = "order_id, product_id, product_name, unit_price, quantity, total_price"
