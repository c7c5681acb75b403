class DomainException(Exception):
    pass


class InvalidRequestError(DomainException):
    pass


class ItemNotFoundError(InvalidRequestError):
    pass


class InsufficientStockError(InvalidRequestError):
    def __init__(self, product_id: str, available: int, required: int):
        self.product_id = product_id
        self.available = available
        self.required = required
        super().__init__(
            f"Недостаточно товара {product_id}. Доступно: {available}, требуется: {required}"
        )


class UnauthenticatedError(DomainException):
    pass


class ForbiddenError(DomainException):
    pass


class OrderNotFoundError(DomainException):
    pass


class UnknownTransactionReferenceError(OrderNotFoundError):
    pass


class InvalidStateTransitionError(DomainException):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Недопустимый переход статуса: {current.value} -> {target.value}")


class ConflictingPaymentOutcomeError(DomainException):
    def __init__(self, order_id: str, stored, reported):
        self.order_id = order_id
        self.stored = stored
        self.reported = reported
        super().__init__(
            f"Конфликт результата оплаты заказа {order_id}: "
            f"сохранено {stored.value}, получено {reported.value}"
        )


class OrderAlreadyPaidError(DomainException):
    pass


class TransientError(Exception):
    """Временная ошибка инфраструктуры, запрос можно повторить"""
    pass


class CatalogServiceError(TransientError):
    pass


class PaymentServiceError(TransientError):
    pass


class PaymentGatewayTimeout(PaymentServiceError):
    pass


class StoreUnavailableError(TransientError):
    pass


class ConcurrentModificationError(TransientError):
    """Заказ менялся параллельно, операцию можно повторить"""
    pass
