class OrderServiceError(Exception):
    """Базовая ошибка приложения orders."""


class MalformedMessage(OrderServiceError):
    """Сообщение не разбирается в заказ или в нём нет обязательных полей."""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = errors or {}


class PersistenceError(OrderServiceError):
    """БД недоступна или отклонила чтение/запись."""


class OrderNotFound(OrderServiceError):
    def __init__(self, order_uid):
        super().__init__(f"Order {order_uid} not found")
        self.order_uid = order_uid


class StartupConnectionError(OrderServiceError):
    """Брокер или БД недоступны при старте сервиса."""
