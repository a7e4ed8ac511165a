from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "orders"

    def ready(self):
        from orders.cache import OrderCache
        from orders.services import OrderService
        from orders.store import OrderStore

        # Один экземпляр на процесс: его разделяют консьюмер и HTTP-обработчики.
        self.cache = OrderCache()
        self.store = OrderStore()
        self.service = OrderService(self.cache, self.store)
