from django.urls import path

from orders.views import OrderDetailView, OrderListView

urlpatterns = [
    path("orders/", OrderListView.as_view(), name="order-list"),
    path("orders/<str:order_uid>/", OrderDetailView.as_view(), name="order-detail"),
]
