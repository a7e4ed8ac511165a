import logging

from django.apps import apps
from rest_framework import status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from orders.exceptions import MalformedMessage, OrderNotFound
from orders.serializers import build_order, order_to_dict

logger = logging.getLogger(__name__)


def get_order_service():
    return apps.get_app_config("orders").service


class OrderListView(APIView):
    def get(self, request, *args, **kwargs):
        return Response({"order_uids": get_order_service().list_ids()})


class OrderDetailView(APIView):
    def get(self, request, order_uid, *args, **kwargs):
        try:
            order = get_order_service().get_by_uid(order_uid)
        except OrderNotFound as e:
            raise NotFound(str(e))
        return Response(order_to_dict(order))

    def put(self, request, order_uid, *args, **kwargs):
        try:
            order = build_order(request.data)
        except MalformedMessage as e:
            return Response(
                e.errors or {"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST
            )
        if order.order_uid != order_uid:
            return Response(
                {"order_uid": [f"Must match the id in the URL ({order_uid})."]},
                status=status.HTTP_400_BAD_REQUEST,
            )

        # Административная запись: БД, затем кэш.
        get_order_service().save(order)
        logger.info(f"Order {order_uid} written through the admin API")
        return Response(order_to_dict(order))

    def delete(self, request, order_uid, *args, **kwargs):
        try:
            get_order_service().delete(order_uid)
        except OrderNotFound as e:
            raise NotFound(str(e))
        logger.info(f"Order {order_uid} deleted through the admin API")
        return Response(status=status.HTTP_204_NO_CONTENT)
