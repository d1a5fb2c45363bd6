"""HTTP views for the orders app.

Views stay small: they validate the request with a pydantic DTO, call the
``OrderWorkflow`` from ``get_order_workflow()`` and shape the response. Domain
errors and pydantic validation errors propagate to the project exception
handler, which renders them as ``{"detail": CODE, "message": text}``.

Idempotency: ``POST /api/orders/`` honours an ``Idempotency-Key`` header.
The first request is processed and its final response (success or domain
error) stored; a retry with the same key and payload gets that response
back with ``Idempotent-Replay: true`` and no side effects. Reusing the key
with another payload returns 409 ``IDEMPOTENCY_CONFLICT``.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.common.errors import Conflict, DomainError
from apps.payments.schemas import PaymentInitiationDTO
from gateway.auth import IsOperator
from gateway.exceptions import api_exception_handler

from .idempotency import finalize, get_or_create_idempotent, scoped_key
from .providers import get_order_workflow
from .schemas import CancelDTO, CreateOrderDTO, OrderReadDTO, PlacedOrderDTO, UpdateStatusDTO

logger = logging.getLogger("orders")


def _page_params(request) -> tuple[int, int]:
    try:
        page = max(1, int(request.GET.get("page", 1)))
        page_size = min(100, max(1, int(request.GET.get("page_size", 20))))
    except ValueError:
        page, page_size = 1, 20
    return page, page_size


class OrdersCollectionView(APIView):
    """``GET`` lists the caller's orders, ``POST`` places a new one."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        page, page_size = _page_params(request)
        page_obj = get_order_workflow().list_orders(
            request.user, status=request.GET.get("status"), page=page, page_size=page_size
        )
        results = [OrderReadDTO.from_model(o).model_dump(mode="json") for o in page_obj.object_list]
        return Response(
            {
                "count": page_obj.paginator.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        """Create an order and, for mobile money, start its payment.

        Returns:
            201 with ``{"order": ..., "payment": ...}`` when the order is
            created; the stored response on an idempotent replay.
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        dto = CreateOrderDTO.model_validate(request.data)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            existing, rec = get_or_create_idempotent(scoped_key(request.user.id, idem_key), request.data)
            if existing:
                if not rec.response_status:
                    raise Conflict("IDEMPOTENCY_IN_PROGRESS", "A request with this key is still running")
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Workflow
        try:
            placed = get_order_workflow().create_order(
                request.user.id,
                [item.to_domain() for item in dto.items],
                dto.delivery_address.to_domain(),
                dto.payment_method,
                phone=dto.phone,
                coupon_code=dto.coupon_code,
                billing_address=dto.billing_address.to_domain() if dto.billing_address else None,
                customer_notes=dto.customer_notes,
            )
        except DomainError as exc:
            if rec:
                error = api_exception_handler(exc, {})
                finalize(rec, error.status_code, error.data)
            raise
        except Exception:
            logger.exception("order creation failed unexpectedly")
            body = {"detail": "UPSTREAM_UNAVAILABLE", "message": "The order could not be placed, try again later"}
            if rec:
                finalize(rec, 503, body)
            return Response(body, status=503)

        # 4) Response
        body = PlacedOrderDTO(
            order=OrderReadDTO.from_model(placed.order, detail=True),
            payment=PaymentInitiationDTO.from_domain(placed.payment) if placed.payment else None,
        ).model_dump(mode="json")
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=placed.order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get_permissions(self):
        if self.request.method == "DELETE":
            return [IsOperator()]
        return super().get_permissions()

    def get(self, request, oid):
        order = get_order_workflow().get_order(oid, request.user)
        return Response(OrderReadDTO.from_model(order, detail=True).model_dump(mode="json"), status=200)

    def delete(self, request, oid):
        get_order_workflow().archive_order(oid, request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CancelOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_create"

    def post(self, request, oid):
        dto = CancelDTO.model_validate(request.data or {})
        workflow = get_order_workflow()
        workflow.cancel_order(oid, request.user, dto.reason)
        order = workflow.get_order(oid, request.user)
        return Response(OrderReadDTO.from_model(order, detail=True).model_dump(mode="json"), status=200)


class OrderStatusView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_create"

    def put(self, request, oid):
        dto = UpdateStatusDTO.model_validate(request.data)
        workflow = get_order_workflow()
        workflow.update_status(
            oid,
            dto.status,
            request.user,
            tracking_number=dto.tracking_number,
            carrier=dto.carrier,
            notes=dto.notes,
        )
        order = workflow.get_order(oid, request.user)
        return Response(OrderReadDTO.from_model(order, detail=True).model_dump(mode="json"), status=200)
