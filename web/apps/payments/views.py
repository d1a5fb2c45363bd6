"""HTTP views for the payments app.

Provider callbacks arrive at ``ProviderWebhookView``, which bypasses actor
authentication (providers authenticate with an HMAC signature over the raw
body) and hands ``request.body`` untouched to the webhook gateway.
"""

from django.conf import settings
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from apps.common.errors import Forbidden
from apps.orders.providers import get_order_workflow, get_payment_orchestrator, get_webhook_gateway
from gateway.auth import IsOperator

from .registry import build_registry
from .schemas import InitiatePaymentDTO, MethodsQuery, PaymentInitiationDTO, PaymentReadDTO, RefundDTO


class PaymentMethodsView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def get(self, request):
        query = MethodsQuery.model_validate(request.GET.dict())
        methods = build_registry(settings).available_methods(query.country, query.amount)
        return Response({"methods": methods}, status=status.HTTP_200_OK)


class InitiatePaymentView(APIView):
    """Start (or retry) the mobile-money payment of a pending order."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        dto = InitiatePaymentDTO.model_validate(request.data)
        workflow = get_order_workflow()
        order = workflow.get_order(dto.order_id, request.user)
        if order.customer_id != request.user.id and not request.user.is_operator:
            raise Forbidden("FORBIDDEN", "Only the customer can pay this order")
        initiation = workflow.payments.initiate(dto.order_id, dto.payment_method, dto.amount_minor, dto.phone)
        return Response(PaymentInitiationDTO.from_domain(initiation).model_dump(mode="json"), status=201)


class PaymentDetailView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def get(self, request, pid):
        payment = get_payment_orchestrator().get_payment(pid)
        if not request.user.is_operator and payment.order.customer_id != request.user.id:
            raise Forbidden("FORBIDDEN", "You cannot view this payment")
        return Response(PaymentReadDTO.from_model(payment).model_dump(mode="json"), status=200)


class RefundPaymentView(APIView):
    permission_classes = [IsOperator]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request, pid):
        dto = RefundDTO.model_validate(request.data or {})
        refund = get_payment_orchestrator().refund(pid, dto.amount_minor, dto.reason)
        return Response(PaymentReadDTO.from_model(refund).model_dump(mode="json"), status=201)


class ReconcilePaymentView(APIView):
    permission_classes = [IsOperator]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request, pid):
        payment = get_payment_orchestrator().reconcile(pid)
        return Response(PaymentReadDTO.from_model(payment).model_dump(mode="json"), status=200)


class ProviderWebhookView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "webhooks"

    def post(self, request, provider: str):
        ack = get_webhook_gateway().receive(provider, request.body, request.headers)
        return Response(ack, status=status.HTTP_200_OK)
