from django.urls import path

from .views import (
    InitiatePaymentView,
    PaymentDetailView,
    PaymentMethodsView,
    ProviderWebhookView,
    ReconcilePaymentView,
    RefundPaymentView,
)

app_name = "payments"

urlpatterns = [
    path("methods/", PaymentMethodsView.as_view(), name="payments-methods"),
    path("initiate/", InitiatePaymentView.as_view(), name="payments-initiate"),
    path("<uuid:pid>/", PaymentDetailView.as_view(), name="payments-detail"),
    path("<uuid:pid>/refund/", RefundPaymentView.as_view(), name="payments-refund"),
    path("<uuid:pid>/reconcile/", ReconcilePaymentView.as_view(), name="payments-reconcile"),
    path("webhook/<str:provider>/", ProviderWebhookView.as_view(), name="payments-webhook"),
]
