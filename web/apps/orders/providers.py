"""Factories that wire the workflow, orchestrator and webhook gateway.

A fresh object graph is built from Django settings on every call, so
settings overrides (tests, ``USE_HTTP_ADAPTERS``) apply immediately and no
state is shared between requests. ``settings.USE_HTTP_ADAPTERS`` selects
real HTTP provider adapters or the in-process stubs.
"""

from django.conf import settings

from apps.inventory.catalog import ProductCatalog
from apps.inventory.ledger import InventoryLedger
from apps.payments.orchestrator import PaymentOrchestrator
from apps.payments.registry import build_registry
from apps.payments.webhooks import WebhookGateway

from .pricing import OrderPricing
from .workflow import OrderWorkflow


def get_order_workflow() -> OrderWorkflow:
    """Return an ``OrderWorkflow`` whose orchestrator reports back to it."""
    registry = build_registry(settings)
    orchestrator = PaymentOrchestrator(registry)
    workflow = OrderWorkflow(
        inventory=InventoryLedger(),
        payments=orchestrator,
        catalog=ProductCatalog(),
        pricing=OrderPricing(registry, settings.SHIPPING_POLICY, settings.MARKETPLACE_CURRENCY),
    )
    orchestrator.settlement = workflow
    return workflow


def get_payment_orchestrator() -> PaymentOrchestrator:
    return get_order_workflow().payments


def get_webhook_gateway() -> WebhookGateway:
    orchestrator = get_payment_orchestrator()
    return WebhookGateway(orchestrator.registry, orchestrator)
