import threading

import pytest
from django.db import connection, transaction

from apps.common.errors import InsufficientStock, InvariantViolation, ValidationFailed
from apps.inventory.catalog import ProductCatalog
from apps.inventory.ledger import InventoryLedger
from apps.inventory.models import InventoryRecord, Product


def _counters(product):
    rec = InventoryRecord.objects.get(product=product)
    return rec.on_hand, rec.reserved


@pytest.mark.django_db
def test_reserve_moves_units_out_of_available(make_product):
    p = make_product(on_hand=5)
    InventoryLedger().reserve([(p.id, 3)])
    assert _counters(p) == (5, 3)
    assert InventoryLedger().level(p.id).available == 2


@pytest.mark.django_db
def test_reserve_is_all_or_nothing(make_product):
    a = make_product(on_hand=5)
    b = make_product(on_hand=1)

    with pytest.raises(InsufficientStock) as exc:
        InventoryLedger().reserve([(a.id, 2), (b.id, 2)])

    assert exc.value.code == "INSUFFICIENT_STOCK"
    assert exc.value.sku == b.sku
    assert exc.value.available == 1
    assert _counters(a) == (5, 0)
    assert _counters(b) == (1, 0)


@pytest.mark.django_db
def test_repeated_lines_are_summed(make_product):
    p = make_product(on_hand=4)
    with pytest.raises(InsufficientStock):
        InventoryLedger().reserve([(p.id, 2), (p.id, 3)])
    InventoryLedger().reserve([(p.id, 2), (p.id, 2)])
    assert _counters(p) == (4, 4)


@pytest.mark.django_db
def test_reserve_rejects_non_positive_quantities(make_product):
    p = make_product()
    with pytest.raises(ValidationFailed) as exc:
        InventoryLedger().reserve([(p.id, 0)])
    assert exc.value.code == "INVALID_QUANTITY"


@pytest.mark.django_db
def test_release_and_commit(make_product):
    p = make_product(on_hand=10)
    ledger = InventoryLedger()
    ledger.reserve([(p.id, 4)])

    ledger.release([(p.id, 1)])
    assert _counters(p) == (10, 3)

    ledger.commit([(p.id, 3)])
    assert _counters(p) == (7, 0)


@pytest.mark.django_db
def test_release_more_than_reserved_is_an_invariant_violation(make_product):
    p = make_product(on_hand=10)
    ledger = InventoryLedger()
    ledger.reserve([(p.id, 1)])
    with pytest.raises(InvariantViolation) as exc:
        ledger.release([(p.id, 2)])
    assert exc.value.code == "RESERVATION_UNDERFLOW"
    assert _counters(p) == (10, 1)


@pytest.mark.django_db
def test_commit_without_reservation_is_rejected(make_product):
    p = make_product(on_hand=10)
    with pytest.raises(InvariantViolation) as exc:
        InventoryLedger().commit([(p.id, 1)])
    assert exc.value.code == "COMMIT_WITHOUT_RESERVATION"
    assert _counters(p) == (10, 0)


@pytest.mark.django_db
def test_receive_creates_record_when_missing(store_id):
    p = Product.objects.create(sku="NEW-1", name="New", store_id=store_id, price_minor=100)
    level = InventoryLedger().receive(p.id, 7)
    assert (level.on_hand, level.reserved) == (7, 0)


@pytest.mark.django_db
def test_catalog_returns_only_active_products(make_product):
    active = make_product()
    draft = make_product(status=Product.Status.DRAFT)
    found = ProductCatalog().active_products([active.id, draft.id])
    assert set(found) == {active.id}
    assert found[active.id].price_minor == active.price_minor


@pytest.mark.django_db
def test_record_sales_accumulates(make_product):
    p = make_product(price_minor=1000)
    catalog = ProductCatalog()
    catalog.record_sales([(p.id, 2, 2000)])
    catalog.record_sales([(p.id, 1, 1000)])
    p.refresh_from_db()
    assert (p.sales_count, p.revenue_minor) == (3, 3000)


@pytest.mark.postgres
@pytest.mark.django_db(transaction=True)
def test_concurrent_reservations_never_oversell(make_product):
    if connection.vendor != "postgresql":
        pytest.skip("needs row-level locking")
    p = make_product(on_hand=1)
    results = []

    def worker():
        try:
            with transaction.atomic():
                InventoryLedger().reserve([(p.id, 1)])
            results.append("ok")
        except InsufficientStock:
            results.append("out")
        finally:
            connection.close()

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ["ok", "out", "out", "out", "out"]
    assert _counters(p) == (1, 1)
