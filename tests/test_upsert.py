"""
Upsert reconciler tests.

Guards against:
1. Duplicate rows for the same (workspace_id, source, external_id)
2. Insert races surfacing as errors instead of updates
3. Rows from one workspace being touched by another
"""
from datetime import datetime
from decimal import Decimal

import pytest

from bizos.models.ecommerce import EcommerceCustomer, EcommerceOrder, EcommerceOrderItem
from bizos.services.upsert import UpsertReconciler, upsert_many


def _customer(external_id="c1", workspace_id="ws_1", **fields):
    return {
        "workspace_id": workspace_id,
        "source": "shopify",
        "external_id": external_id,
        "email": fields.pop("email", f"{external_id}@example.com"),
        **fields,
    }


class _Clock:
    def __init__(self, *times):
        self.times = list(times)

    def __call__(self):
        return self.times.pop(0) if len(self.times) > 1 else self.times[0]


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------

def test_upsert_twice_keeps_one_row_and_bumps_updated_at(db):
    first = datetime(2024, 1, 1, 12, 0, 0)
    second = datetime(2024, 1, 2, 12, 0, 0)
    reconciler = UpsertReconciler(db, clock=_Clock(first, second))

    created = reconciler.upsert(EcommerceCustomer, _customer(email="old@example.com"))
    updated = reconciler.upsert(EcommerceCustomer, _customer(email="new@example.com"))

    assert created.was_update is False
    assert updated.was_update is True
    assert created.id == updated.id

    rows = db.query(EcommerceCustomer).all()
    assert len(rows) == 1
    assert rows[0].email == "new@example.com"
    assert rows[0].created_at == first
    assert rows[0].updated_at == second


def test_identity_is_scoped_by_workspace(db):
    reconciler = UpsertReconciler(db)
    a = reconciler.upsert(EcommerceCustomer, _customer(workspace_id="ws_a"))
    b = reconciler.upsert(EcommerceCustomer, _customer(workspace_id="ws_b"))
    assert a.id != b.id
    assert reconciler.count(EcommerceCustomer, "ws_a") == 1
    assert reconciler.count(EcommerceCustomer, "ws_b") == 1


def test_integer_external_ids_are_stringified(db):
    reconciler = UpsertReconciler(db)
    reconciler.upsert(EcommerceCustomer, _customer(external_id=42))
    assert reconciler.find_id(EcommerceCustomer, "ws_1", "shopify", 42) is not None
    assert reconciler.find_id(EcommerceCustomer, "ws_1", "shopify", "42") is not None


def test_missing_identity_is_rejected(db):
    reconciler = UpsertReconciler(db)
    with pytest.raises(ValueError):
        reconciler.upsert(EcommerceCustomer, {"workspace_id": "ws_1", "source": "shopify"})


def test_unknown_field_is_rejected(db):
    reconciler = UpsertReconciler(db)
    with pytest.raises(ValueError):
        reconciler.upsert(EcommerceCustomer, _customer(not_a_column=1))


def test_upsert_many_counts(db):
    reconciler = UpsertReconciler(db)
    reconciler.upsert(EcommerceCustomer, _customer("c1"))
    counts = upsert_many(reconciler, EcommerceCustomer, [_customer("c1"), _customer("c2")])
    assert counts == {"processed": 2, "created": 1, "updated": 1}


# ---------------------------------------------------------------------------
# Concurrent insert race
# ---------------------------------------------------------------------------

def test_lost_insert_race_updates_the_winner(db, monkeypatch):
    """
    Simulates another writer inserting the same identity between our
    lookup and our insert: the first _find misses, the INSERT hits the
    unique constraint, and the reconciler updates the winner's row.
    """
    winner = UpsertReconciler(db).upsert(EcommerceCustomer, _customer(email="winner@example.com"))

    reconciler = UpsertReconciler(db)
    real_find = reconciler._find
    calls = {"n": 0}

    def racing_find(*args):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real_find(*args)

    monkeypatch.setattr(reconciler, "_find", racing_find)
    result = reconciler.upsert(EcommerceCustomer, _customer(email="loser@example.com"))

    assert result.was_update is True
    assert result.id == winner.id
    rows = db.query(EcommerceCustomer).all()
    assert len(rows) == 1
    assert rows[0].email == "loser@example.com"


# ---------------------------------------------------------------------------
# Partial updates, deletes, owned children
# ---------------------------------------------------------------------------

def test_patch_and_delete(db):
    reconciler = UpsertReconciler(db)
    saved = reconciler.upsert(EcommerceCustomer, _customer())

    assert reconciler.patch(EcommerceCustomer, "ws_1", "shopify", "c1", {"phone": "555"}) == saved.id
    assert db.query(EcommerceCustomer).one().phone == "555"
    assert reconciler.patch(EcommerceCustomer, "ws_1", "shopify", "missing", {"phone": "1"}) is None

    assert reconciler.delete(EcommerceCustomer, "ws_1", "shopify", "c1") is True
    assert reconciler.delete(EcommerceCustomer, "ws_1", "shopify", "c1") is False


def test_replace_children_swaps_line_items(db):
    reconciler = UpsertReconciler(db)
    order = reconciler.upsert(EcommerceOrder, {
        "workspace_id": "ws_1",
        "source": "shopify",
        "external_id": "o1",
        "total_price": Decimal("10.00"),
        "currency": "USD",
        "source_created_at": datetime(2024, 1, 1),
    })

    def item(title):
        return {"workspace_id": "ws_1", "title": title, "quantity": 1,
                "price": Decimal("5.00"), "total_price": Decimal("5.00"), "currency": "USD"}

    assert reconciler.replace_children(EcommerceOrderItem, "order_id", order.id, [item("a"), item("b")]) == 2
    assert reconciler.replace_children(EcommerceOrderItem, "order_id", order.id, [item("c")]) == 1

    titles = [row.title for row in db.query(EcommerceOrderItem).filter_by(order_id=order.id)]
    assert titles == ["c"]


def test_unlink_nulls_references(db):
    reconciler = UpsertReconciler(db)
    customer = reconciler.upsert(EcommerceCustomer, _customer())
    reconciler.upsert(EcommerceOrder, {
        "workspace_id": "ws_1",
        "source": "shopify",
        "external_id": "o1",
        "customer_id": customer.id,
        "total_price": Decimal("1.00"),
        "currency": "USD",
        "source_created_at": datetime(2024, 1, 1),
    })

    assert reconciler.unlink(EcommerceOrder, "customer_id", customer.id) == 1
    db.expire_all()
    assert db.query(EcommerceOrder).one().customer_id is None
    assert reconciler.unlink(EcommerceOrder, "customer_id", None) == 0
