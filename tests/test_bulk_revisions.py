"""
Bulk price changes: apply, preview, history and exactly-once revert.
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

from kiosk_pricing.db.tables import ACTION_APPLY, ACTION_REVERT, PriceRevisionRow, ProductRow
from kiosk_pricing.engine.models import PriceList
from kiosk_pricing.errors import (
    AlreadyRevertedError,
    ImmutableRecordError,
    InvalidBulkRequestError,
    NotRevertibleError,
    RevisionConflictError,
    RevisionNotFoundError,
    TransactionFailedError,
)
from kiosk_pricing.services.bulk_revision_service import (
    BulkFilter,
    BulkRevisionService,
    resolve_actor_name,
)
from kiosk_pricing.services.price_list_service import PriceListService

from conftest import MONDAY_AFTERNOON, prices

DRINKS = ("cola", "juice", "water")


@pytest.fixture
def service(catalog, settings):
    return BulkRevisionService(catalog, settings)


def revision_count(db):
    return db.query(PriceRevisionRow).count()


def test_apply_on_category(service, catalog):
    revision = service.apply_bulk_change(BulkFilter.category("drinks"), 10, actor="Ana")

    assert prices(catalog, *DRINKS) == {
        "cola": Decimal("110"),
        "juice": Decimal("275"),
        "water": Decimal("1098.90"),
    }
    assert revision.action_type == ACTION_APPLY
    assert revision.user_name == "Ana"
    assert revision.description == "+10% on 3 products (category Drinks)"
    assert len(revision.affected_products) == 3
    assert revision.revertible

    water = next(a for a in revision.affected_products if a.product_id == "water")
    assert water.previous_price == Decimal("999")
    assert water.new_price == Decimal("1098.90")
    assert water.previous_cost == water.new_cost == Decimal("500")


def test_apply_then_revert_restores_exact_prices(service, catalog):
    before = prices(catalog, *DRINKS)
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10, actor="Ana")
    reverted = service.revert_revision(applied.id, actor="Luis")

    assert prices(catalog, *DRINKS) == before
    assert reverted.action_type == ACTION_REVERT
    assert reverted.source_revision_id == applied.id
    assert reverted.description == f"Revert of: {applied.description}"
    assert reverted.user_name == "Luis"

    cola = next(a for a in reverted.affected_products if a.product_id == "cola")
    assert cola.previous_price == Decimal("110")
    assert cola.new_price == Decimal("100")


def test_revert_twice_is_a_conflict_and_changes_nothing(service, catalog):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    first = service.revert_revision(applied.id)
    restored = prices(catalog, *DRINKS)

    with pytest.raises(AlreadyRevertedError) as exc_info:
        service.revert_revision(applied.id)

    assert exc_info.value.revert_id == first.id
    assert prices(catalog, *DRINKS) == restored
    assert revision_count(catalog) == 2


def test_concurrent_second_revert_blocked_by_unique_constraint(service, catalog, monkeypatch):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    service.revert_revision(applied.id)
    restored = prices(catalog, *DRINKS)

    # Pretend the pre-check raced past the first revert
    monkeypatch.setattr(service, "_reverted_by", lambda ids: {})
    with pytest.raises(AlreadyRevertedError):
        service.revert_revision(applied.id)

    assert prices(catalog, *DRINKS) == restored
    assert revision_count(catalog) == 2


def test_revert_of_a_revert_has_nothing_to_revert(service):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    reverted = service.revert_revision(applied.id)

    with pytest.raises(NotRevertibleError):
        service.revert_revision(reverted.id)


def test_revert_unknown_revision(service):
    with pytest.raises(RevisionNotFoundError) as exc_info:
        service.revert_revision("missing")
    assert isinstance(exc_info.value, RevisionConflictError)


@pytest.mark.parametrize("percentage", [0, -5, "0.0", "abc", "NaN"])
def test_non_positive_percentage_rejected_before_mutation(service, catalog, percentage):
    before = prices(catalog, *DRINKS)
    with pytest.raises(InvalidBulkRequestError):
        service.apply_bulk_change(BulkFilter.category("drinks"), percentage)
    assert prices(catalog, *DRINKS) == before
    assert revision_count(catalog) == 0


@pytest.mark.parametrize("bulk_filter", [
    BulkFilter.category("nope"),
    BulkFilter.supplier("nope"),
    BulkFilter.category("bakery"),
    BulkFilter.supplier("gamma"),
    BulkFilter.selection(["ghost"]),
    BulkFilter.selection([]),
])
def test_unknown_target_or_empty_match_rejected(service, catalog, bulk_filter):
    with pytest.raises(InvalidBulkRequestError):
        service.apply_bulk_change(bulk_filter, 10)
    assert revision_count(catalog) == 0


def test_apply_on_selection(service, catalog):
    revision = service.apply_bulk_change(BulkFilter.selection(["cola", "chips", "ghost"]), 25)
    assert prices(catalog, "cola", "chips", "juice") == {
        "cola": Decimal("125"),
        "chips": Decimal("100"),
        "juice": Decimal("250"),
    }
    assert revision.description == "+25% on 2 products"
    assert revision.filter_mode == "selection"


def test_apply_on_supplier(service, catalog):
    revision = service.apply_bulk_change(BulkFilter.supplier("acme"), 5)
    assert {a.product_id for a in revision.affected_products} == {"cola", "juice", "chips"}
    assert prices(catalog, "water")["water"] == Decimal("999")
    assert revision.description.endswith("(supplier Acme)")


def test_cost_untouched_by_default(service, catalog):
    service.apply_bulk_change(BulkFilter.selection(["cola"]), 50)
    catalog.expire_all()
    assert catalog.get(ProductRow, "cola").cost == Decimal("60")


def test_cost_included_is_snapshotted_and_restored(service, catalog):
    applied = service.apply_bulk_change(BulkFilter.selection(["cola", "juice"]), 10, include_cost=True)
    catalog.expire_all()
    assert catalog.get(ProductRow, "cola").cost == Decimal("66")
    assert catalog.get(ProductRow, "juice").cost == Decimal("165")

    service.revert_revision(applied.id)
    catalog.expire_all()
    assert catalog.get(ProductRow, "cola").cost == Decimal("60")
    assert catalog.get(ProductRow, "juice").cost == Decimal("150")
    assert catalog.get(ProductRow, "cola").price == Decimal("100")


def test_deleted_product_becomes_a_discrepancy(service, catalog):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    catalog.delete(catalog.get(ProductRow, "juice"))
    catalog.commit()

    reverted = service.revert_revision(applied.id)

    assert prices(catalog, "cola", "water") == {"cola": Decimal("100"), "water": Decimal("999")}
    assert [d.product_id for d in reverted.discrepancies] == ["juice"]
    assert {a.product_id for a in reverted.affected_products} == {"cola", "water"}


def test_persistence_failure_rolls_back_everything(service, catalog, monkeypatch):
    before = prices(catalog, *DRINKS)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(catalog, "commit", broken_commit)
    with pytest.raises(TransactionFailedError):
        service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    monkeypatch.undo()

    assert prices(catalog, *DRINKS) == before
    assert revision_count(catalog) == 0


def test_revision_records_are_immutable(service, catalog):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    row = catalog.get(PriceRevisionRow, applied.id)

    row.description = "rewritten history"
    with pytest.raises(ImmutableRecordError):
        catalog.commit()
    catalog.rollback()

    with pytest.raises(ImmutableRecordError):
        catalog.delete(catalog.get(PriceRevisionRow, applied.id))
        catalog.commit()
    catalog.rollback()

    assert catalog.get(PriceRevisionRow, applied.id).description == applied.description


def test_operation_token_prevents_double_apply(service, catalog):
    first = service.apply_bulk_change(BulkFilter.selection(["cola"]), 10, operation_token="op-1")
    second = service.apply_bulk_change(BulkFilter.selection(["cola"]), 10, operation_token="op-1")

    assert second.id == first.id
    assert prices(catalog, "cola")["cola"] == Decimal("110")
    assert revision_count(catalog) == 1


def test_history_newest_first_with_revert_flags(service):
    first = service.apply_bulk_change(BulkFilter.selection(["cola"]), 10)
    second = service.apply_bulk_change(BulkFilter.selection(["juice"]), 20)
    revert = service.revert_revision(first.id)

    history = service.list_revisions()
    assert [r.id for r in history] == [revert.id, second.id, first.id]

    by_id = {r.id: r for r in history}
    assert not by_id[first.id].revertible
    assert by_id[first.id].reverted_by == revert.id
    assert by_id[second.id].revertible
    assert not by_id[revert.id].revertible

    assert len(service.list_revisions(limit=1)) == 1
    assert service.get_revision(first.id).reverted_by == revert.id


def test_preview_shows_checkout_price_without_mutating(service, catalog):
    PriceListService(catalog).create_price_list(PriceList(
        id="promo", name="Promo", adjustment_percentage=Decimal("-10"), rounding_rule="nearest_50",
    ))
    before = prices(catalog, *DRINKS)

    preview = service.preview_bulk_change(BulkFilter.category("drinks"), 10, now=MONDAY_AFTERNOON)

    assert prices(catalog, *DRINKS) == before
    assert revision_count(catalog) == 0
    assert preview.count == 3
    assert preview.description == "+10% on 3 products (category Drinks)"

    lines = {line.product_id: line for line in preview.lines}
    assert lines["water"].new_price == Decimal("1098.90")
    assert lines["water"].checkout_price == Decimal("1000")
    assert lines["cola"].checkout_price == Decimal("100")
    assert lines["juice"].checkout_price == Decimal("250")
    assert lines["juice"].price_list_id == "promo"


def test_preview_rejects_bad_requests(service):
    with pytest.raises(InvalidBulkRequestError):
        service.preview_bulk_change(BulkFilter.category("drinks"), 0)


def test_filter_from_request_requires_exactly_one_mode():
    assert BulkFilter.from_request(category_id="drinks") == BulkFilter.category("drinks")
    assert BulkFilter.from_request(product_ids=["a", "a", "b"]).product_ids == ("a", "b")
    with pytest.raises(InvalidBulkRequestError):
        BulkFilter.from_request()
    with pytest.raises(InvalidBulkRequestError):
        BulkFilter.from_request(category_id="drinks", supplier_id="acme")


@pytest.mark.parametrize("actor,expected", [
    ("Ana", "Ana"),
    ("  ", "Unknown user"),
    (None, "Unknown user"),
    ({"full_name": "Ana Ruiz", "email": "ana@example.com"}, "Ana Ruiz"),
    ({"email": "ana@example.com"}, "ana@example.com"),
    ({}, "Unknown user"),
])
def test_actor_name_resolution(actor, expected):
    assert resolve_actor_name(actor) == expected


def lock_timeout(self, *args, **kwargs):
    raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("lock timeout"))


def test_lock_failure_on_apply_is_a_transaction_failure(service, catalog, monkeypatch):
    before = prices(catalog, *DRINKS)

    monkeypatch.setattr(Query, "with_for_update", lock_timeout)
    with pytest.raises(TransactionFailedError):
        service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    monkeypatch.undo()

    assert prices(catalog, *DRINKS) == before
    assert revision_count(catalog) == 0


def test_lock_failure_keeps_bad_requests_as_bad_requests(service, monkeypatch):
    monkeypatch.setattr(Query, "with_for_update", lock_timeout)
    with pytest.raises(InvalidBulkRequestError):
        service.apply_bulk_change(BulkFilter.category("nope"), 10)


def test_lock_failure_on_revert_leaves_apply_revertible(service, catalog, monkeypatch):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    after_apply = prices(catalog, *DRINKS)

    monkeypatch.setattr(Query, "with_for_update", lock_timeout)
    with pytest.raises(TransactionFailedError):
        service.revert_revision(applied.id)
    monkeypatch.undo()

    assert prices(catalog, *DRINKS) == after_apply
    assert revision_count(catalog) == 1
    assert service.get_revision(applied.id).revertible


def test_revert_commit_failure_rolls_back_everything(service, catalog, monkeypatch):
    applied = service.apply_bulk_change(BulkFilter.category("drinks"), 10)
    after_apply = prices(catalog, *DRINKS)

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(catalog, "commit", broken_commit)
    with pytest.raises(TransactionFailedError):
        service.revert_revision(applied.id)
    monkeypatch.undo()

    assert prices(catalog, *DRINKS) == after_apply
    assert catalog.query(PriceRevisionRow).filter_by(action_type=ACTION_REVERT).count() == 0
    assert service.get_revision(applied.id).revertible

    # The failed attempt does not use up the single allowed revert
    service.revert_revision(applied.id)
    assert prices(catalog, "cola")["cola"] == Decimal("100")


@pytest.mark.parametrize("limit", [0, -1])
def test_history_limit_must_be_positive(service, limit):
    with pytest.raises(InvalidBulkRequestError):
        service.list_revisions(limit=limit)
