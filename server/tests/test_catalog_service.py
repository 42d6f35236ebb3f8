from decimal import Decimal

import pytest

from rank_engine.core.errors import RankNotFound
from rank_engine.models.rank import Rank
from rank_engine.services.catalog_service import CatalogService


def test_list_ranks_orders_by_min_amount(db, ranks):
    assert [rank.id for rank in CatalogService(db).list_ranks()] == ["supporter", "vip", "mvp"]


@pytest.mark.parametrize(
    "amount, expected",
    [
        ("17.00", "vip"),
        ("3.00", None),
        ("5.00", "supporter"),
        ("25.00", "mvp"),
        ("500.00", "mvp"),
    ],
)
def test_find_rank_for_amount(db, ranks, amount, expected):
    rank = CatalogService(db).find_rank_for_amount(Decimal(amount))
    assert (rank.id if rank else None) == expected


def test_compute_days_is_clamped(db, ranks):
    service = CatalogService(db)
    vip = ranks["vip"]
    assert service.compute_days(Decimal("1.00"), vip) == 7
    assert service.compute_days(Decimal("1000.00"), vip) == 365
    assert service.compute_days(Decimal("10.00"), vip) == 30
    assert service.compute_days(Decimal("20.00"), vip) == 60
    assert service.compute_days(Decimal("15.00"), vip) == 45


def test_compute_days_for_free_rank_uses_base_duration(db):
    free = Rank(id="free", name="Free", min_amount=Decimal("0"), duration_days=14, perks=[])
    db.add(free)
    db.commit()
    assert CatalogService(db).compute_days(Decimal("3.00"), free) == 14


def test_get_rank_is_case_insensitive(db, ranks):
    service = CatalogService(db)
    assert service.get_rank("VIP").id == "vip"
    assert service.get_rank("unknown") is None
    assert service.get_rank("") is None


def test_provider_plan_lookup_and_backfill(db, ranks):
    service = CatalogService(db)
    assert service.find_rank_by_provider_plan("stripe", "price_vip") is None

    service.set_provider_plan_ids("vip", stripe_price_monthly="price_vip", stripe_product_id="prod_vip")
    service.set_provider_plan_ids("mvp", square_subscription_plan_variation_id="sq_var_mvp")

    assert service.find_rank_by_provider_plan("stripe", "price_vip").id == "vip"
    assert service.find_rank_by_provider_plan("stripe", "prod_vip").id == "vip"
    assert service.find_rank_by_provider_plan("square", "sq_var_mvp").id == "mvp"
    assert service.find_rank_by_provider_plan("kofi", "price_vip") is None


def test_set_provider_plan_ids_rejects_unknown_rank_and_field(db, ranks):
    service = CatalogService(db)
    with pytest.raises(RankNotFound):
        service.set_provider_plan_ids("legend", stripe_price_monthly="price_x")
    with pytest.raises(ValueError):
        service.set_provider_plan_ids("vip", paypal_plan="x")


def test_upsert_rank_creates_and_updates(db, ranks):
    service = CatalogService(db)
    created = service.upsert_rank("Legend", name="Legend", min_amount=Decimal("50.00"), duration_days=60)
    assert created.id == "legend"
    assert created.perks == []

    updated = service.upsert_rank("vip", color="#00ff00")
    assert updated.color == "#00ff00"
    assert updated.min_amount == Decimal("10.00")


def test_upsert_rank_validation(db):
    service = CatalogService(db)
    with pytest.raises(ValueError):
        service.upsert_rank("new", color="#fff")
    with pytest.raises(ValueError):
        service.upsert_rank("new", name="New", min_amount=Decimal("-1"))
    with pytest.raises(ValueError):
        service.upsert_rank("new", name="New", min_amount=Decimal("1"), owner="me")


def test_duration_packages_apply_discounts(db, ranks):
    packages = CatalogService(db).duration_packages(ranks["vip"])
    by_days = {package["days"]: package for package in packages}
    assert by_days[30]["price"] == Decimal("10.00")
    assert by_days[30]["discount"] is None
    assert by_days[90]["price"] == Decimal("28.50")
    assert by_days[365]["price"] == Decimal("103.42")
    assert by_days[365]["discount"] == 15
