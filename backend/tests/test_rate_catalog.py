"""Rate types, client rates and commission rate type defaults."""
from decimal import Decimal

import pytest

from app.core.exceptions import RecordNotFoundError, ValidationError
from app.schemas.rate import (
    CommissionRateTypeCreate, CommissionRateTypeUpdate, RateTypeCreate, RateTypeUpdate, RateUpsert,
)
from app.services.rate_catalog import RateCatalogService, normalize_currency


class TestCurrency:
    def test_default_currency(self):
        assert normalize_currency(None) == "INR"

    def test_upper_cases(self):
        assert normalize_currency(" usd ") == "USD"

    @pytest.mark.parametrize("bad", ["US", "US1", "EURO"])
    def test_rejects_malformed_codes(self, bad):
        with pytest.raises(ValidationError):
            normalize_currency(bad)


class TestRateTypes:
    def test_create_and_search(self, db):
        catalog = RateCatalogService(db)
        catalog.create_rate_type(RateTypeCreate(name="Local", description="city"))
        catalog.create_rate_type(RateTypeCreate(name="OGL"))
        assert [rt.name for rt in catalog.list_rate_types(search="loc")] == ["Local"]

    def test_names_are_unique_ignoring_case(self, db, local):
        with pytest.raises(ValidationError, match="already exists"):
            RateCatalogService(db).create_rate_type(RateTypeCreate(name="LOCAL"))

    def test_rename_to_own_name(self, db, local):
        updated = RateCatalogService(db).update_rate_type(local.id, RateTypeUpdate(name="Local", description="x"))
        assert updated.description == "x"

    def test_deactivate(self, db, local, outstation):
        catalog = RateCatalogService(db)
        catalog.deactivate_rate_type(local.id)
        assert [rt.name for rt in catalog.list_rate_types(is_active=True)] == ["Outstation"]

    def test_unknown(self, db):
        with pytest.raises(RecordNotFoundError):
            RateCatalogService(db).get_rate_type(77)


class TestClientRates:
    def rate(self, client, rate_type, amount="400"):
        return RateUpsert(
            client_id=client.id, product_id=1, verification_type_id=2,
            rate_type_id=rate_type.id, amount=Decimal(amount),
        )

    def test_upsert_updates_the_active_row(self, db, hdfc, local):
        catalog = RateCatalogService(db)
        first = catalog.upsert_rate(self.rate(hdfc, local, "400"))
        second = catalog.upsert_rate(self.rate(hdfc, local, "450"))
        assert second.id == first.id
        assert catalog.lookup_base_amount(hdfc.id, 1, 2, local.id) == Decimal("450")
        assert len(catalog.list_rates(client_id=hdfc.id)) == 1

    def test_lookup_misses(self, db, hdfc, icici, local):
        catalog = RateCatalogService(db)
        rate = catalog.upsert_rate(self.rate(hdfc, local))
        assert catalog.lookup_base_amount(icici.id, 1, 2, local.id) is None
        assert catalog.lookup_base_amount(hdfc.id, None, 2, local.id) is None
        catalog.deactivate_rate(rate.id)
        assert catalog.lookup_base_amount(hdfc.id, 1, 2, local.id) is None

    def test_unknown_client(self, db, hdfc, local):
        data = self.rate(hdfc, local)
        data.client_id = 999
        with pytest.raises(RecordNotFoundError):
            RateCatalogService(db).upsert_rate(data)


class TestCommissionRateTypes:
    def test_create_update(self, db, admin, local):
        catalog = RateCatalogService(db)
        crt = catalog.create_commission_rate_type(
            CommissionRateTypeCreate(rate_type_id=local.id, commission_amount=Decimal("120")), user_id=admin.id
        )
        assert crt.currency == "INR"
        updated = catalog.update_commission_rate_type(crt.id, CommissionRateTypeUpdate(commission_amount=Decimal("130")))
        assert updated.commission_amount == Decimal("130")

    def test_one_per_rate_type(self, db, local):
        catalog = RateCatalogService(db)
        catalog.create_commission_rate_type(CommissionRateTypeCreate(rate_type_id=local.id, commission_amount=Decimal("1")))
        with pytest.raises(ValidationError):
            catalog.create_commission_rate_type(CommissionRateTypeCreate(rate_type_id=local.id, commission_amount=Decimal("2")))

    def test_delete_blocked_by_active_assignment(self, db, agent, local, make_assignment):
        catalog = RateCatalogService(db)
        crt = catalog.create_commission_rate_type(
            CommissionRateTypeCreate(rate_type_id=local.id, commission_amount=Decimal("100"))
        )
        assignment = make_assignment(agent, local)
        with pytest.raises(ValidationError, match="active assignments"):
            catalog.delete_commission_rate_type(crt.id)

        assignment.is_active = False
        db.commit()
        catalog.delete_commission_rate_type(crt.id)
        with pytest.raises(RecordNotFoundError):
            catalog.get_commission_rate_type(crt.id)
