"""Tests for catalog_service, the catalog blueprint and product/price webhooks.

Covers:
- Upsert from product objects (expanded price, price id, price lookup failure)
- Default-price changes from price events
- Soft delete (active=False, purchases untouched)
- Bulk resync with per-product failure isolation
- GET /api/products and POST /api/catalog/sync
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import stripe

from storefront.extensions import db
from storefront.models.product import Product
from storefront.models.purchase import Purchase
from storefront.services import catalog_service

PRICE_RETRIEVE = "storefront.services.catalog_service.stripe.Price.retrieve"
PRODUCT_RETRIEVE = "storefront.services.catalog_service.stripe.Product.retrieve"
PRODUCT_LIST = "storefront.services.catalog_service.stripe.Product.list"


def _stripe_product(product_id="prod_NEW", default_price="price_NEW", **overrides):
    product = {
        "id": product_id,
        "object": "product",
        "name": "Prompting Masterclass",
        "description": "Write prompts that work.",
        "active": True,
        "images": ["https://cdn.example.com/new.png"],
        "metadata": {"category": "Full Course"},
        "default_price": default_price,
    }
    product.update(overrides)
    return product


def _stripe_price(price_id="price_NEW", product_id="prod_NEW", unit_amount=3999,
                  currency="eur"):
    return {
        "id": price_id,
        "object": "price",
        "product": product_id,
        "unit_amount": unit_amount,
        "currency": currency,
    }


class TestUpsertFromProduct:

    def test_expanded_default_price(self, app, db_session):
        with app.app_context():
            product = _stripe_product(default_price=_stripe_price())
            with patch(PRICE_RETRIEVE) as mock_retrieve:
                row = catalog_service.upsert_from_product(product)
                db.session.commit()
                mock_retrieve.assert_not_called()

            row = Product.query.filter_by(stripe_product_id="prod_NEW").one()
            assert row.name == "Prompting Masterclass"
            assert row.unit_price == Decimal("39.99")
            assert row.stripe_price_id == "price_NEW"
            assert row.category == "Full Course"
            assert row.image_url == "https://cdn.example.com/new.png"
            assert row.active is True

    @patch(PRICE_RETRIEVE)
    def test_price_id_is_retrieved(self, mock_retrieve, app, db_session):
        mock_retrieve.return_value = _stripe_price(unit_amount=1999)

        with app.app_context():
            catalog_service.upsert_from_product(_stripe_product())
            db.session.commit()

            mock_retrieve.assert_called_once_with("price_NEW")
            row = Product.query.filter_by(stripe_product_id="prod_NEW").one()
            assert row.unit_price == Decimal("19.99")

    @patch(PRICE_RETRIEVE)
    def test_capitalized_category_key(self, mock_retrieve, app, db_session):
        mock_retrieve.return_value = _stripe_price()

        with app.app_context():
            catalog_service.upsert_from_product(
                _stripe_product(metadata={"Category": "Custom GPT"})
            )
            db.session.commit()
            row = Product.query.filter_by(stripe_product_id="prod_NEW").one()
            assert row.category == "Custom GPT"

    @patch(PRICE_RETRIEVE)
    def test_price_lookup_failure_stores_zero(self, mock_retrieve, app, db_session):
        """Partial sync: the product row still lands, at price 0."""
        mock_retrieve.side_effect = stripe.InvalidRequestError("No such price", "id")

        with app.app_context():
            catalog_service.upsert_from_product(_stripe_product())
            db.session.commit()

            row = Product.query.filter_by(stripe_product_id="prod_NEW").one()
            assert row.unit_price == Decimal("0.00")
            assert row.stripe_price_id is None
            assert row.name == "Prompting Masterclass"

    @patch(PRICE_RETRIEVE)
    def test_existing_row_is_updated_not_duplicated(self, mock_retrieve, app, seed_data):
        mock_retrieve.return_value = _stripe_price("price_A2", "prod_A", unit_amount=5999)

        with app.app_context():
            catalog_service.upsert_from_product(
                _stripe_product("prod_A", "price_A2", name="AI for Beginners (2nd ed.)")
            )
            db.session.commit()

            rows = Product.query.filter_by(stripe_product_id="prod_A").all()
            assert len(rows) == 1
            assert rows[0].name == "AI for Beginners (2nd ed.)"
            assert rows[0].unit_price == Decimal("59.99")
            assert rows[0].stripe_price_id == "price_A2"


class TestUpsertFromPrice:

    @patch(PRODUCT_RETRIEVE)
    def test_default_price_updates_row(self, mock_product, app, seed_data):
        mock_product.return_value = _stripe_product("prod_A", "price_A3")

        with app.app_context():
            row = catalog_service.upsert_from_price(
                _stripe_price("price_A3", "prod_A", unit_amount=2500)
            )
            db.session.commit()

            assert row is not None
            row = Product.query.filter_by(stripe_product_id="prod_A").one()
            assert row.unit_price == Decimal("25.00")
            assert row.stripe_price_id == "price_A3"
            # Untouched fields stay as synced
            assert row.name == "AI for Absolute Beginners"

    @patch(PRODUCT_RETRIEVE)
    def test_non_default_price_ignored(self, mock_product, app, seed_data):
        mock_product.return_value = _stripe_product("prod_A", "price_A")

        with app.app_context():
            result = catalog_service.upsert_from_price(
                _stripe_price("price_A_promo", "prod_A", unit_amount=100)
            )
            assert result is None
            row = Product.query.filter_by(stripe_product_id="prod_A").one()
            assert row.unit_price == Decimal("49.99")

    @patch(PRICE_RETRIEVE)
    @patch(PRODUCT_RETRIEVE)
    def test_unknown_product_is_synced_whole(self, mock_product, mock_price, app, db_session):
        mock_product.return_value = _stripe_product()
        mock_price.return_value = _stripe_price()

        with app.app_context():
            catalog_service.upsert_from_price(_stripe_price())
            db.session.commit()

            row = Product.query.filter_by(stripe_product_id="prod_NEW").one()
            assert row.name == "Prompting Masterclass"
            assert row.unit_price == Decimal("39.99")


class TestDeactivate:

    def test_deactivate_keeps_row_and_purchases(self, app, seed_data):
        with app.app_context():
            db.session.add(Purchase(
                user_id=seed_data["user_id"],
                product_id="prod_A",
                product_title="AI for Absolute Beginners",
                product_price=Decimal("49.99"),
                stripe_checkout_session_id="cs_old",
            ))
            db.session.commit()

            catalog_service.deactivate_product("prod_A")
            db.session.commit()

            row = Product.query.filter_by(stripe_product_id="prod_A").one()
            assert row.active is False
            assert Purchase.query.filter_by(product_id="prod_A").count() == 1

    def test_deactivate_unknown_product(self, app, db_session):
        with app.app_context():
            assert catalog_service.deactivate_product("prod_NEVER") is None


class TestBulkResync:

    @patch(PRICE_RETRIEVE)
    @patch(PRODUCT_LIST)
    def test_one_failure_does_not_stop_the_batch(self, mock_list, mock_price, app, db_session):
        products = [
            _stripe_product("prod_1", default_price=_stripe_price("price_1", "prod_1", 1000)),
            _stripe_product("prod_2", default_price="price_2"),
            _stripe_product("prod_3", default_price=_stripe_price("price_3", "prod_3", 3000)),
        ]
        listing = MagicMock()
        listing.auto_paging_iter.return_value = iter(products)
        mock_list.return_value = listing

        # prod_2 fails somewhere other than the price lookup
        real_upsert_row = catalog_service._upsert_row

        def flaky_upsert_row(stripe_product_id, fields):
            if stripe_product_id == "prod_2":
                raise RuntimeError("database hiccup")
            return real_upsert_row(stripe_product_id, fields)

        with app.app_context():
            with patch.object(catalog_service, "_upsert_row", side_effect=flaky_upsert_row):
                summary = catalog_service.bulk_resync()

            assert summary == {"synced": 2, "errors": 1, "total": 3}
            assert mock_list.call_args.kwargs["active"] is True
            ids = {p.stripe_product_id for p in Product.query.all()}
            assert ids == {"prod_1", "prod_3"}


class TestCatalogRoutes:

    def test_list_active_products(self, client, seed_data):
        resp = client.get("/api/products")
        assert resp.status_code == 200
        products = resp.get_json()["products"]
        ids = [p["id"] for p in products]
        assert "prod_OLD" not in ids
        assert set(ids) == {"prod_A", "prod_B"}

        course = next(p for p in products if p["id"] == "prod_A")
        assert course["price"] == 49.99
        assert course["imageUrl"] == "https://cdn.example.com/a.png"

    def test_filter_by_category(self, client, seed_data):
        resp = client.get("/api/products", query_string={"category": "PDF Guide"})
        ids = [p["id"] for p in resp.get_json()["products"]]
        assert ids == ["prod_B"]

    def test_sync_requires_service_key(self, client, seed_data):
        resp = client.post("/api/catalog/sync")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Service credentials required"

        resp = client.post(
            "/api/catalog/sync",
            headers={"Authorization": "Bearer user-access-token"},
        )
        assert resp.status_code == 401

    @patch("storefront.blueprints.catalog.bulk_resync")
    def test_sync_with_service_key(self, mock_resync, client, seed_data):
        mock_resync.return_value = {"synced": 4, "errors": 0, "total": 4}

        resp = client.post(
            "/api/catalog/sync",
            headers={"Authorization": "Bearer service_test_key"},
        )
        assert resp.status_code == 200
        assert resp.get_json() == {"synced": 4, "errors": 0, "total": 4}
        mock_resync.assert_called_once()


class TestCatalogWebhooks:
    """product.* / price.* events flow through the webhook endpoint."""

    @patch(PRICE_RETRIEVE)
    def test_product_created_event(self, mock_price, send_event, app, db_session):
        mock_price.return_value = _stripe_price()

        resp = send_event({
            "id": "evt_prod_created",
            "type": "product.created",
            "data": {"object": _stripe_product()},
        })
        assert resp.status_code == 200

        with app.app_context():
            row = Product.query.filter_by(stripe_product_id="prod_NEW").one()
            assert row.unit_price == Decimal("39.99")

    def test_product_deleted_event(self, send_event, app, seed_data):
        resp = send_event({
            "id": "evt_prod_deleted",
            "type": "product.deleted",
            "data": {"object": {"id": "prod_B", "object": "product"}},
        })
        assert resp.status_code == 200

        with app.app_context():
            assert Product.query.filter_by(stripe_product_id="prod_B").one().active is False

    @patch(PRODUCT_RETRIEVE)
    def test_price_updated_event(self, mock_product, send_event, app, seed_data):
        mock_product.return_value = _stripe_product("prod_B", "price_B")

        resp = send_event({
            "id": "evt_price_updated",
            "type": "price.updated",
            "data": {"object": _stripe_price("price_B", "prod_B", unit_amount=999)},
        })
        assert resp.status_code == 200

        with app.app_context():
            assert Product.query.filter_by(stripe_product_id="prod_B").one().unit_price == Decimal("9.99")
