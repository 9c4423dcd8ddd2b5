from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from app.core.enums import DiscountType, QuotationStatus
from app.models.discount_code import DiscountCode
from app.models.quotation import Quotation, QuotationItem


def mail_subjects(sent_notifications):
    return [call.args[0] for call in sent_notifications.call_args_list]


def mail_recipients(sent_notifications):
    return [call.args[2] for call in sent_notifications.call_args_list]


async def add_code(session_factory, **overrides):
    values = dict(
        code="HANDMADE10",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("10"),
        min_order_amount=Decimal("0"),
        usage_limit=None,
        used_count=0,
        valid_from=datetime.now(timezone.utc) - timedelta(days=1),
        valid_until=datetime.now(timezone.utc) + timedelta(days=30),
        is_active=True,
        apply_to_all_categories=True,
        category_ids=[],
    )
    values.update(overrides)
    async with session_factory() as session:
        code = DiscountCode(**values)
        session.add(code)
        await session.commit()
        return code


class TestCreateQuotation:

    @pytest.mark.asyncio
    async def test_create_writes_quotation_and_items(self, test_client, session_factory, valid_quotation_data, sent_notifications):
        response = await test_client.post("/quotations/", json=valid_quotation_data)

        assert response.status_code == 201
        data = response.json()
        assert data["ok"] is True
        assert data["status"] == "received"
        assert data["total_amount"] == 50.0
        assert data["final_amount"] == 50.0

        async with session_factory() as session:
            quotation = (await session.execute(select(Quotation))).scalar_one()
            items = (await session.execute(select(QuotationItem))).scalars().all()
        assert quotation.source == "souvenirs"
        assert quotation.locale == "es"
        assert quotation.quote_slug is None
        assert len(items) == 2
        assert items[0].product_snapshot["name"] == "Painted mug"

        assert mail_recipients(sent_notifications) == ["ana@example.com", "info@shop.test"]

    @pytest.mark.asyncio
    async def test_without_email_only_operator_is_told(self, test_client, valid_quotation_data, sent_notifications):
        data = dict(valid_quotation_data, email=None)

        response = await test_client.post("/quotations/", json=data)

        assert response.status_code == 201
        assert mail_recipients(sent_notifications) == ["info@shop.test"]

    @pytest.mark.asyncio
    async def test_blank_requester_name_is_rejected(self, test_client, valid_quotation_data):
        response = await test_client.post("/quotations/", json=dict(valid_quotation_data, requester_name="   "))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_error"
        assert body["field"] == "requester_name"

    @pytest.mark.asyncio
    async def test_empty_item_list_is_rejected(self, test_client, valid_quotation_data):
        response = await test_client.post("/quotations/", json=dict(valid_quotation_data, items=[]))

        assert response.status_code == 400
        assert response.json()["field"] == "items"

    @pytest.mark.asyncio
    async def test_too_many_items_are_rejected(self, test_client, valid_quotation_data, make_item, test_settings):
        items = [make_item(n, "1.00", 1) for n in range(1, test_settings.MAX_QUOTATION_ITEMS + 2)]

        response = await test_client.post("/quotations/", json=dict(valid_quotation_data, items=items))

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_non_positive_quantity_fails_validation(self, test_client, valid_quotation_data, make_item):
        response = await test_client.post(
            "/quotations/", json=dict(valid_quotation_data, items=[make_item(1, "5.00", 0)])
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_snapshot_fields_fail_validation(self, test_client, valid_quotation_data, make_item):
        item = make_item(1, "5.00", 1)
        item["product_snapshot"]["colour"] = "red"

        response = await test_client.post("/quotations/", json=dict(valid_quotation_data, items=[item]))

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_failed_write_leaves_nothing_behind(self, test_client, session_factory, valid_quotation_data, sent_notifications):
        with patch(
            "sqlalchemy.ext.asyncio.AsyncSession.commit",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        ):
            response = await test_client.post("/quotations/", json=valid_quotation_data)

        assert response.status_code == 500
        assert response.json()["error"] == "persistence_error"
        async with session_factory() as session:
            assert (await session.execute(select(Quotation))).first() is None
            assert (await session.execute(select(QuotationItem))).first() is None
        sent_notifications.assert_not_called()


class TestDiscountCodeOnCreate:

    @pytest.mark.asyncio
    async def test_code_is_applied_and_counted(self, test_client, session_factory, valid_quotation_data):
        await add_code(session_factory, usage_limit=5)

        response = await test_client.post(
            "/quotations/", json=dict(valid_quotation_data, discount_code="handmade10")
        )

        assert response.status_code == 201
        assert response.json()["final_amount"] == 45.0
        async with session_factory() as session:
            code = (await session.execute(select(DiscountCode))).scalar_one()
            quotation = (await session.execute(select(Quotation))).scalar_one()
        assert code.used_count == 1
        assert quotation.discount_code_applied["code"] == "HANDMADE10"
        assert quotation.discount_code_applied["discount_amount"] == "5.00"

    @pytest.mark.asyncio
    async def test_exhausted_code_is_rejected(self, test_client, session_factory, valid_quotation_data):
        await add_code(session_factory, usage_limit=1, used_count=1)

        response = await test_client.post(
            "/quotations/", json=dict(valid_quotation_data, discount_code="HANDMADE10")
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "usage_limit_reached"
        async with session_factory() as session:
            assert (await session.execute(select(Quotation))).first() is None

    @pytest.mark.asyncio
    async def test_unknown_code_is_rejected(self, test_client, valid_quotation_data):
        response = await test_client.post(
            "/quotations/", json=dict(valid_quotation_data, discount_code="NOPE")
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "unknown_code"

    @pytest.mark.asyncio
    async def test_validate_endpoint_does_not_claim_a_use(self, test_client, session_factory, valid_quotation_data):
        await add_code(session_factory, usage_limit=1)

        response = await test_client.post(
            "/discount-codes/validate",
            json={"code": "handmade10", "items": valid_quotation_data["items"]},
        )

        assert response.status_code == 200
        assert response.json() == {
            "valid": True, "code": "HANDMADE10", "discount_amount": 5.0,
            "final_amount": 45.0, "reason": None, "message": None,
        }
        async with session_factory() as session:
            assert (await session.execute(select(DiscountCode))).scalar_one().used_count == 0

    @pytest.mark.asyncio
    async def test_validate_endpoint_reports_rejection(self, test_client, session_factory, valid_quotation_data):
        await add_code(session_factory, min_order_amount=Decimal("100"))

        response = await test_client.post(
            "/discount-codes/validate",
            json={"code": "HANDMADE10", "items": valid_quotation_data["items"]},
        )

        assert response.status_code == 200
        assert response.json()["valid"] is False
        assert response.json()["reason"] == "min_order_not_met"


class TestPricing:

    @pytest.mark.asyncio
    async def test_price_only_keeps_link_unminted(self, test_client, create_quotation_factory, operator_headers, sent_notifications):
        created = await create_quotation_factory()
        sent_notifications.reset_mock()

        response = await test_client.post(
            f"/quotations/{created['request_id']}/price",
            json={"discount": {"type": "percentage", "value": "10"}, "shipping_cost": "7"},
            headers=operator_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "priced"
        assert data["final_amount"] == 52.0
        assert data["discount_amount"] == 5.0
        assert data["quote_slug"] is None
        sent_notifications.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_mints_slug_and_mails_both(self, test_client, create_quotation_factory, operator_headers, sent_notifications):
        created = await create_quotation_factory()
        sent_notifications.reset_mock()

        response = await test_client.post(
            f"/quotations/{created['request_id']}/send",
            json={"discount": {"type": "fixed_amount", "value": "5"}, "shipping_cost": "7", "final_amount": "52.00"},
            headers=operator_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "sent_to_client"
        assert data["total_amount"] == 50.0
        assert data["final_amount"] == 52.0
        assert data["quote_slug"]
        assert str(created["request_id"]) != data["quote_slug"]
        assert data["payment_link"] == f"https://shop.test/quote/{data['quote_slug']}"
        assert mail_recipients(sent_notifications) == ["ana@example.com", "info@shop.test"]
        assert data["payment_link"] in sent_notifications.call_args_list[0].args[1]

    @pytest.mark.asyncio
    async def test_mismatching_final_amount_is_rejected(self, test_client, create_quotation_factory, operator_headers):
        created = await create_quotation_factory()

        response = await test_client.post(
            f"/quotations/{created['request_id']}/send",
            json={"discount": {"type": "fixed_amount", "value": "5"}, "shipping_cost": "7", "final_amount": "50.00"},
            headers=operator_headers,
        )

        assert response.status_code == 400
        assert response.json()["field"] == "final_amount"
        assert response.json()["expected"] == "52.00"

    @pytest.mark.asyncio
    async def test_sending_twice_is_a_conflict(self, test_client, sent_quotation_factory, operator_headers):
        sent = await sent_quotation_factory()

        response = await test_client.post(
            f"/quotations/{sent['id']}/send",
            json={"shipping_cost": "7"},
            headers=operator_headers,
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_item_discounts_are_stored_on_items(self, test_client, create_quotation_factory, operator_headers, session_factory):
        created = await create_quotation_factory()
        async with session_factory() as session:
            items = (await session.execute(select(QuotationItem).order_by(QuotationItem.id))).scalars().all()
        first_id, second_id = items[0].id, items[1].id

        response = await test_client.post(
            f"/quotations/{created['request_id']}/send",
            json={
                "discount": {"type": "product_percentage", "product_discounts": {str(first_id): "50"}},
                "shipping_cost": "0",
            },
            headers=operator_headers,
        )

        assert response.status_code == 200
        assert response.json()["final_amount"] == 40.0
        detail = await test_client.get(f"/quotations/{created['request_id']}", headers=operator_headers)
        by_id = {item["id"]: item for item in detail.json()["items"]}
        assert by_id[first_id]["discount_percentage"] == 50.0
        assert by_id[first_id]["discounted_total"] == 10.0
        assert by_id[second_id]["discount_percentage"] is None
        assert by_id[second_id]["discounted_total"] == 30.0

    @pytest.mark.asyncio
    async def test_out_of_range_percentage_is_rejected(self, test_client, create_quotation_factory, operator_headers):
        created = await create_quotation_factory()

        response = await test_client.post(
            f"/quotations/{created['request_id']}/send",
            json={"discount": {"type": "percentage", "value": "120"}},
            headers=operator_headers,
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_value"

    @pytest.mark.asyncio
    async def test_pricing_needs_an_operator(self, test_client, create_quotation_factory):
        created = await create_quotation_factory()

        response = await test_client.post(f"/quotations/{created['request_id']}/send", json={})

        assert response.status_code == 401


class TestPublicFetch:

    @pytest.mark.asyncio
    async def test_sent_quotation_is_visible_by_slug(self, test_client, sent_quotation_factory):
        sent = await sent_quotation_factory()

        response = await test_client.get(f"/quotations/public/{sent['quote_slug']}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == sent["id"]
        assert data["final_amount"] == 52.0
        assert data["discount_amount"] == 5.0
        assert data["shipping_cost"] == 7.0
        assert data["paid"] is False
        assert len(data["items"]) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [QuotationStatus.RECEIVED, QuotationStatus.PRICED, QuotationStatus.CLOSED_LOST])
    async def test_unreleased_quotation_is_not_found(self, test_client, sent_quotation_factory, session_factory, status):
        sent = await sent_quotation_factory()
        async with session_factory() as session:
            quotation = await session.get(Quotation, sent["id"])
            quotation.status = status
            await session.commit()

        response = await test_client.get(f"/quotations/public/{sent['quote_slug']}")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_slug_is_not_found(self, test_client):
        response = await test_client.get("/quotations/public/not-a-slug")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_missing_total_is_recomputed_from_items(self, test_client, sent_quotation_factory, session_factory):
        sent = await sent_quotation_factory()
        async with session_factory() as session:
            quotation = await session.get(Quotation, sent["id"])
            quotation.total_amount = None
            await session.commit()

        response = await test_client.get(f"/quotations/public/{sent['quote_slug']}")

        assert response.status_code == 200
        assert response.json()["total_amount"] == 50.0
        async with session_factory() as session:
            assert (await session.get(Quotation, sent["id"])).total_amount is None


class TestOperatorViews:

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_search(self, test_client, create_quotation_factory, sent_quotation_factory, operator_headers):
        await create_quotation_factory(requester_name="Luis Vega", email="luis@example.com")
        await sent_quotation_factory()

        received = await test_client.get("/quotations/?status=received", headers=operator_headers)
        searched = await test_client.get("/quotations/?search=luis", headers=operator_headers)

        assert [q["requester_name"] for q in received.json()] == ["Luis Vega"]
        assert [q["email"] for q in searched.json()] == ["luis@example.com"]

    @pytest.mark.asyncio
    async def test_missing_quotation_is_not_found(self, test_client, operator_headers):
        response = await test_client.get("/quotations/999", headers=operator_headers)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_close_lost_then_terminal(self, test_client, create_quotation_factory, operator_headers):
        created = await create_quotation_factory()

        lost = await test_client.put(
            f"/quotations/{created['request_id']}/status",
            json={"status": "closed_lost", "admin_notes": "Customer bought elsewhere"},
            headers=operator_headers,
        )
        reopen = await test_client.put(
            f"/quotations/{created['request_id']}/status",
            json={"status": "priced"},
            headers=operator_headers,
        )

        assert lost.status_code == 200
        assert lost.json()["status"] == "closed_lost"
        assert lost.json()["admin_notes"] == "Customer bought elsewhere"
        assert reopen.status_code == 409

    @pytest.mark.asyncio
    async def test_won_is_not_set_by_hand(self, test_client, sent_quotation_factory, operator_headers):
        sent = await sent_quotation_factory()

        response = await test_client.put(
            f"/quotations/{sent['id']}/status", json={"status": "closed_won"}, headers=operator_headers
        )

        assert response.status_code == 400
