"""Tests for paid marketplace actions: payments, publishing, edits."""

from rentbot.app import assemble_services

from conftest import FakePayments, OTHER_PHONE, PHONE, sample_listing


async def callback(services, reference, status="Paid"):
    return await services.marketplace.handle_payment_callback({
        "reference": reference,
        "paynowreference": "12345",
        "amount": "1.00",
        "status": status,
    })


async def buy_bundle(services, bundle="10"):
    result = await services.marketplace.buy(PHONE, bundle)
    assert result.ok
    return result.data["reference"]


# ── Credit purchases ───────────────────────────────────────────────

class TestCreditPurchase:
    async def test_pending_transaction_recorded(self, services, payments):
        reference = await buy_bundle(services)
        assert reference.startswith("CRD-")
        tx = await services.repo.get_transaction(reference)
        assert tx.status == "pending"
        assert tx.product == "credits_10"
        assert tx.amount == 1.0
        assert tx.provider_ref == f"POLL-{reference}"

    async def test_paid_callback_adds_credits_once(self, services, messenger):
        reference = await buy_bundle(services)
        assert await callback(services, reference) == "success"
        assert (await services.repo.get_user(PHONE)).credits == 13
        assert "10 credits added" in messenger.last

        assert await callback(services, reference) == "duplicate"
        assert await callback(services, reference, status="Cancelled") == "duplicate"
        assert (await services.repo.get_user(PHONE)).credits == 13

    async def test_failed_callback(self, services, messenger):
        reference = await buy_bundle(services)
        assert await callback(services, reference, status="Cancelled") == "failed"
        assert (await services.repo.get_transaction(reference)).status == "failed"
        assert (await services.repo.get_user(PHONE)).credits == 3
        assert "was not completed" in messenger.last

    async def test_pending_callback_changes_nothing(self, services):
        reference = await buy_bundle(services)
        assert await callback(services, reference, status="Sent") == "pending"
        assert (await services.repo.get_transaction(reference)).status == "pending"

    async def test_unknown_reference(self, services):
        assert await callback(services, "CRD-nope") == "unknown"

    async def test_push_failure_records_nothing(self, cfg, store, messenger):
        services = assemble_services(cfg, store, messenger, FakePayments(error="Insufficient balance"))
        result = await services.marketplace.buy(PHONE, "10")
        assert result.reason == "payment_error"
        assert messenger.last == "Payment could not be started: Insufficient balance"
        assert await store.find("transactions", {}) == []

    async def test_admin_product_is_priced_server_side(self, services, payments):
        result = await services.marketplace.buy_product(PHONE, "credits_30")
        assert result.ok
        assert payments.pushes[0][1] == 2.5

    async def test_admin_unknown_product(self, services, payments):
        result = await services.marketplace.buy_product(PHONE, "credits_5")
        assert result.reason == "invalid_input"
        assert payments.pushes == []


# ── Listing publication ────────────────────────────────────────────

class TestListingPublish:
    async def test_publish_after_payment(self, services, messenger, payments):
        draft = await services.marketplace.create_draft(PHONE, "Room in Avondale")
        result = await services.marketplace.buy(PHONE, f"LIST {draft.id}")
        assert result.ok
        assert result.data["reference"].startswith("LST-")
        assert payments.pushes[0][1] == 3.0

        assert await callback(services, result.data["reference"]) == "success"
        assert (await services.repo.get_listing(draft.id)).published is True
        assert "Listing Published" in messenger.last

    async def test_publish_requires_owner(self, services, payments):
        await services.repo.insert_listing(sample_listing("RNT-9", published=False))
        result = await services.marketplace.buy(PHONE, "LIST RNT-9")
        assert result.reason == "not_found"
        assert payments.pushes == []

    async def test_already_published(self, services, payments):
        await services.repo.insert_listing(sample_listing("RNT-9", owner_phone=PHONE))
        result = await services.marketplace.buy(PHONE, "LIST RNT-9")
        assert result.reason == "already_published"
        assert payments.pushes == []

    async def test_draft_not_searchable_until_published(self, services):
        draft = await services.marketplace.create_draft(PHONE, "Room in Avondale")
        assert await services.repo.search_listings(query="Avondale") == []
        await services.repo.publish_listing(draft.id)
        assert [r.id for r in await services.repo.search_listings(query="Avondale")] == [draft.id]


# ── Edits and reports ──────────────────────────────────────────────

class TestEditListing:
    async def test_owner_can_edit(self, services, messenger):
        draft = await services.marketplace.create_draft(PHONE)
        result = await services.marketplace.edit_listing(PHONE, draft.id, "rent", 300)
        assert result.ok
        assert (await services.repo.get_listing(draft.id)).rent == 300
        assert messenger.last == f"Listing {draft.id} updated: rent."

    async def test_non_owner_rejected(self, services):
        draft = await services.marketplace.create_draft(PHONE)
        result = await services.marketplace.edit_listing(OTHER_PHONE, draft.id, "title", "Mine now")
        assert result.reason == "not_owner"

    async def test_field_allowlist(self, services):
        draft = await services.marketplace.create_draft(PHONE)
        result = await services.marketplace.edit_listing(PHONE, draft.id, "published", True)
        assert result.reason == "invalid_input"
        assert (await services.repo.get_listing(draft.id)).published is False

    async def test_value_types(self, services):
        draft = await services.marketplace.create_draft(PHONE)
        edit = services.marketplace.edit_listing
        assert (await edit(PHONE, draft.id, "rent", "300")).reason == "invalid_input"
        assert (await edit(PHONE, draft.id, "rent", True)).reason == "invalid_input"
        assert (await edit(PHONE, draft.id, "external_images", ["a", 1])).reason == "invalid_input"
        assert (await edit(PHONE, draft.id, "external_images", ["https://img/1.jpg"])).ok
