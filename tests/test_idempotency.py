"""
Tests for idempotent money movement via the Idempotency-Key header.

These tests verify:
  - Repeating a request with the same key replays the first transaction
    (200 + Idempotent-Replayed) and moves money only once
  - Reusing a key for a different request is a 409
  - Keys are scoped to the client that sent them
  - Requests without a key are never deduplicated
"""

from decimal import Decimal

import pytest

from app.exceptions import IdempotencyKeyReuseError
from app.models.transaction import TransactionType
from app.services import transaction_log


class TestIdempotentRequests:

    async def test_replayed_deposit(self, member_client, make_account):
        account = await make_account(member_client)
        body = {"accountId": account["id"], "amount": 25}
        headers = {"Idempotency-Key": "deposit-001"}

        first = await member_client.post("/transactions/depot", json=body, headers=headers)
        second = await member_client.post("/transactions/depot", json=body, headers=headers)

        assert first.status_code == 201
        assert "idempotent-replayed" not in first.headers
        assert second.status_code == 200
        assert second.headers["idempotent-replayed"] == "true"
        assert second.json()["id"] == first.json()["id"]

        detail = await member_client.get(f"/accounts/{account['id']}")
        assert detail.json()["balance"] == 25.0

        history = await member_client.get(f"/accounts/{account['id']}/transactions")
        assert len(history.json()) == 1

    async def test_replayed_transfer(self, member_client, make_account):
        source = await make_account(member_client, initial_deposit=100)
        destination = await make_account(member_client)
        body = {
            "amount": 60,
            "sourceAccountId": source["id"],
            "destinationAccountId": destination["id"],
        }
        headers = {"Idempotency-Key": "transfer-001"}

        first = await member_client.post("/transactions", json=body, headers=headers)
        second = await member_client.post("/transactions", json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["id"] == first.json()["id"]

        source_detail = await member_client.get(f"/accounts/{source['id']}")
        assert source_detail.json()["balance"] == 40.0

    async def test_replayed_decline_is_not_retried(self, member_client, make_account):
        """A declined request replays its FAILED record instead of trying again."""
        account = await make_account(member_client, initial_deposit=10)
        body = {"accountId": account["id"], "amount": 50}
        headers = {"Idempotency-Key": "withdraw-001"}

        first = await member_client.post("/transactions/retrait", json=body, headers=headers)
        assert first.status_code == 402

        # Money arrives in the meantime; the replay still reports the decline
        await member_client.post(
            "/transactions/depot", json={"accountId": account["id"], "amount": 100}
        )
        second = await member_client.post("/transactions/retrait", json=body, headers=headers)
        assert second.status_code == 200
        assert second.json()["status"] == "FAILED"

        detail = await member_client.get(f"/accounts/{account['id']}")
        assert detail.json()["balance"] == 110.0

    async def test_key_reused_for_different_request(self, member_client, make_account):
        account = await make_account(member_client)
        headers = {"Idempotency-Key": "deposit-002"}

        await member_client.post(
            "/transactions/depot",
            json={"accountId": account["id"], "amount": 25},
            headers=headers,
        )
        response = await member_client.post(
            "/transactions/depot",
            json={"accountId": account["id"], "amount": 26},
            headers=headers,
        )
        assert response.status_code == 409
        assert response.json()["error_type"] == "idempotency_key_reuse"

        detail = await member_client.get(f"/accounts/{account['id']}")
        assert detail.json()["balance"] == 25.0

    async def test_keys_are_scoped_per_client(
        self, member_client, other_member_client, make_account
    ):
        mine = await make_account(member_client)
        theirs = await make_account(other_member_client)
        headers = {"Idempotency-Key": "shared-key"}

        first = await member_client.post(
            "/transactions/depot", json={"accountId": mine["id"], "amount": 1}, headers=headers
        )
        second = await other_member_client.post(
            "/transactions/depot", json={"accountId": theirs["id"], "amount": 1}, headers=headers
        )
        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json()["id"] != second.json()["id"]

    async def test_no_key_no_deduplication(self, member_client, make_account):
        account = await make_account(member_client)
        body = {"accountId": account["id"], "amount": 5}

        await member_client.post("/transactions/depot", json=body)
        await member_client.post("/transactions/depot", json=body)

        detail = await member_client.get(f"/accounts/{account['id']}")
        assert detail.json()["balance"] == 10.0

    async def test_oversized_key_rejected(self, member_client, make_account):
        account = await make_account(member_client)
        response = await member_client.post(
            "/transactions/depot",
            json={"accountId": account["id"], "amount": 5},
            headers={"Idempotency-Key": "k" * 129},
        )
        assert response.status_code == 400


class TestTransactionLogKeys:
    """The uniqueness constraint is the last line of defence against races."""

    async def test_duplicate_key_insert(self, db_session, member_id):
        await transaction_log.record_pending(
            db_session,
            TransactionType.DEPOSIT,
            100,
            initiated_by=member_id,
            idempotency_key="race",
        )
        with pytest.raises(IdempotencyKeyReuseError):
            await transaction_log.record_pending(
                db_session,
                TransactionType.DEPOSIT,
                100,
                initiated_by=member_id,
                idempotency_key="race",
            )

        found = await transaction_log.find_by_idempotency_key(db_session, member_id, "race")
        assert found is not None
        assert found.amount == Decimal("1.00")
