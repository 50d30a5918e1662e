"""
Tests for transfers (atomic money movement between accounts).

These tests verify:
  - A completed transfer moves exactly the amount and preserves the sum
  - Transfers between different clients work, and both sides see them
  - Declined transfers change nothing but are recorded as FAILED
  - Self-transfers and unknown accounts are rejected before any record
  - A closed destination is refused without touching the source
  - Only the owner of the source account can initiate a transfer
"""

import uuid


async def _balance(ac, account_id: str) -> float:
    response = await ac.get(f"/accounts/{account_id}")
    return response.json()["balance"]


class TestTransferSuccess:
    """Tests for successful transfer operations."""

    async def test_transfer_between_own_accounts(self, member_client, make_account):
        """Transfer between two accounts owned by the same client."""
        source = await make_account(member_client, initial_deposit=100)
        destination = await make_account(member_client, account_type="SAVINGS")

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 50,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
                "description": "Savings transfer",
            },
        )
        assert response.status_code == 201
        txn = response.json()
        assert txn["type"] == "TRANSFER"
        assert txn["status"] == "COMPLETED"
        assert txn["amount"] == 50.0
        assert txn["sourceAccountId"] == source["id"]
        assert txn["destinationAccountId"] == destination["id"]

        assert await _balance(member_client, source["id"]) == 50.0
        assert await _balance(member_client, destination["id"]) == 50.0

    async def test_transfer_preserves_sum(self, member_client, make_account):
        source = await make_account(member_client, initial_deposit=80.40)
        destination = await make_account(member_client, initial_deposit=19.60)

        await member_client.post(
            "/transactions",
            json={
                "amount": 33.33,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )

        source_balance = await _balance(member_client, source["id"])
        destination_balance = await _balance(member_client, destination["id"])
        assert source_balance == 47.07
        assert destination_balance == 52.93
        assert round(source_balance + destination_balance, 2) == 100.0

    async def test_inter_client_transfer(
        self, member_client, other_member_client, make_account
    ):
        """The destination may belong to anyone, and its owner sees the transfer."""
        source = await make_account(member_client, initial_deposit=100)
        destination = await make_account(other_member_client)

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 25,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )
        assert response.status_code == 201
        txn_id = response.json()["id"]

        assert await _balance(other_member_client, destination["id"]) == 25.0

        received = await other_member_client.get(f"/transactions/{txn_id}")
        assert received.status_code == 200

        listing = await other_member_client.get("/transactions", params={"type": "TRANSFER"})
        assert [t["id"] for t in listing.json()] == [txn_id]

    async def test_both_histories_show_the_transfer(self, member_client, make_account):
        source = await make_account(member_client, initial_deposit=10)
        destination = await make_account(member_client)
        created = await member_client.post(
            "/transactions",
            json={
                "amount": 1,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )

        for account in (source, destination):
            history = await member_client.get(
                f"/accounts/{account['id']}/transactions", params={"type": "TRANSFER"}
            )
            assert [t["id"] for t in history.json()] == [created.json()["id"]]


class TestTransferRejections:
    """Tests for transfers that must not move money."""

    async def test_insufficient_funds(self, member_client, make_account):
        source = await make_account(member_client, initial_deposit=10)
        destination = await make_account(member_client)

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 10.01,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )
        assert response.status_code == 402

        assert await _balance(member_client, source["id"]) == 10.0
        assert await _balance(member_client, destination["id"]) == 0

        failed = await member_client.get("/transactions", params={"status": "FAILED"})
        assert len(failed.json()) == 1
        assert failed.json()[0]["type"] == "TRANSFER"
        assert failed.json()[0]["failureReason"] == "insufficient_funds"

    async def test_self_transfer_rejected(self, member_client, make_account):
        """Rejected with 400 before any mutation or record."""
        account = await make_account(member_client, initial_deposit=10)

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 5,
                "sourceAccountId": account["id"],
                "destinationAccountId": account["id"],
            },
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "self_transfer"

        transfers = await member_client.get("/transactions", params={"type": "TRANSFER"})
        assert transfers.json() == []
        assert await _balance(member_client, account["id"]) == 10.0

    async def test_unknown_destination(self, member_client, make_account):
        """A missing destination fails the whole transfer; nothing is recorded."""
        source = await make_account(member_client, initial_deposit=10)

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 5,
                "sourceAccountId": source["id"],
                "destinationAccountId": str(uuid.uuid4()),
            },
        )
        assert response.status_code == 404

        transfers = await member_client.get("/transactions", params={"type": "TRANSFER"})
        assert transfers.json() == []
        assert await _balance(member_client, source["id"]) == 10.0

    async def test_closed_destination(
        self, member_client, other_member_client, make_account
    ):
        """Source unchanged, and no COMPLETED transfer exists."""
        source = await make_account(member_client, initial_deposit=100)
        destination = await make_account(other_member_client)
        await other_member_client.put(f"/accounts/{destination['id']}/close")

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 40,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )
        assert response.status_code == 409
        assert response.json()["error_type"] == "account_closed"

        assert await _balance(member_client, source["id"]) == 100.0
        completed = await member_client.get(
            "/transactions", params={"type": "TRANSFER", "status": "COMPLETED"}
        )
        assert completed.json() == []

    async def test_closed_source(self, member_client, make_account):
        source = await make_account(member_client, initial_deposit=100)
        destination = await make_account(member_client)
        await member_client.put(f"/accounts/{source['id']}/close")

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 1,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )
        assert response.status_code == 409
        assert await _balance(member_client, destination["id"]) == 0

    async def test_source_must_be_owned(
        self, member_client, other_member_client, make_account
    ):
        """A client cannot pull money out of someone else's account."""
        victim = await make_account(other_member_client, initial_deposit=100)
        mine = await make_account(member_client)

        response = await member_client.post(
            "/transactions",
            json={
                "amount": 100,
                "sourceAccountId": victim["id"],
                "destinationAccountId": mine["id"],
            },
        )
        assert response.status_code == 403
        assert await _balance(other_member_client, victim["id"]) == 100.0

    async def test_missing_field(self, member_client, make_account):
        source = await make_account(member_client, initial_deposit=10)
        response = await member_client.post(
            "/transactions", json={"amount": 5, "sourceAccountId": source["id"]}
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"

    async def test_admin_cannot_transfer(
        self, admin_client, member_client, make_account
    ):
        source = await make_account(member_client, initial_deposit=10)
        destination = await make_account(member_client)
        response = await admin_client.post(
            "/transactions",
            json={
                "amount": 5,
                "sourceAccountId": source["id"],
                "destinationAccountId": destination["id"],
            },
        )
        assert response.status_code == 403
