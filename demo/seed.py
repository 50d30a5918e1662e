#!/usr/bin/env python3
"""
Demo seed script — populates the ledger with sample data for demos.

!! NOT FOR PRODUCTION !!
There is no login endpoint in the ledger: this script mints bearer tokens
itself with the shared SECRET_KEY, exactly as the authentication service
would, so it must run with the same .env as the server.

Usage:
    # With the API server running on localhost:8000:
    python demo/seed.py

    # Reset the database and re-seed:
    python demo/seed.py --reset

    # Custom server URL:
    python demo/seed.py --base-url http://localhost:9000

Tokens for the seeded clients are printed at the end, ready to paste into
an Authorization header.
"""

import argparse
import asyncio
import os
import random
import sys
import uuid
from decimal import Decimal

import httpx

from app.security import Role, create_access_token

BASE_URL = "http://localhost:8000"

# ---------------------------------------------------------------------------
# Demo clients
# ---------------------------------------------------------------------------

MEMBERS = [
    {
        "name": "Alice Chen",
        "accounts": [
            {"type": "CHECKING", "initial_deposit": "850.00"},
            {"type": "SAVINGS", "initial_deposit": "5000.00"},
        ],
    },
    {
        "name": "Bob Martinez",
        "accounts": [{"type": "CHECKING", "initial_deposit": "1200.00"}],
    },
    {
        "name": "Carol Nguyen",
        "accounts": [
            {"type": "CHECKING", "initial_deposit": "3200.00"},
            {"type": "BUSINESS", "initial_deposit": "12000.00"},
        ],
    },
    {
        "name": "Dave Johnson",
        "accounts": [{"type": "CHECKING", "initial_deposit": "600.00"}],
    },
]

WITHDRAW_DESCRIPTIONS = [
    "Coffee shop", "Grocery store", "Gas station", "Online subscription",
    "Restaurant", "Utility bill", "Phone bill", "Parking", "Pharmacy",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def log(msg: str) -> None:
    print(f"  {msg}")


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def random_amount(low: int, high: int) -> str:
    """A random amount in [low, high] with cents, as a string to keep it exact."""
    return str(Decimal(random.randint(low * 100, high * 100)) / 100)


async def create_account(client: httpx.AsyncClient, token: str, account_type: str,
                         initial_deposit: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/accounts",
        json={"accountType": account_type, "initialDeposit": initial_deposit},
        headers=auth_header(token),
    )
    resp.raise_for_status()
    return resp.json()


async def deposit(client: httpx.AsyncClient, token: str, account_id: str,
                  amount: str, description: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/transactions/depot",
        json={"accountId": account_id, "amount": amount, "description": description},
        headers=auth_header(token),
    )
    return resp.json()


async def withdraw(client: httpx.AsyncClient, token: str, account_id: str,
                   amount: str, description: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/transactions/retrait",
        json={"accountId": account_id, "amount": amount, "description": description},
        headers=auth_header(token),
    )
    return resp.json()


async def transfer(client: httpx.AsyncClient, token: str, source_id: str,
                   destination_id: str, amount: str, description: str) -> dict:
    resp = await client.post(
        f"{BASE_URL}/transactions",
        json={
            "sourceAccountId": source_id,
            "destinationAccountId": destination_id,
            "amount": amount,
            "description": description,
        },
        headers=auth_header(token),
    )
    return resp.json()


async def get_balance(client: httpx.AsyncClient, token: str, account_id: str) -> float:
    resp = await client.get(
        f"{BASE_URL}/accounts/{account_id}/balance",
        headers=auth_header(token),
    )
    resp.raise_for_status()
    return resp.json()["balance"]


# ---------------------------------------------------------------------------
# Seed logic
# ---------------------------------------------------------------------------

async def seed_history(client: httpx.AsyncClient, token: str, account: dict,
                       months: int, checking_id: str | None) -> None:
    """Generate a few months of realistic activity for one account."""
    if account["accountType"] == "CHECKING":
        for _ in range(months):
            for _ in range(2):
                await deposit(client, token, account["id"],
                              random_amount(1800, 3200), "Payroll deposit")
            for _ in range(random.randint(6, 12)):
                result = await withdraw(client, token, account["id"],
                                        random_amount(3, 120),
                                        random.choice(WITHDRAW_DESCRIPTIONS))
                if result.get("error_type") == "insufficient_funds":
                    break
    elif checking_id:
        for _ in range(months):
            await transfer(client, token, checking_id, account["id"],
                           random_amount(200, 800), "Monthly savings transfer")


async def seed(base_url: str) -> None:
    global BASE_URL
    BASE_URL = base_url

    print("\n========================================")
    print("  DEMO SEED — NOT FOR PRODUCTION")
    print("========================================\n")

    tokens: list[tuple[str, str, str]] = []

    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            health = await client.get(f"{BASE_URL}/health")
            health.raise_for_status()
        except (httpx.ConnectError, httpx.HTTPStatusError):
            print(f"  ERROR: Cannot connect to {BASE_URL}")
            print("  Start the server first: uvicorn app.main:app --reload\n")
            sys.exit(1)

        admin_token = create_access_token({"sub": str(uuid.uuid4()), "role": Role.ADMIN.value})
        tokens.append(("Admin", "ADMIN", admin_token))

        checking_accounts: list[dict] = []

        for member in MEMBERS:
            client_id = str(uuid.uuid4())
            token = create_access_token({"sub": client_id, "role": Role.MEMBER.value})
            tokens.append((member["name"], "MEMBER", token))
            print(f"\nCreating {member['name']} ({client_id})...")

            accounts = []
            for info in member["accounts"]:
                account = await create_account(client, token, info["type"], info["initial_deposit"])
                accounts.append(account)
                log(f"{info['type'].capitalize()} account {account['accountNumber']}: "
                    f"opened with ${info['initial_deposit']}")

            checking_id = next(
                (a["id"] for a in accounts if a["accountType"] == "CHECKING"), None
            )
            for account in accounts:
                await seed_history(client, token, account, months=2, checking_id=checking_id)
                balance = await get_balance(client, token, account["id"])
                log(f"{account['accountType'].capitalize()}: balance ${balance:,.2f}")
                if account["accountType"] == "CHECKING":
                    checking_accounts.append({"id": account["id"], "token": token,
                                              "name": member["name"]})

        print("\nCreating inter-client transfers...")
        for a, b in zip(checking_accounts, checking_accounts[1:] + checking_accounts[:1]):
            amount = random_amount(15, 150)
            result = await transfer(client, a["token"], a["id"], b["id"], amount,
                                    f"Payment from {a['name']} to {b['name']}")
            if "error_type" not in result:
                log(f"{a['name']} -> {b['name']}: ${amount}")

    print("\n========================================")
    print("  SEED COMPLETE — Bearer tokens")
    print("========================================\n")
    for name, role, token in tokens:
        print(f"  {name:<15s} {role:<7s} {token}")
    print()


def reset_database() -> None:
    """Delete the SQLite database file so the server recreates it on restart."""
    db_path = os.path.join(os.path.dirname(__file__), "..", "data", "ledger.db")
    db_path = os.path.normpath(db_path)

    if os.path.exists(db_path):
        os.remove(db_path)
        print(f"\n  Deleted {db_path}")
        print("  Restart the server to recreate empty tables.\n")
    else:
        print(f"\n  No database found at {db_path}\n")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Demo seed script — NOT FOR PRODUCTION",
        epilog="Creates sample clients, accounts, and transactions for demos.",
    )
    parser.add_argument(
        "--base-url", default="http://localhost:8000",
        help="Base URL of the running API (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--reset", action="store_true",
        help="Delete the database file and exit (restart server to recreate)",
    )
    args = parser.parse_args()

    if args.reset:
        reset_database()
        return

    await seed(args.base_url)


if __name__ == "__main__":
    asyncio.run(main())
