"""
Offline Service Simulation Script

Simulates a dinner rush with a flaky connection against a running client
backend in development mode:

    1. Take the mock orders API offline
    2. Several waiters fill carts and submit orders concurrently
    3. Bring the API back online and trigger a sync
    4. Report how many offline orders reached the server

Run from project root (server started with ENV_MODE=development):
    uvicorn waitstaff.main:app --port 8002
    python scripts/simulate.py --orders 20
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8002"
TOTAL_ORDERS = 20

MODIFIERS = [
    {"id": "mod-cheese", "name": "Extra cheese", "price_delta": 1.50},
    {"id": "mod-gf", "name": "Gluten free", "price_delta": 2.00},
    {"id": "mod-spicy", "name": "Spicy", "price_delta": 0.0},
]


async def fetch_menu(client: httpx.AsyncClient) -> list[dict[str, Any]]:
    response = await client.get(f"{API_BASE_URL}/menu")
    response.raise_for_status()
    return response.json()["items"]


async def fetch_table_ids(client: httpx.AsyncClient) -> list[str]:
    response = await client.get(f"{API_BASE_URL}/tables")
    response.raise_for_status()
    return [t["id"] for t in response.json()["items"]]


async def place_order(
    client: httpx.AsyncClient,
    menu: list[dict[str, Any]],
    table_ids: list[str],
    order_num: int,
) -> dict[str, Any]:
    """Fill a waiter's cart and submit it."""
    session_id = f"waiter-{order_num}"
    start_time = time.time()

    try:
        for menu_item in random.sample(menu, k=random.randint(1, 3)):
            await client.post(
                f"{API_BASE_URL}/cart/items",
                json={
                    "menu_item_id": menu_item["id"],
                    "name": menu_item["name"],
                    "unit_price": menu_item["price"],
                    "quantity": random.randint(1, 3),
                    "modifiers": random.sample(MODIFIERS, k=random.randint(0, 1)),
                    "session_id": session_id,
                },
            )

        response = await client.post(
            f"{API_BASE_URL}/orders",
            json={"table_id": random.choice(table_ids), "session_id": session_id},
            timeout=30.0,
        )
        elapsed = round(time.time() - start_time, 3)
        data = response.json()
        return {
            "order_num": order_num,
            "success": response.status_code == 200 and data.get("success", False),
            "offline": data.get("offline", False),
            "local_id": data.get("local_id"),
            "time": elapsed,
            "error": None if response.status_code == 200 else response.text[:100],
        }
    except httpx.HTTPError as e:
        return {
            "order_num": order_num,
            "success": False,
            "offline": False,
            "time": round(time.time() - start_time, 3),
            "error": str(e)[:100],
        }


async def set_online(client: httpx.AsyncClient, online: bool) -> None:
    response = await client.post(f"{API_BASE_URL}/dev/connectivity", params={"online": online})
    response.raise_for_status()


async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 OFFLINE SERVICE SIMULATION")
    print("=" * 70)
    print(f"📋 Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        menu = await fetch_menu(client)
        table_ids = await fetch_table_ids(client)
        print(f"\n🍽️  Menu loaded: {len(menu)} items")
        print(f"🪑 Tables loaded: {len(table_ids)}")

        print("\n📴 Taking orders API offline...")
        await set_online(client, False)

        results = await asyncio.gather(
            *[place_order(client, menu, table_ids, i + 1) for i in range(num_orders)]
        )
        offline = [r for r in results if r["success"] and r["offline"]]
        failed = [r for r in results if not r["success"]]
        print(f"   Saved offline: {len(offline)}/{num_orders}")

        status = (await client.get(f"{API_BASE_URL}/sync/status")).json()
        print(f"   Pending sync: {status['pending_orders']}")

        print("\n📶 Back online, syncing...")
        await set_online(client, True)
        report = (await client.post(f"{API_BASE_URL}/sync")).json()

        status = (await client.get(f"{API_BASE_URL}/sync/status")).json()

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"✅ Synced: {report['synced']}")
    print(f"❌ Failed: {report['failed']}")
    print(f"⏳ Deferred: {report['deferred']}")
    print(f"📦 Still pending: {status['pending_orders']}")
    print(f"🧾 Orders on server: {len(report['remote_orders'])}")

    if failed:
        print(f"\n⚠️  Failed submissions (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    for error in report["errors"][:5]:
        print(f"   Sync error: {error}")

    print("=" * 70)
    return {"results": results, "report": report}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Offline Service Simulation")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="Client backend URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    asyncio.run(run_simulation(num_orders=args.orders))
