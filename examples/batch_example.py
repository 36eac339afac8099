"""Example script demonstrating bulk user operations with streamed progress."""

import asyncio

import httpx

from pingone_bulk.client import BulkClient, ProgressRenderer

SERVER = "http://127.0.0.1:8000"

USERS = [
    {"username": "example.jdoe", "email": "jdoe@example.com", "firstName": "John", "lastName": "Doe"},
    {"username": "example.asmith", "email": "asmith@example.com", "firstName": "Anna", "lastName": "Smith"},
    {"username": "example.bwong", "email": "bwong@example.com", "firstName": "Ben", "lastName": "Wong"},
]


def print_update(renderer: ProgressRenderer) -> None:
    print(f"\r📊 {renderer.progress_line()}", end="", flush=True)


async def follow(client: BulkClient, operation: str, records, cancel_after: int = 0):
    job = await client.submit(operation, records)
    print(f"✅ Job submitted: {job.job_id}")
    print(f"📊 Total records: {job.total}")

    renderer = ProgressRenderer(total=job.total, job_id=job.job_id, on_update=print_update)
    handle = renderer.attach(client.events(job.job_id), client.cancel)

    if cancel_after:
        while renderer.tracker.processed < cancel_after and not renderer.finished:
            await asyncio.sleep(0.05)
        await handle.cancel()

    summary = await handle.wait()
    print()
    for line in renderer.render_lines():
        print(f"  {line}")
    return summary


async def example_1_import_users(client: BulkClient):
    """Example 1: Import users and stream progress."""
    print("\n" + "=" * 60)
    print("Example 1: Import Users")
    print("=" * 60)
    await follow(client, "import", USERS)


async def example_2_modify_users(client: BulkClient):
    """Example 2: Modify users; unchanged users are skipped."""
    print("\n" + "=" * 60)
    print("Example 2: Modify Users")
    print("=" * 60)
    records = [{"username": u["username"], "title": "Example"} for u in USERS]
    await follow(client, "modify", records)


async def example_3_delete_with_cancel(client: BulkClient):
    """Example 3: Delete users, cancelling after the first one."""
    print("\n" + "=" * 60)
    print("Example 3: Delete Users (cancelled)")
    print("=" * 60)
    records = [{"username": u["username"]} for u in USERS]
    summary = await follow(client, "delete", records, cancel_after=1)
    print(f"Final state: {summary.state}")


async def example_4_job_stats():
    """Example 4: Job statistics."""
    print("\n" + "=" * 60)
    print("Example 4: Job Statistics")
    print("=" * 60)
    async with httpx.AsyncClient(base_url=SERVER) as http:
        stats = (await http.get("/batch/stats")).json()["stats"]

    print(f"  Total: {stats.get('total', 0)}")
    print(f"  Completed: {stats.get('completed', 0)}")
    print(f"  Failed: {stats.get('failed', 0)}")
    print(f"  Cancelled: {stats.get('cancelled', 0)}")


async def main():
    """Run all examples."""
    print("=" * 60)
    print("PingOne Bulk - Examples")
    print("=" * 60)
    print("\nMake sure the API server is running with PINGONE_* credentials set:")
    print("  pingone-bulk-api")
    print()

    try:
        async with httpx.AsyncClient(base_url=SERVER, timeout=2) as http:
            response = await http.get("/health")
        if response.status_code != 200:
            print("❌ API server is not responding. Please start it first.")
            return
    except httpx.HTTPError as e:
        print(f"❌ Cannot connect to API server: {e}")
        return

    async with BulkClient(SERVER) as client:
        try:
            await example_1_import_users(client)
            await example_2_modify_users(client)
            await example_3_delete_with_cancel(client)
            await example_4_job_stats()
        except Exception as e:
            print(f"\n❌ Error: {e}")

    print("\n" + "=" * 60)
    print("Examples completed!")
    print("=" * 60)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user")
