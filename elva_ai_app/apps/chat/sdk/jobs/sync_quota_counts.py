# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# chat/sdk/jobs/sync_quota_counts.py
"""
Recount this month's conversations per organization and correct the stored
usage where it drifted.

Usage:
  python -m elva_ai_app.apps.chat.sdk.jobs.sync_quota_counts [--org ORG_ID]
"""
import argparse
import asyncio
import json
from typing import Optional

from dotenv import load_dotenv, find_dotenv

from elva_ai_app.apps.chat.sdk.infra.quota.manager import QuotaManager
from elva_ai_app.apps.utils.logging_config import configure_logging
from elva_ai_app.infra.redis.client import close_async_redis_clients


async def run_sync(org_id: Optional[str] = None) -> dict:
    mgr = QuotaManager()
    await mgr.init()
    try:
        if org_id:
            update = await mgr.reconcile_usage(org_id)
            return {"organization_id": org_id, "updated": update is not None,
                    "usage": update.to_dict() if update else None}
        return await mgr.reconcile_all()
    finally:
        await mgr.close()
        await close_async_redis_clients()


def main():
    parser = argparse.ArgumentParser(description="Reconcile conversation usage counters")
    parser.add_argument("--org", dest="org_id", default=None, help="Only this organization")
    args = parser.parse_args()

    load_dotenv(find_dotenv())
    configure_logging()
    report = asyncio.run(run_sync(args.org_id))
    print(json.dumps(report, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
