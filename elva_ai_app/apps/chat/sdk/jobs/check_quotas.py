# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# chat/sdk/jobs/check_quotas.py
"""
Daily quota catch-up: applies pending cycle resets and sends threshold
notifications that no live increment delivered.
"""
import asyncio
import json

from dotenv import load_dotenv, find_dotenv

from elva_ai_app.apps.chat.sdk.infra.quota.manager import QuotaManager
from elva_ai_app.apps.utils.logging_config import configure_logging
from elva_ai_app.infra.redis.client import close_async_redis_clients


async def run_check_quotas() -> dict:
    mgr = QuotaManager()
    await mgr.init()
    try:
        return await mgr.run_threshold_catchup()
    finally:
        await mgr.close()
        await close_async_redis_clients()


def main():
    load_dotenv(find_dotenv())
    configure_logging()
    report = asyncio.run(run_check_quotas())
    print(json.dumps(report, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
