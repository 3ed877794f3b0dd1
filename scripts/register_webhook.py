#!/usr/bin/env python3
from __future__ import annotations
import argparse, json

from synchub.core.logging import configure_logging
from synchub.db.session import SessionLocal
from synchub.services.webhook_dispatcher import WebhookDispatcher
from synchub.infrastructure.cache import CacheService
from synchub.infrastructure.redis_client import build_redis
from synchub.core.config import settings


'''
注册平台级（user_id=system）订阅，例如把低库存 / 同步进度推给内部告警服务
    - 用法：
    python scripts/register_webhook.py \
      --url "https://alerts.internal/hooks/inventory" \
      --event inventory.low_stock --event inventory.sync.progress
    - 不传 --secret 时随机生成，打印一次，请保存
'''
def main():
    configure_logging()
    ap = argparse.ArgumentParser(description="Register a webhook subscription.")
    ap.add_argument("--url", required=True)
    ap.add_argument("--event", action="append", required=True, help="repeatable")
    ap.add_argument("--user", default="system", help="owner user id (default: system)")
    ap.add_argument("--secret", default=None)
    args = ap.parse_args()

    dispatcher = WebhookDispatcher(SessionLocal, CacheService(build_redis(settings.REDIS_URL)))
    row = dispatcher.register(args.user, args.event, args.url, args.secret)
    print(json.dumps({"id": row.id, "url": row.url, "events": row.events, "secret": row.secret},
                     ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
