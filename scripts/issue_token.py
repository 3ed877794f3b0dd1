#!/usr/bin/env python3
from __future__ import annotations
import argparse

from synchub.core.security import create_access_token


'''
给运维 / 集成方发 actor token（JWT，SECRET_KEY 签名）
    - 用法：python scripts/issue_token.py --actor ops-alice --plan pro --minutes 1440
    - 调用时放在 Authorization: Bearer <token>
'''
def main():
    ap = argparse.ArgumentParser(description="Issue an actor JWT for the sync hub API.")
    ap.add_argument("--actor", required=True, help="actor id written into audit fields (sub claim)")
    ap.add_argument("--plan", default=None, help="rate limit plan: free / basic / pro / vip")
    ap.add_argument("--minutes", type=int, default=None, help="token lifetime; default ACCESS_TOKEN_EXPIRE_MINUTES")
    args = ap.parse_args()

    print(create_access_token(args.actor, plan=args.plan, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
