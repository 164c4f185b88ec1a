#!/usr/bin/env python3
"""
Run one control-loop tick from the command line (for system cron or manual runs).
Run from backend/:
  python scripts/run_tick.py optimize
  python scripts/run_tick.py deploy --concurrency 2
  python scripts/run_tick.py rollback <campaign_id>
"""
import argparse
import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run an Ad Pilot control-loop tick.")
    sub = parser.add_subparsers(dest="command", required=True)

    optimize = sub.add_parser("optimize", help="Budget allocation + portfolio optimization for all customers")
    optimize.add_argument("--concurrency", type=int, default=None)

    deploy = sub.add_parser("deploy", help="Deploy campaigns with undeployed active strategies")
    deploy.add_argument("--concurrency", type=int, default=None)

    rollback = sub.add_parser("rollback", help="Restore a campaign's latest strategy snapshot")
    rollback.add_argument("campaign_id", type=uuid.UUID)

    return parser.parse_args(argv)


async def main(argv=None) -> int:
    from adpilot.config import get_settings
    from adpilot.worker import run_optimization_tick, run_deployment_tick, rollback_campaign

    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, get_settings().log_level.upper(), logging.INFO))

    if args.command == "optimize":
        result = await run_optimization_tick(concurrency=args.concurrency)
        ok = all(o.get("ok") for part in ("allocation", "optimization") for o in result[part].values())
    elif args.command == "deploy":
        result = await run_deployment_tick(concurrency=args.concurrency)
        ok = all(o.get("ok") for o in result["deployment"].values())
    else:
        result = await rollback_campaign(args.campaign_id)
        ok = bool(result.get("ok"))

    print(json.dumps(result, indent=2, default=str))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
