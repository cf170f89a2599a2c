#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
replay_webhook.py

Feed a saved webhook payload through the handlers, without the HMAC check.

Typical use: an express order stuck in MERGE_IN_PROGRESS after a crash. Replay
its fulfillments/create payload and the merge picks up where it stopped.

Dry-run unless --live is given AND DRY_RUN is not set in the environment.

  python scripts/replay_webhook.py --topic fulfillments/create --payload fulfillment.json [--live]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from express_merge.config import Settings, configure_logging
from express_merge.gateway import build_gateway
from express_merge.webhook import InboundEvent, dispatch


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Replay a Shopify webhook payload through the express-merge handlers.")
    parser.add_argument("--topic", required=True, help="orders/paid or fulfillments/create")
    parser.add_argument("--payload", required=True, help="path to the JSON payload")
    parser.add_argument("--live", action="store_true", help="perform writes (default is dry-run)")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if not args.live:
        settings.dry_run = True
    configure_logging(settings.log_level)

    with open(args.payload, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        logging.error(f"{args.payload}: expected a JSON object")
        return 2

    gateway = build_gateway(settings)
    result = dispatch(InboundEvent(topic=args.topic, payload=payload), gateway, settings)
    json.dump(result.to_dict(), sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 1 if result.warnings else 0


if __name__ == "__main__":
    raise SystemExit(main())
