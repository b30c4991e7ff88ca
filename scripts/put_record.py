#!/usr/bin/env python3
"""
Put one audit record onto the stream (LocalStack by default).

Usage:
    python scripts/put_record.py audit-events 42 '{"AccountId": 42, "Action": "login"}'
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from audit_bridge.kinesis import create_kinesis_client  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("put_record")


def main() -> int:
    parser = argparse.ArgumentParser(description="Put a record onto an audit stream")
    parser.add_argument("stream", help="Stream name")
    parser.add_argument("partition_key", help="Partition key for the record")
    parser.add_argument("data", help="Record body, sent as-is (need not be valid JSON)")
    parser.add_argument("--region", default=os.getenv("AWS_REGION", "us-east-1"))
    parser.add_argument(
        "--endpoint-url",
        default=os.getenv("AWS_ENDPOINT_URL", "http://localhost:4566"),
        help="Kinesis endpoint (default: LocalStack). Pass '' for AWS.",
    )
    args = parser.parse_args()

    try:
        json.loads(args.data)
    except ValueError:
        logger.warning("Data is not valid JSON; the bridge will log it as a decode failure")

    client = create_kinesis_client(args.region, args.endpoint_url or None)
    response = client.put_record(
        StreamName=args.stream,
        PartitionKey=args.partition_key,
        Data=args.data.encode("utf-8"),
    )
    logger.info(
        f"Put record on {response['ShardId']} at sequence {response['SequenceNumber']}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
