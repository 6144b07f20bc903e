#!/usr/bin/env python3
"""
📧 Email Tracking Data Dump Script
Pulls open events (or per-email status) from a running tracking server
and dumps them to CSV/JSON files. Can be run via cron job or scheduled task.
"""

import csv
import datetime
import json
import logging
import sys
from pathlib import Path

import requests

from tracking_config import TRACKING_CONFIG

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class DumpError(Exception):
    """Raised when the tracking server cannot be read."""


def fetch_all_events(base_url, timeout=REQUEST_TIMEOUT):
    """Fetch every open event the server holds in memory."""
    url = f"{base_url.rstrip('/')}/api/logs"
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise DumpError(f"Could not fetch {url}: {e}") from e

    logs = payload.get('logs') if isinstance(payload, dict) else None
    if not isinstance(logs, list):
        raise DumpError(f"Unexpected response from {url}")
    logger.info(f"📊 Retrieved {len(logs)} open events (server total: {payload.get('total')})")
    return logs


def fetch_bulk_status(base_url, email_ids, timeout=REQUEST_TIMEOUT):
    """Fetch open summaries for the given tracking IDs, one record per ID."""
    url = f"{base_url.rstrip('/')}/api/emails/status"
    try:
        response = requests.post(url, json={'emailIds': list(email_ids)}, timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise DumpError(f"Could not fetch {url}: {e}") from e

    results = payload.get('results') if isinstance(payload, dict) else None
    if not isinstance(results, dict):
        raise DumpError(f"Unexpected response from {url}")

    records = []
    for email_id, summary in results.items():
        records.append({'emailId': email_id, **summary})
    logger.info(f"📊 Retrieved status for {len(records)} email(s)")
    return records


def dump_to_csv(records, filename):
    """Dump records to CSV file."""
    if not records:
        logger.warning("No records to dump")
        return False

    try:
        fieldnames = list(records[0].keys())
        for record in records[1:]:
            fieldnames.extend(key for key in record if key not in fieldnames)

        with open(filename, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
            writer.writeheader()
            for record in records:
                # Convert None to empty string for CSV
                writer.writerow({k: (v if v is not None else '') for k, v in record.items()})

        logger.info(f"✅ Exported {len(records)} records to {filename}")
        return True
    except OSError as e:
        logger.error(f"❌ Error writing CSV file: {e}")
        return False


def dump_to_json(records, filename):
    """Dump records to JSON file."""
    if not records:
        logger.warning("No records to dump")
        return False

    try:
        with open(filename, 'w', encoding='utf-8') as jsonfile:
            json.dump(records, jsonfile, indent=2, ensure_ascii=False)

        logger.info(f"✅ Exported {len(records)} records to {filename}")
        return True
    except OSError as e:
        logger.error(f"❌ Error writing JSON file: {e}")
        return False


def dump_email_tracking(base_url, output_dir, export_format='both', email_ids=None):
    """
    Dump tracking data to file(s).

    Args:
        base_url: Root URL of the tracking server
        output_dir: Directory the dump files go into
        export_format: 'csv', 'json', or 'both' (default: 'both')
        email_ids: Dump per-email status for these IDs instead of raw events
    """
    try:
        if email_ids:
            records = fetch_bulk_status(base_url, email_ids)
            prefix = 'email_status'
        else:
            records = fetch_all_events(base_url)
            prefix = 'email_opens'
    except DumpError as e:
        logger.error(f"❌ {e}")
        return False

    if not records:
        logger.warning("No records found to export")
        return False

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.datetime.now().strftime('%Y-%m-%d')

    success = True

    if export_format in ['csv', 'both']:
        if not dump_to_csv(records, output_dir / f'{prefix}_{date_str}.csv'):
            success = False

    if export_format in ['json', 'both']:
        if not dump_to_json(records, output_dir / f'{prefix}_{date_str}.json'):
            success = False

    if success:
        logger.info(f"✅ Successfully dumped {len(records)} records")
        logger.info(f"📁 Output directory: {output_dir.absolute()}")
    else:
        logger.error("❌ Some exports failed")
    return success


def main(argv=None):
    """Main function to run the dump script."""
    import argparse

    parser = argparse.ArgumentParser(description='Dump email tracking data to CSV/JSON')
    parser.add_argument(
        '--base-url',
        default=TRACKING_CONFIG['BASE_URL'],
        help='Tracking server URL (default: BASE_URL from the environment)'
    )
    parser.add_argument(
        '--format',
        choices=['csv', 'json', 'both'],
        default='both',
        help='Export format: csv, json, or both (default: both)'
    )
    parser.add_argument(
        '--output-dir',
        default='email_dumps',
        help='Directory for dump files (default: email_dumps)'
    )
    parser.add_argument(
        '--email-id',
        action='append',
        dest='email_ids',
        help='Dump the open status of this tracking ID (repeatable)'
    )

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("🚀 Starting email tracking data dump...")
    logger.info(f"📋 Server: {args.base_url}")
    logger.info(f"📋 Format: {args.format}")

    success = dump_email_tracking(
        args.base_url,
        args.output_dir,
        export_format=args.format,
        email_ids=args.email_ids
    )

    if success:
        logger.info("✅ Dump completed successfully")
        return 0
    logger.error("❌ Dump failed")
    return 1


if __name__ == '__main__':
    sys.exit(main())
