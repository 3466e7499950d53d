"""
AWS Lambda handler for reading S3 objects line by line.

Thin orchestration layer that delegates to LineFileProcessor.
Accepts S3 event notifications directly or delivered through SQS.
Policy: Never raise (no retries). Errors logged to CloudWatch.
"""

import json
import logging
import os
from typing import Dict, Any

from domain.line_file_processor import LineFileProcessor

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())

# Add console handler for local testing (AWS Lambda provides handlers automatically)
if not logger.handlers:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter('%(levelname)s - %(name)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

ENVIRONMENT = os.environ.get('ENVIRONMENT', 'dev')

# Initialize processor once at module level (reused across invocations)
line_file_processor = LineFileProcessor()


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Read every S3 object referenced by the event.

    Args:
        event: Lambda event with S3 or SQS records
        context: Lambda context

    Returns:
        Dict with statusCode 200 and a JSON body of per-object results
    """
    logger.info("=" * 70)
    logger.info(f"S3 Line Reader - Started (environment={ENVIRONMENT})")
    logger.info("=" * 70)

    records = event.get('Records', [])
    logger.info(f"Processing batch of {len(records)} record(s)")

    results = []
    for record in records:
        for result in line_file_processor.process_record(record):
            results.append(result)

            if result.success:
                logger.info(
                    f"✓ Read {result.stats.line_count} line(s) from {result.location.uri}"
                )
            else:
                logger.warning(
                    f"⚠ Failed to read {result.location.uri}: {result.error_message}"
                )

    success_count = sum(1 for r in results if r.success)
    error_count = len(results) - success_count

    logger.info("=" * 70)
    logger.info(f"Batch processing complete: {len(results)} object(s)")
    logger.info(f"  Success: {success_count}")
    logger.info(f"  Errors: {error_count}")
    logger.info("=" * 70)

    return {
        'statusCode': 200,
        'body': json.dumps({
            'processed': len(results),
            'succeeded': success_count,
            'failed': error_count,
            'results': [r.to_dict() for r in results]
        })
    }
