"""
Line file processing pipeline - core business logic.

This module handles the end-to-end processing of S3 object notifications:
1. Parse the S3 event record (direct, SQS-wrapped or SNS-wrapped)
2. Open the object as a stream
3. Split it into lines with LineReader, collecting statistics
4. Upload a JSON summary (if a results bucket is configured)
5. Return result (success or failure)

All errors are caught and returned as ProcessingResult with success=False.
No exceptions propagate out of the public methods.
"""

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional
from urllib.parse import unquote_plus

from .line_reader import LineReader
from .models import LineStats, ObjectLocation, ProcessingResult, ReaderOptions, require_positive_int
from services import s3 as s3_service

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 5


class LineFileProcessor:
    """
    Streams S3 objects through LineReader and reports line statistics.

    Objects are never loaded into memory as a whole; only the current chunk
    and the current partial line are held at any time.
    """

    def __init__(
        self,
        options: Optional[ReaderOptions] = None,
        results_bucket: Optional[str] = None,
        results_prefix: Optional[str] = None,
        environment: Optional[str] = None,
        sample_size: Optional[int] = None
    ):
        """
        Initialize the processor.

        Arguments left as None are read from the environment:
        LINE_READER_* (reader options), RESULTS_BUCKET, RESULTS_KEY_PREFIX,
        ENVIRONMENT and LINE_SAMPLE_SIZE.

        Raises:
            InvalidConfiguration: If LINE_READER_* or LINE_SAMPLE_SIZE is invalid
        """
        self.options = options or ReaderOptions.from_env()
        self.results_bucket = results_bucket if results_bucket is not None else os.environ.get('RESULTS_BUCKET', '')
        self.results_prefix = results_prefix if results_prefix is not None else os.environ.get('RESULTS_KEY_PREFIX', 'line-stats/')
        self.environment = environment or os.environ.get('ENVIRONMENT', 'dev')
        self.sample_size = (
            sample_size if sample_size is not None
            else require_positive_int(
                os.environ.get('LINE_SAMPLE_SIZE', DEFAULT_SAMPLE_SIZE), 'LINE_SAMPLE_SIZE'
            )
        )

    def process_record(self, record: Dict[str, Any]) -> List[ProcessingResult]:
        """
        Process one Lambda event record.

        Args:
            record: S3 event record, or SQS record whose body is an S3 event

        Returns:
            One ProcessingResult per referenced object (errors logged)
        """
        try:
            locations = self._parse_record(record)
        except Exception as e:
            record_id = record.get('messageId', 'UNKNOWN')
            logger.error(f"Failed to parse record {record_id}: {e}", exc_info=True)
            return [
                ProcessingResult(
                    success=False,
                    location=ObjectLocation(bucket='', key=''),
                    error_message=f"Invalid record: {e}"
                )
            ]

        return [self.process_object(location) for location in locations]

    def process_object(self, location: ObjectLocation) -> ProcessingResult:
        """
        Read one S3 object line by line.

        Args:
            location: Bucket and key of the object

        Returns:
            ProcessingResult with success=True or success=False (errors logged)
        """
        logger.info(f"Processing object: {location.uri}")
        start_time = time.time()
        stats = LineStats(sample_size=self.sample_size)

        try:
            body = s3_service.open_object_stream(location.bucket, location.key)

            reader = LineReader(body, self.options)
            reader.on('line', stats.record)
            summary = reader.run()

            # Trailing bytes that never complete a line only show up here
            stats.byte_count = summary.byte_count

            if not summary.succeeded:
                raise summary.error or RuntimeError(f"Reader stopped while {summary.state.value}")

            elapsed = time.time() - start_time
            logger.info(
                f"Read {stats.line_count:,} line(s), {stats.byte_count:,} bytes "
                f"from {location.uri} in {elapsed:.3f}s"
            )

            summary_key = self._upload_summary(location, stats)

            return ProcessingResult(
                success=True,
                location=location,
                stats=stats,
                summary_key=summary_key
            )

        except Exception as e:
            logger.error(f"Failed to process {location.uri}: {e}", exc_info=True)

            return ProcessingResult(
                success=False,
                location=location,
                stats=stats,
                error_message=str(e)
            )

    def _parse_record(self, record: Dict[str, Any]) -> List[ObjectLocation]:
        """
        Extract object locations from a Lambda event record.

        Handles direct S3 notifications, S3 -> SQS and S3 -> SNS -> SQS.

        Raises:
            ValueError: If the record does not describe an S3 object
            json.JSONDecodeError: If an SQS body is not JSON
        """
        if 's3' in record:
            return [self._parse_s3_record(record)]

        if 'body' not in record:
            raise ValueError("Record has neither 's3' nor 'body' field")

        body = json.loads(record['body'])

        # Optional setup: S3 -> SNS -> SQS
        if body.get('Type') == 'Notification' and 'Message' in body:
            logger.info("Unwrapping SNS message (S3 -> SNS -> SQS)")
            body = json.loads(body['Message'])

        # Sent once by S3 when the notification is configured
        if body.get('Event') == 's3:TestEvent':
            logger.info("Skipping S3 test event")
            return []

        records = body.get('Records')
        if not isinstance(records, list):
            raise ValueError("S3 notification missing 'Records' list")

        return [self._parse_s3_record(inner) for inner in records]

    def _parse_s3_record(self, record: Dict[str, Any]) -> ObjectLocation:
        s3 = record.get('s3') or {}
        bucket = (s3.get('bucket') or {}).get('name')
        obj = s3.get('object') or {}
        key = obj.get('key')

        if not bucket or not key:
            raise ValueError("Missing bucket or key in S3 notification")

        # Keys arrive URL-encoded in S3 notifications
        return ObjectLocation(bucket=bucket, key=unquote_plus(key), size=obj.get('size'))

    def _upload_summary(self, location: ObjectLocation, stats: LineStats) -> Optional[str]:
        """Upload a JSON summary when a results bucket is configured."""
        if not self.results_bucket:
            logger.info("Results bucket not configured, skipping summary upload")
            return None

        summary_key = f"{self.results_prefix}{self.environment}/{location.key}.json"
        payload = {
            'bucket': location.bucket,
            'key': location.key,
            **stats.to_dict(),
        }
        s3_service.upload_line_summary(self.results_bucket, summary_key, payload)
        return summary_key
