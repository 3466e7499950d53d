"""
Tests for the S3 line file processing pipeline.
"""

import io
import json
import pytest
from unittest.mock import patch, MagicMock
from botocore.exceptions import ClientError
import sys
import os

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from domain.errors import InvalidConfiguration
from domain.line_file_processor import LineFileProcessor
from domain.models import ObjectLocation, ReaderOptions


def s3_record(bucket='data-bucket', key='exports/users.csv', size=None):
    obj = {'key': key}
    if size is not None:
        obj['size'] = size
    return {
        'eventSource': 'aws:s3',
        'eventName': 'ObjectCreated:Put',
        's3': {'bucket': {'name': bucket}, 'object': obj},
    }


def sqs_record(body, message_id='msg-1'):
    return {'messageId': message_id, 'body': json.dumps(body)}


@pytest.fixture
def processor():
    """Processor without a results bucket."""
    return LineFileProcessor(
        options=ReaderOptions(chunk_size=4),
        results_bucket='',
        results_prefix='line-stats/',
        environment='test',
        sample_size=2
    )


class TestParseRecord:
    """Test extracting object locations from event records."""

    def test_direct_s3_record(self, processor):
        """Test a direct S3 notification record."""
        locations = processor._parse_record(s3_record(size=120))

        assert locations == [ObjectLocation(bucket='data-bucket', key='exports/users.csv', size=120)]

    def test_url_encoded_key(self, processor):
        """Test keys are URL-decoded."""
        locations = processor._parse_record(s3_record(key='exports/monthly+report%282025%29.csv'))

        assert locations[0].key == 'exports/monthly report(2025).csv'

    def test_sqs_wrapped_records(self, processor):
        """Test S3 event delivered in an SQS body."""
        record = sqs_record({'Records': [s3_record(key='a.csv'), s3_record(key='b.csv')]})

        locations = processor._parse_record(record)

        assert [loc.key for loc in locations] == ['a.csv', 'b.csv']

    def test_sns_wrapped_records(self, processor):
        """Test S3 -> SNS -> SQS delivery."""
        inner = {'Records': [s3_record(key='c.csv')]}
        record = sqs_record({'Type': 'Notification', 'Message': json.dumps(inner)})

        locations = processor._parse_record(record)

        assert [loc.key for loc in locations] == ['c.csv']

    def test_s3_test_event_skipped(self, processor):
        """Test the S3 configuration test event yields nothing."""
        record = sqs_record({'Service': 'Amazon S3', 'Event': 's3:TestEvent'})

        assert processor._parse_record(record) == []

    def test_missing_bucket(self, processor):
        """Test records without a bucket are rejected."""
        with pytest.raises(ValueError, match="Missing bucket or key"):
            processor._parse_record({'s3': {'object': {'key': 'x'}}})

    def test_unrecognised_record(self, processor):
        """Test records with neither s3 nor body."""
        with pytest.raises(ValueError, match="neither"):
            processor._parse_record({'eventSource': 'aws:kinesis'})


class TestProcessObject:
    """Test streaming one object through the line reader."""

    @patch('services.s3.s3_client')
    def test_process_object_success(self, mock_s3_client, processor):
        """Test lines are counted and sampled."""
        mock_s3_client.get_object.return_value = {
            'Body': io.BytesIO(b"id,name\r\n1,ada\r\n\r\n2,grace")
        }

        result = processor.process_object(ObjectLocation(bucket='data-bucket', key='users.csv'))

        assert result.success is True
        assert result.stats.line_count == 4
        assert result.stats.byte_count == 25
        assert result.stats.empty_lines == 1
        assert result.stats.longest_line == 7
        assert result.stats.sample_lines == ['id,name', '1,ada']
        assert result.summary_key is None
        mock_s3_client.put_object.assert_not_called()

    @patch('services.s3.s3_client')
    def test_process_object_uploads_summary(self, mock_s3_client):
        """Test a JSON summary is uploaded when a results bucket is set."""
        mock_s3_client.get_object.return_value = {'Body': io.BytesIO(b"a\nb\n")}
        processor = LineFileProcessor(
            options=ReaderOptions(),
            results_bucket='results-bucket',
            results_prefix='line-stats/',
            environment='test'
        )

        result = processor.process_object(ObjectLocation(bucket='data-bucket', key='in/a.txt'))

        assert result.success is True
        assert result.summary_key == 'line-stats/test/in/a.txt.json'
        call = mock_s3_client.put_object.call_args[1]
        assert call['Bucket'] == 'results-bucket'
        assert call['Key'] == 'line-stats/test/in/a.txt.json'
        payload = json.loads(call['Body'].decode('utf-8'))
        assert payload['bucket'] == 'data-bucket'
        assert payload['key'] == 'in/a.txt'
        assert payload['line_count'] == 2
        assert payload['byte_count'] == 4

    @patch('services.s3.s3_client')
    def test_process_object_missing(self, mock_s3_client, processor):
        """Test a missing object produces a failed result."""
        mock_s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'Not Found'}}, 'GetObject'
        )

        result = processor.process_object(ObjectLocation(bucket='data-bucket', key='gone.csv'))

        assert result.success is False
        assert 'Object not found' in result.error_message

    @patch('services.s3.s3_client')
    def test_process_object_line_too_long(self, mock_s3_client):
        """Test overflow is reported as a failed result with partial stats."""
        mock_s3_client.get_object.return_value = {'Body': io.BytesIO(b"ok\nthis line is too long\n")}
        processor = LineFileProcessor(options=ReaderOptions(capacity_bytes=8), results_bucket='')

        result = processor.process_object(ObjectLocation(bucket='data-bucket', key='wide.csv'))

        assert result.success is False
        assert 'exceeds buffer capacity' in result.error_message
        assert result.stats.line_count == 1

    @patch('services.s3.s3_client')
    def test_process_object_stream_failure(self, mock_s3_client, processor):
        """Test a read failure mid-stream produces a failed result."""
        body = MagicMock(spec=['read', 'close'])
        body.read.side_effect = [b"one\n", OSError("connection reset")]
        mock_s3_client.get_object.return_value = {'Body': body}

        result = processor.process_object(ObjectLocation(bucket='data-bucket', key='big.csv'))

        assert result.success is False
        assert 'connection reset' in result.error_message
        assert result.stats.line_count == 1
        body.close.assert_called_once()

    @patch('services.s3.s3_client')
    def test_process_object_upload_failure(self, mock_s3_client):
        """Test a summary upload failure fails the object."""
        mock_s3_client.get_object.return_value = {'Body': io.BytesIO(b"a\n")}
        mock_s3_client.put_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'Access Denied'}}, 'PutObject'
        )
        processor = LineFileProcessor(options=ReaderOptions(), results_bucket='results-bucket')

        result = processor.process_object(ObjectLocation(bucket='data-bucket', key='a.txt'))

        assert result.success is False
        assert 'AccessDenied' in result.error_message


class TestProcessRecord:
    """Test processing whole records."""

    @patch('services.s3.s3_client')
    def test_process_sqs_record(self, mock_s3_client, processor):
        """Test every object in an SQS record is processed."""
        mock_s3_client.get_object.side_effect = [
            {'Body': io.BytesIO(b"1\n2\n")},
            {'Body': io.BytesIO(b"x")},
        ]
        record = sqs_record({'Records': [s3_record(key='a.csv'), s3_record(key='b.csv')]})

        results = processor.process_record(record)

        assert [r.success for r in results] == [True, True]
        assert [r.stats.line_count for r in results] == [2, 1]

    def test_process_invalid_record(self, processor):
        """Test an unparseable record yields one failed result."""
        results = processor.process_record({'messageId': 'msg-9', 'body': 'not json'})

        assert len(results) == 1
        assert results[0].success is False
        assert results[0].error_message.startswith('Invalid record')


class TestConfigurationFromEnvironment:
    """Test processor defaults come from the environment."""

    def test_reads_environment(self):
        """Test environment variables are applied."""
        with patch.dict(os.environ, {
            'RESULTS_BUCKET': 'env-results',
            'RESULTS_KEY_PREFIX': 'stats/',
            'ENVIRONMENT': 'staging',
            'LINE_SAMPLE_SIZE': '3',
            'LINE_READER_MAX_LINE_BYTES': '256',
        }):
            processor = LineFileProcessor()

        assert processor.results_bucket == 'env-results'
        assert processor.results_prefix == 'stats/'
        assert processor.environment == 'staging'
        assert processor.sample_size == 3
        assert processor.options.capacity_bytes == 256

    def test_invalid_sample_size(self):
        """Test a malformed LINE_SAMPLE_SIZE raises InvalidConfiguration."""
        with patch.dict(os.environ, {'LINE_SAMPLE_SIZE': 'abc'}):
            with pytest.raises(InvalidConfiguration, match="LINE_SAMPLE_SIZE"):
                LineFileProcessor()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
