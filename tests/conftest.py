"""
Pytest configuration and fixtures for all tests.
"""

import os
import sys
import pytest

# Add src to Python path before any imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

# Set up test environment variables before importing any modules
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-west-2')
os.environ.setdefault('ENVIRONMENT', 'test')
os.environ.setdefault('LOG_LEVEL', 'INFO')


class EventRecorder:
    """Collects every notification a LineReader emits, in order."""

    def __init__(self):
        self.events = []

    def attach(self, reader):
        reader.on('open', lambda descriptor: self.events.append(('open', descriptor)))
        reader.on('line', lambda content, number, byte_count: self.events.append(
            ('line', content, number, byte_count)
        ))
        reader.on('error', lambda error: self.events.append(('error', error)))
        reader.on('end', lambda: self.events.append(('end',)))
        reader.on('close', lambda: self.events.append(('close',)))
        return reader

    @property
    def names(self):
        return [event[0] for event in self.events]

    @property
    def lines(self):
        return [event[1] for event in self.events if event[0] == 'line']


@pytest.fixture
def recorder():
    """Fresh event recorder for a test."""
    return EventRecorder()
