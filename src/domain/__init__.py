"""
Domain layer for line reading.

This layer contains:
- The line reader (byte buffering, delimiter detection, notifications)
- Data models and error types
- The S3 object processing pipeline
"""
