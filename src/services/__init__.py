"""
Utility functions for Lambda handler operations.

This package contains reusable service functions for S3 interactions.
"""

__all__ = ['s3']
