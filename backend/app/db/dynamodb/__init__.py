"""DynamoDB access layer.

This package centralizes:
- boto3 client/resource configuration
- retry/backoff policy
- cursor pagination token encoding/decoding
- typed errors (conditional-check failures become `DdbConflict`)
- transactional helpers used for atomic multi-item writes
"""
