"""Business logic layer for transfers app.

This package contains all business logic for transfers:
- Multipart transfer coordination (begin, parts, complete, abort)
- Signed URL issuance for direct client access
- Quota accounting, retry policy and configured limits

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).
"""
