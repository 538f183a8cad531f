"""Infrastructure layer for transfers app.

This package contains integrations with external systems:
- S3-compatible storage backend with multipart and presigning support
- Checksums, multipart ETags and storage key scoping

Keep infrastructure concerns separate from business logic.
"""
