"""Global test configuration."""

import os

# moto reads this on import; real S3 wants 5 MiB parts, tests use tiny ones
os.environ.setdefault('S3_UPLOAD_PART_MIN_SIZE', '1')
