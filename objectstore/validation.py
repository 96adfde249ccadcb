"""
Identifier and payload limits.
"""

import re

# Maximum ID length (characters)
MAX_ID_LENGTH = 100

# Maximum payload size (bytes)
MAX_PAYLOAD_SIZE = 1024

IDENTIFIER_REGEX = "[a-zA-Z0-9]+"
IDENTIFIER_PATTERN = re.compile(f"^{IDENTIFIER_REGEX}$")


def is_valid_identifier(object_id: str) -> bool:
    """Check that an id is non-empty and alphanumeric."""
    return bool(object_id) and IDENTIFIER_PATTERN.fullmatch(object_id) is not None
