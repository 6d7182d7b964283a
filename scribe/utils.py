import hashlib
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo

# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(16)


def short_hash(text: str, length: int = 8) -> str:
    """First ``length`` hex characters of the SHA-256 of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:length]


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp_est() -> datetime:
    """Get the current EST timestamp."""
    return datetime.now(ZoneInfo("America/New_York"))


def format_duration(seconds: float) -> str:
    """Render a duration as ``1h 02m 03s`` / ``2m 03s`` / ``3s``."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"
