from enum import Enum

# -------------------------------------------------------------- #
# Server Manager Types
# -------------------------------------------------------------- #


class ServerManagerType(Enum):
    """Selects which set of external clients and services gets constructed."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
