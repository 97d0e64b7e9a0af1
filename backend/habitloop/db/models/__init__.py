"""ORM models exposed for metadata discovery."""
from habitloop.db.models.user_data_record import UserDataRecord

__all__ = [
    "UserDataRecord",
]
