from enum import Enum

from filestore.errors import Forbidden
from filestore.models import FileRecord, User


class Decision(str, Enum):
    ALLOWED = "allowed"
    FORBIDDEN = "forbidden"


class OwnershipAuthorizer:
    """Single place that decides whether an identity may touch a file record."""

    def is_owner(self, record: FileRecord, identity: User) -> bool:
        return record.owner_id == identity.user_id

    def check(self, record: FileRecord, identity: User) -> Decision:
        return Decision.ALLOWED if self.is_owner(record, identity) else Decision.FORBIDDEN

    def require_owner(self, record: FileRecord, identity: User) -> FileRecord:
        if self.check(record, identity) is Decision.FORBIDDEN:
            raise Forbidden("access denied")
        return record
