"""
CreditShare Backend - ORM Models
=================================

Importing this package registers every table with Base.metadata, which
Alembic autogenerate and the test fixtures (create_all) rely on.
"""

from creditshare.models.user import User
from creditshare.models.file import FileDownload, FileRecord, IssueReport
from creditshare.models.transaction import CreditTransaction, TransactionKind

__all__ = [
    "User",
    "FileRecord",
    "FileDownload",
    "IssueReport",
    "CreditTransaction",
    "TransactionKind",
]
