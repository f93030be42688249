"""Create users, files, downloads, issue reports and credit transactions

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Initial schema for the credit-based file sharing service.
How:   Portable column types (sa.Uuid, TIMESTAMP WITH TIME ZONE) so the same
       revision applies to PostgreSQL and SQLite.

Integrity enforced by the database:
    - users.credits >= 0
    - credit_transactions: credit rows positive, debit rows negative
    - file_downloads primary key (user_id, file_id): a user appears at most
      once in a file's downloader set

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False, comment="Internal user identifier"),
        sa.Column(
            "external_id",
            sa.String(128),
            nullable=False,
            comment="Identity supplied by the auth collaborator",
        ),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column(
            "credits",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Current credit balance (never negative)",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
        sa.CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

    op.create_table(
        "files",
        sa.Column(
            "file_id",
            sa.String(32),
            nullable=False,
            comment="Blob Store identifier (32 lowercase hex characters)",
        ),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("uploaded_by", sa.Uuid(), nullable=True),
        sa.Column("size", sa.Integer(), nullable=False, comment="Size in bytes"),
        sa.Column(
            "content_type",
            sa.String(255),
            nullable=False,
            server_default=sa.text("'application/octet-stream'"),
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "uploaded_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "download_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
            comment="Number of distinct users who downloaded the file",
        ),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("file_id"),
        sa.ForeignKeyConstraint(["uploaded_by"], ["users.id"], ondelete="SET NULL"),
    )
    # Default listing is newest first
    op.create_index("idx_files_uploaded_at", "files", [sa.text("uploaded_at DESC")])
    op.create_index("idx_files_content_type", "files", ["content_type"])

    op.create_table(
        "file_downloads",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("file_id", sa.String(32), nullable=False),
        sa.Column(
            "downloaded_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("user_id", "file_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["file_id"], ["files.file_id"], ondelete="CASCADE"),
    )
    op.create_index("idx_file_downloads_file_id", "file_downloads", ["file_id"])

    op.create_table(
        "issue_reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("file_id", sa.String(32), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("issue_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "reported_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["file_id"], ["files.file_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "amount",
            sa.Integer(),
            nullable=False,
            comment="Signed amount: positive for credit, negative for debit",
        ),
        sa.Column("kind", sa.String(10), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "(kind = 'credit' AND amount > 0) OR (kind = 'debit' AND amount < 0)",
            name="ck_credit_transactions_sign",
        ),
    )
    op.create_index(
        "idx_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("idx_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("issue_reports")
    op.drop_index("idx_file_downloads_file_id", table_name="file_downloads")
    op.drop_table("file_downloads")
    op.drop_index("idx_files_content_type", table_name="files")
    op.drop_index("idx_files_uploaded_at", table_name="files")
    op.drop_table("files")
    op.drop_table("users")
