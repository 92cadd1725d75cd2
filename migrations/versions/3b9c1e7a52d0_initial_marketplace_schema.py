"""initial marketplace schema

Revision ID: 3b9c1e7a52d0
Revises:
Create Date: 2026-10-16 09:12:40.118302

"""
from typing import Sequence, Union

from alembic import op
from sqlmodel import SQLModel
import marketplace.schema.full_schema  # noqa: F401

# revision identifiers, used by Alembic.
revision: str = '3b9c1e7a52d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # first revision mirrors the models; later revisions are autogenerated diffs
    SQLModel.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    """Downgrade schema."""
    SQLModel.metadata.drop_all(bind=op.get_bind())
