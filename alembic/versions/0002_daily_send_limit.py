"""Daily automation send cap per contact

Revision ID: 0002_daily_send_limit
Revises: 0001_initial
Create Date: 2026-10-19

Adds organizations.max_automation_sends_per_day and the per-contact daily
counter table it is enforced against.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0002_daily_send_limit'
down_revision: Union[str, Sequence[str], None] = '0001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('''
        ALTER TABLE organizations
        ADD COLUMN max_automation_sends_per_day INTEGER NOT NULL DEFAULT 3
    ''')

    op.execute('''
        CREATE TABLE contact_daily_send_counts (
            id UUID PRIMARY KEY,
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            contact_id UUID NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
            send_date DATE NOT NULL,
            send_count INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_contact_daily_send UNIQUE (organization_id, contact_id, send_date)
        )
    ''')


def downgrade() -> None:
    op.execute('DROP TABLE IF EXISTS contact_daily_send_counts')
    op.execute('ALTER TABLE organizations DROP COLUMN IF EXISTS max_automation_sends_per_day')
