"""Baseline migration - tickets, message mapping, link tokens and jobs

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the support desk tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tickets
    # ==========================================================================
    op.execute('''
        CREATE TABLE tickets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            platform_user_id BIGINT,
            web_session_id VARCHAR(36),
            display_name VARCHAR(255) NOT NULL,
            username VARCHAR(255),
            status VARCHAR(20) NOT NULL DEFAULT 'NEW',
            thread_id BIGINT UNIQUE NOT NULL,
            card_message_id BIGINT,
            source_url TEXT,
            source_city VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    # One open ticket per identity
    op.execute('''
        CREATE UNIQUE INDEX uq_tickets_open_platform_user
        ON tickets (platform_user_id) WHERE status != 'CLOSED'
    ''')
    op.execute('''
        CREATE UNIQUE INDEX uq_tickets_open_web_session
        ON tickets (web_session_id) WHERE status != 'CLOSED'
    ''')
    op.execute('CREATE INDEX idx_tickets_status ON tickets (status)')

    # ==========================================================================
    # Ticket events (audit trail)
    # ==========================================================================
    op.execute('''
        CREATE TABLE ticket_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            event_type VARCHAR(30) NOT NULL,
            old_value VARCHAR(255),
            new_value VARCHAR(255),
            question TEXT,
            source_url TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_ticket_events_ticket_created ON ticket_events (ticket_id, created_at)')

    # ==========================================================================
    # Message mapping (edit propagation)
    # ==========================================================================
    op.execute('''
        CREATE TABLE message_maps (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            direction VARCHAR(30) NOT NULL,
            channel VARCHAR(20) NOT NULL,
            customer_message_id BIGINT,
            thread_message_id BIGINT,
            text TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_message_maps_customer UNIQUE (ticket_id, customer_message_id),
            CONSTRAINT uq_message_maps_thread UNIQUE (ticket_id, thread_message_id)
        )
    ''')
    op.execute('CREATE INDEX idx_message_maps_thread_message ON message_maps (thread_message_id)')

    # ==========================================================================
    # Web link tokens
    # ==========================================================================
    op.execute('''
        CREATE TABLE web_link_tokens (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            token VARCHAR(64) UNIQUE NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            used_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Jobs (persisted timers)
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            job_type VARCHAR(50) NOT NULL,
            payload JSON NOT NULL,
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ,
            idempotency_key VARCHAR(255)
        )
    ''')
    op.execute('''
        CREATE INDEX idx_jobs_pending ON jobs (status, run_at)
        WHERE status = 'pending'
    ''')
    op.execute('''
        CREATE UNIQUE INDEX uq_job_pending_idempotency ON jobs (idempotency_key)
        WHERE status = 'pending'
    ''')


def downgrade() -> None:
    op.execute('DROP TABLE IF EXISTS jobs')
    op.execute('DROP TABLE IF EXISTS web_link_tokens')
    op.execute('DROP TABLE IF EXISTS message_maps')
    op.execute('DROP TABLE IF EXISTS ticket_events')
    op.execute('DROP TABLE IF EXISTS tickets')
