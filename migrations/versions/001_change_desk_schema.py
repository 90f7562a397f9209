"""Change desk schema (SQL-only).

Revision ID: 001_change_desk_schema
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_change_desk_schema"
down_revision = None
branch_labels = None
depends_on = None


_SQL = """
CREATE TABLE IF NOT EXISTS change_requests (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    booking_id text NOT NULL,
    confirmation_code text NOT NULL DEFAULT '',
    change_type text NOT NULL
        CHECK (change_type IN ('RESCHEDULE', 'CANCEL', 'CHANGE_PICKUP')),
    parameters jsonb NOT NULL DEFAULT '{}'::jsonb,
    requested_by text NOT NULL,
    status text NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    created_at timestamptz NOT NULL DEFAULT now(),
    processing_started_at timestamptz,
    completed_at timestamptz,
    failed_at timestamptz,
    method text,
    result_message text,
    error_message text,
    failure_kind text,
    is_ota_booking boolean NOT NULL DEFAULT false,
    ota_name text,
    ota_portal_url text,
    customer_name text,
    details jsonb NOT NULL DEFAULT '{}'::jsonb
);

-- One open request per booking
CREATE UNIQUE INDEX IF NOT EXISTS uq_change_requests_open_booking
    ON change_requests (booking_id)
    WHERE status IN ('pending', 'processing');

CREATE INDEX IF NOT EXISTS idx_change_requests_processing_started
    ON change_requests (processing_started_at)
    WHERE status = 'processing';

CREATE INDEX IF NOT EXISTS idx_change_requests_pending_created
    ON change_requests (created_at)
    WHERE status = 'pending';

CREATE TABLE IF NOT EXISTS booking_actions (
    id bigserial PRIMARY KEY,
    booking_id text NOT NULL,
    action text NOT NULL,
    performed_by text NOT NULL,
    performed_at timestamptz NOT NULL DEFAULT now(),
    success boolean NOT NULL,
    method text,
    original_data jsonb NOT NULL DEFAULT '{}'::jsonb,
    new_data jsonb NOT NULL DEFAULT '{}'::jsonb,
    error_message text,
    change_request_id uuid REFERENCES change_requests (id),
    confirmation_code text,
    is_ota_booking boolean NOT NULL DEFAULT false,
    ota_name text
);

CREATE INDEX IF NOT EXISTS idx_booking_actions_booking
    ON booking_actions (booking_id, performed_at);

CREATE INDEX IF NOT EXISTS idx_booking_actions_change_request
    ON booking_actions (change_request_id);

CREATE TABLE IF NOT EXISTS outbox_events (
    id bigserial PRIMARY KEY,
    event_type text NOT NULL,
    aggregate_type text NOT NULL,
    aggregate_id text NOT NULL,
    payload jsonb,
    correlation_id text,
    occurred_at timestamptz NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_outbox_events_type
    ON outbox_events (event_type, occurred_at);
"""


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(_SQL)


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
