"""Initial schema (owners, credentials, messages, fingerprints, clients, bookings, jobs, audit)

Revision ID: 20261019_1200
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op

revision = "20261019_1200"
down_revision = None
branch_labels = None
depends_on = None

_ENUMS = {
    "auth_method": ("web", "ios"),
    "booking_status": ("pending", "auto_synced", "needs_review", "approved", "rejected", "cancelled"),
    "booking_source": ("sms", "manual"),
    "job_status": ("queued", "running", "succeeded", "failed", "cancelled"),
    "job_type": ("message_process", "booking_sync"),
}


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute("CREATE EXTENSION IF NOT EXISTS citext;")

    for name, values in _ENUMS.items():
        labels = ",".join(f"'{v}'" for v in values)
        op.execute(
            f"""
DO $$ BEGIN
  CREATE TYPE {name} AS ENUM ({labels});
EXCEPTION WHEN duplicate_object THEN NULL; END $$;
"""
        )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS owners (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  email citext NOT NULL UNIQUE,
  display_name text,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS credential_records (
  owner_id uuid PRIMARY KEY REFERENCES owners(id) ON DELETE CASCADE,
  access_token_ciphertext text NOT NULL,
  refresh_token_ciphertext text,
  auth_method auth_method NOT NULL DEFAULT 'web',
  access_token_expires_at timestamptz,
  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS raw_messages (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  owner_id uuid NOT NULL REFERENCES owners(id) ON DELETE CASCADE,
  text text NOT NULL,
  sender text NOT NULL,
  received_at timestamptz NOT NULL DEFAULT now(),
  processed boolean NOT NULL DEFAULT false
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS raw_messages_owner_received_idx ON raw_messages (owner_id, received_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS raw_messages_owner_text_idx ON raw_messages (owner_id, md5(text), received_at DESC);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS clients (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  owner_id uuid NOT NULL REFERENCES owners(id) ON DELETE CASCADE,
  canonical_name text NOT NULL,
  aliases text[] NOT NULL DEFAULT '{}',
  booking_count int NOT NULL DEFAULT 0,
  cancellation_count int NOT NULL DEFAULT 0,
  no_show_count int NOT NULL DEFAULT 0,
  first_seen timestamptz NOT NULL DEFAULT now(),
  last_seen timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS clients_owner_name_uq ON clients (owner_id, lower(canonical_name));"
    )
    op.execute("CREATE INDEX IF NOT EXISTS clients_owner_last_seen_idx ON clients (owner_id, last_seen DESC);")

    op.execute(
        """
CREATE TABLE IF NOT EXISTS bookings (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  owner_id uuid NOT NULL REFERENCES owners(id) ON DELETE CASCADE,
  raw_message_id uuid NOT NULL UNIQUE REFERENCES raw_messages(id) ON DELETE RESTRICT,
  client_id uuid NOT NULL REFERENCES clients(id) ON DELETE RESTRICT,
  source booking_source NOT NULL DEFAULT 'sms',

  customer_name text NOT NULL,
  service text NOT NULL,
  appointment_time timestamptz NOT NULL,
  duration_minutes int NOT NULL DEFAULT 60 CHECK (duration_minutes > 0),
  confidence double precision NOT NULL CHECK (confidence >= 0 AND confidence <= 1),

  status booking_status NOT NULL DEFAULT 'pending',
  review_reasons text[] NOT NULL DEFAULT '{}',

  external_event_id text,
  synced_at timestamptz,
  last_sync_error text,

  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS bookings_owner_time_idx ON bookings (owner_id, appointment_time);"
    )
    op.execute("CREATE INDEX IF NOT EXISTS bookings_owner_status_idx ON bookings (owner_id, status);")

    op.execute(
        """
CREATE TABLE IF NOT EXISTS message_fingerprints (
  owner_id uuid NOT NULL REFERENCES owners(id) ON DELETE CASCADE,
  fingerprint text NOT NULL,
  raw_message_id uuid NOT NULL REFERENCES raw_messages(id) ON DELETE CASCADE,
  booking_id uuid REFERENCES bookings(id) ON DELETE SET NULL,
  created_at timestamptz NOT NULL DEFAULT now(),
  PRIMARY KEY (owner_id, fingerprint)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS bg_jobs (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  owner_id uuid REFERENCES owners(id) ON DELETE CASCADE,

  type job_type NOT NULL,
  status job_status NOT NULL DEFAULT 'queued',

  run_at timestamptz NOT NULL DEFAULT now(),
  attempts int NOT NULL DEFAULT 0,
  max_attempts int NOT NULL DEFAULT 25,

  locked_at timestamptz,
  locked_by text,
  last_error text,

  dedupe_key text,
  payload jsonb NOT NULL DEFAULT '{}'::jsonb,

  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute("CREATE INDEX IF NOT EXISTS bg_jobs_runner_idx ON bg_jobs (status, run_at);")
    op.execute(
        """
CREATE UNIQUE INDEX IF NOT EXISTS bg_jobs_dedupe_uq
  ON bg_jobs (type, dedupe_key)
  WHERE dedupe_key IS NOT NULL AND status IN ('queued','running');
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS audit_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  owner_id uuid NOT NULL REFERENCES owners(id) ON DELETE CASCADE,
  event_type text NOT NULL,
  event_data jsonb NOT NULL DEFAULT '{}'::jsonb,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS audit_events_owner_created_idx ON audit_events (owner_id, created_at DESC);"
    )

    # Keep updated_at consistent even for raw SQL updates (worker code, etc.).
    op.execute(
        """
CREATE OR REPLACE FUNCTION set_updated_at() RETURNS trigger AS $$
BEGIN
  NEW.updated_at = now();
  RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""
    )
    for table in ("credential_records", "bg_jobs"):
        op.execute(
            f"""
DO $$
BEGIN
  IF NOT EXISTS (
    SELECT 1 FROM pg_trigger WHERE tgname = 'set_updated_at_{table}'
  ) THEN
    CREATE TRIGGER set_updated_at_{table}
    BEFORE UPDATE ON {table}
    FOR EACH ROW
    EXECUTE FUNCTION set_updated_at();
  END IF;
END $$;
"""
        )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS audit_events CASCADE;")
    op.execute("DROP TABLE IF EXISTS bg_jobs CASCADE;")
    op.execute("DROP TABLE IF EXISTS message_fingerprints CASCADE;")
    op.execute("DROP TABLE IF EXISTS bookings CASCADE;")
    op.execute("DROP TABLE IF EXISTS clients CASCADE;")
    op.execute("DROP TABLE IF EXISTS raw_messages CASCADE;")
    op.execute("DROP TABLE IF EXISTS credential_records CASCADE;")
    op.execute("DROP TABLE IF EXISTS owners CASCADE;")
    op.execute("DROP FUNCTION IF EXISTS set_updated_at();")
    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name};")
