"""Add readiness / load / adjustment engine and set logging tables

Revision ID: engine_001
Revises: None
Create Date: 2024-03-01

Creates:
- metric_sample: per-athlete, per-day, per-metric input values (upsert only)
- daily_readiness: daily composite readiness score and band
- load_record: daily acute:chronic workload ratio and band
- planned_session: sessions owned by the scheduler (read by the engine)
- program_adjustment: append-only log of session scaling decisions
- logged_set: sets accepted from devices, unique per idempotency key
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = 'engine_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ---------------------------------------------------------------
    # metric_sample: unique per (athlete, metric_type, date)
    # ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS metric_sample (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            athlete_id UUID NOT NULL,
            metric_type TEXT NOT NULL,
            date DATE NOT NULL,
            value FLOAT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_metric_sample_athlete_type_date UNIQUE (athlete_id, metric_type, date)
        );
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_metric_sample_athlete_type_date
        ON metric_sample (athlete_id, metric_type, date);
    """)

    # ---------------------------------------------------------------
    # daily_readiness: one row per athlete per day
    # ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS daily_readiness (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            athlete_id UUID NOT NULL,
            date DATE NOT NULL,
            score FLOAT NOT NULL,
            band TEXT NOT NULL,
            components JSONB,
            weights_used JSONB,
            signals_available INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_daily_readiness_athlete_date UNIQUE (athlete_id, date)
        );
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_daily_readiness_athlete_id
        ON daily_readiness (athlete_id);
    """)

    # ---------------------------------------------------------------
    # load_record: one row per athlete per day, acwr NULL = insufficient data
    # ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS load_record (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            athlete_id UUID NOT NULL,
            date DATE NOT NULL,
            daily_load FLOAT,
            acute_7d FLOAT,
            chronic_28d FLOAT,
            acwr FLOAT,
            band TEXT NOT NULL,
            under_training BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_load_record_athlete_date UNIQUE (athlete_id, date)
        );
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_load_record_athlete_id
        ON load_record (athlete_id);
    """)

    # ---------------------------------------------------------------
    # planned_session: owned by the session scheduler
    # ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS planned_session (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            athlete_id UUID NOT NULL,
            scheduled_date DATE NOT NULL,
            status TEXT NOT NULL DEFAULT 'planned',
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_planned_session_athlete_date
        ON planned_session (athlete_id, scheduled_date);
    """)

    # ---------------------------------------------------------------
    # program_adjustment: append-only audit log
    # ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS program_adjustment (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            session_id UUID NOT NULL,
            athlete_id UUID NOT NULL,
            reason TEXT NOT NULL,
            adjustment_factor FLOAT NOT NULL,
            old_payload JSONB NOT NULL,
            new_payload JSONB NOT NULL,
            readiness_score FLOAT,
            readiness_band TEXT,
            acwr FLOAT,
            load_band TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_program_adjustment_session_created
        ON program_adjustment (session_id, created_at);
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_program_adjustment_athlete_id
        ON program_adjustment (athlete_id);
    """)

    # ---------------------------------------------------------------
    # logged_set: idempotent set receiver
    # ---------------------------------------------------------------
    op.execute("""
        CREATE TABLE IF NOT EXISTS logged_set (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            idempotency_key TEXT NOT NULL UNIQUE,
            session_id UUID NOT NULL,
            exercise TEXT NOT NULL,
            weight FLOAT NOT NULL,
            reps INTEGER NOT NULL,
            rpe FLOAT,
            tempo TEXT,
            velocity FLOAT,
            client_created_at TIMESTAMPTZ,
            received_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_logged_set_session_id
        ON logged_set (session_id);
    """)


def downgrade():
    op.execute("DROP TABLE IF EXISTS logged_set;")
    op.execute("DROP TABLE IF EXISTS program_adjustment;")
    op.execute("DROP TABLE IF EXISTS planned_session;")
    op.execute("DROP TABLE IF EXISTS load_record;")
    op.execute("DROP TABLE IF EXISTS daily_readiness;")
    op.execute("DROP TABLE IF EXISTS metric_sample;")
