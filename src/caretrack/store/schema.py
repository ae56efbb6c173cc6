"""PostgreSQL table definitions for the reading store.

``schedule`` on medications holds ``{"times": ["HH:MM", ...]}`` and
``preferred_email_time`` is a ``TIME`` column (rendered ``HH:MM:SS``);
both are read back as zero-padded ``HH:MM``.
"""

from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS patients (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email TEXT,
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        chronic_conditions JSONB NOT NULL DEFAULT '[]',
        preferred_email_time TIME DEFAULT '09:00:00',
        email_notifications BOOLEAN NOT NULL DEFAULT true,
        email_preferences JSONB NOT NULL
            DEFAULT '{"medication": true, "motivational": true, "alerts": true, "reports": true}',
        motivation_level TEXT NOT NULL DEFAULT 'medium',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS health_readings (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id UUID NOT NULL REFERENCES patients(id) ON DELETE CASCADE,
        data_type TEXT NOT NULL,
        value JSONB NOT NULL,
        unit TEXT NOT NULL,
        notes TEXT,
        recorded_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        risk_level TEXT NOT NULL DEFAULT 'low',
        analysis JSONB,
        alert_sent BOOLEAN NOT NULL DEFAULT false
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_health_readings_patient_type_time
        ON health_readings (patient_id, data_type, recorded_at DESC)
    """,
    """
    CREATE TABLE IF NOT EXISTS medications (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id UUID NOT NULL REFERENCES patients(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        dosage TEXT NOT NULL,
        frequency TEXT,
        purpose TEXT,
        schedule JSONB NOT NULL DEFAULT '{"times": []}',
        is_active BOOLEAN NOT NULL DEFAULT true
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id UUID NOT NULL REFERENCES patients(id) ON DELETE CASCADE,
        medication_id UUID REFERENCES medications(id) ON DELETE SET NULL,
        type TEXT NOT NULL DEFAULT 'medication',
        title TEXT,
        scheduled_for TIMESTAMPTZ NOT NULL,
        is_completed BOOLEAN NOT NULL DEFAULT false,
        completed_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS goals (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        patient_id UUID NOT NULL REFERENCES patients(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        category TEXT,
        progress REAL NOT NULL DEFAULT 0,
        is_achieved BOOLEAN NOT NULL DEFAULT false
    )
    """,
)


async def ensure_schema(pool: asyncpg.Pool) -> None:
    """Create any missing tables and indexes."""
    async with pool.acquire() as conn:
        async with conn.transaction():
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
    logger.info("Reading store schema is up to date")
