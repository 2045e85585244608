"""Commission engine tables

Revision ID: 001_commission_engine
Revises: None
Create Date: 2025-09-13
"""
from alembic import op

revision = '001_commission_engine'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            email VARCHAR NOT NULL UNIQUE,
            username VARCHAR NOT NULL UNIQUE,
            full_name VARCHAR,
            role VARCHAR NOT NULL DEFAULT 'field_agent',
            is_active BOOLEAN DEFAULT TRUE,
            employee_code VARCHAR UNIQUE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS clients (
            id SERIAL PRIMARY KEY,
            name VARCHAR NOT NULL,
            code VARCHAR UNIQUE,
            is_active BOOLEAN DEFAULT TRUE,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS rate_types (
            id SERIAL PRIMARY KEY,
            name VARCHAR NOT NULL UNIQUE,
            description TEXT,
            is_active BOOLEAN DEFAULT TRUE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS rates (
            id SERIAL PRIMARY KEY,
            client_id INTEGER NOT NULL REFERENCES clients(id),
            product_id INTEGER NOT NULL,
            verification_type_id INTEGER NOT NULL,
            rate_type_id INTEGER NOT NULL REFERENCES rate_types(id),
            amount NUMERIC(10,2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'INR',
            is_active BOOLEAN DEFAULT TRUE,
            created_by INTEGER REFERENCES users(id),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        );

        -- One active price per client / product / verification type / rate type
        CREATE UNIQUE INDEX IF NOT EXISTS uq_rates_active_combination
            ON rates (client_id, product_id, verification_type_id, rate_type_id)
            WHERE is_active;

        CREATE TABLE IF NOT EXISTS commission_rate_types (
            id SERIAL PRIMARY KEY,
            rate_type_id INTEGER NOT NULL UNIQUE REFERENCES rate_types(id),
            commission_amount NUMERIC(10,2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'INR',
            is_active BOOLEAN DEFAULT TRUE,
            created_by INTEGER REFERENCES users(id),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS field_user_commission_assignments (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id),
            rate_type_id INTEGER NOT NULL REFERENCES rate_types(id),
            client_id INTEGER REFERENCES clients(id),
            calculation_method VARCHAR NOT NULL DEFAULT 'FIXED_AMOUNT',
            commission_amount NUMERIC(10,2),
            commission_percentage NUMERIC(5,2),
            currency VARCHAR(3) NOT NULL DEFAULT 'INR',
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            effective_from TIMESTAMPTZ NOT NULL,
            effective_to TIMESTAMPTZ,
            created_by INTEGER REFERENCES users(id),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT ck_assignment_single_value CHECK (
                (calculation_method = 'FIXED_AMOUNT' AND commission_amount IS NOT NULL AND commission_percentage IS NULL)
                OR (calculation_method = 'PERCENTAGE' AND commission_percentage IS NOT NULL AND commission_amount IS NULL)
            ),
            CONSTRAINT ck_assignment_window CHECK (effective_to IS NULL OR effective_to >= effective_from)
        );

        CREATE INDEX IF NOT EXISTS ix_fuca_lookup
            ON field_user_commission_assignments (user_id, rate_type_id, client_id)
            WHERE is_active;

        CREATE TABLE IF NOT EXISTS commission_calculations (
            id SERIAL PRIMARY KEY,
            case_id VARCHAR NOT NULL,
            case_number INTEGER,
            user_id INTEGER NOT NULL REFERENCES users(id),
            client_id INTEGER REFERENCES clients(id),
            rate_type_id INTEGER NOT NULL REFERENCES rate_types(id),
            base_amount NUMERIC(10,2) NOT NULL,
            applied_rate NUMERIC(10,2) NOT NULL,
            commission_amount NUMERIC(10,2) NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'INR',
            calculation_method VARCHAR NOT NULL,
            status VARCHAR NOT NULL DEFAULT 'PENDING',
            case_completed_at TIMESTAMPTZ,
            calculated_at TIMESTAMPTZ NOT NULL,
            approved_by INTEGER REFERENCES users(id),
            approved_at TIMESTAMPTZ,
            rejected_by INTEGER REFERENCES users(id),
            rejected_at TIMESTAMPTZ,
            rejection_reason TEXT,
            paid_by INTEGER REFERENCES users(id),
            paid_at TIMESTAMPTZ,
            payment_method VARCHAR,
            transaction_id VARCHAR,
            notes TEXT,
            created_by INTEGER REFERENCES users(id),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ,
            CONSTRAINT uq_commission_calculations_case_user UNIQUE (case_id, user_id)
        );

        CREATE INDEX IF NOT EXISTS ix_commission_calculations_status ON commission_calculations (status);
        CREATE INDEX IF NOT EXISTS ix_commission_calculations_user ON commission_calculations (user_id);
        CREATE INDEX IF NOT EXISTS ix_commission_calculations_completed ON commission_calculations (case_completed_at);
    """)


def downgrade():
    # Ledger rows are an audit trail; only drop the tables this revision owns
    op.execute("""
        DROP TABLE IF EXISTS commission_calculations;
        DROP TABLE IF EXISTS field_user_commission_assignments;
        DROP TABLE IF EXISTS commission_rate_types;
        DROP TABLE IF EXISTS rates;
    """)
