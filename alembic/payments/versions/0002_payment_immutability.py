"""enforce immutable payment records

Revision ID: 0002_payment_immutability
Revises: 0001_payments
Create Date: 2026-10-14
"""

from alembic import op


revision = "0002_payment_immutability"
down_revision = "0001_payments"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_payment_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'payments is insert-only; % is not allowed', TG_OP;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_payments_immutable
        BEFORE UPDATE OR DELETE ON payments
        FOR EACH ROW
        EXECUTE FUNCTION prevent_payment_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_payments_immutable ON payments;")
    op.execute("DROP FUNCTION IF EXISTS prevent_payment_mutation();")
