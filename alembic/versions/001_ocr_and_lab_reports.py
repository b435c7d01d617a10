"""Create ocr_data, lab_reports and lab_report_items.

Revision ID: 001
Create Date: 2026-10-18

ocr_data rows are pending while claimed_at IS NULL and claimed while it is
set; a partial index keeps the oldest-first claim scan on pending rows only.
lab_reports.ocrdata_id is unique so a report is written at most once per
OCR record. It is not a foreign key: the OCR row is deleted once its report
is committed.
"""

from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # -- ocr_data -------------------------------------------------------------
    op.execute(
        """
        CREATE TABLE ocr_data (
            id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
            report_image TEXT NOT NULL,
            ocr_primitive TEXT NOT NULL,
            workspace_id INT NOT NULL,
            claimed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """
    )

    op.execute(
        """
        CREATE INDEX ix_ocr_data_pending
        ON ocr_data (created_at, id)
        WHERE claimed_at IS NULL
    """
    )

    op.execute(
        """
        CREATE INDEX ix_ocr_data_claimed_at
        ON ocr_data (claimed_at)
        WHERE claimed_at IS NOT NULL
    """
    )

    op.execute("CREATE INDEX ix_ocr_data_workspace ON ocr_data (workspace_id)")

    # -- lab_reports ----------------------------------------------------------
    op.execute(
        """
        CREATE TABLE lab_reports (
            id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
            patient VARCHAR(100) NOT NULL CHECK (length(btrim(patient)) > 0),
            report_time TIMESTAMPTZ NOT NULL,
            doctor VARCHAR(100),
            hospital VARCHAR(200),
            report_image VARCHAR(500),
            workspace_id INT NOT NULL,
            ocrdata_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """
    )

    op.execute("CREATE UNIQUE INDEX ux_lab_reports_ocrdata_id ON lab_reports (ocrdata_id)")
    op.execute("CREATE INDEX ix_lab_reports_workspace ON lab_reports (workspace_id)")
    op.execute("CREATE INDEX ix_lab_reports_patient ON lab_reports (patient)")
    op.execute("CREATE INDEX ix_lab_reports_report_time ON lab_reports (report_time)")

    # -- lab_report_items -----------------------------------------------------
    op.execute(
        """
        CREATE TABLE lab_report_items (
            id BIGINT GENERATED ALWAYS AS IDENTITY PRIMARY KEY,
            report_id BIGINT NOT NULL REFERENCES lab_reports(id) ON DELETE CASCADE,
            position INT NOT NULL,
            item_name VARCHAR(200) NOT NULL,
            result VARCHAR(500) NOT NULL,
            unit VARCHAR(50),
            reference_value VARCHAR(200),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """
    )

    op.execute("CREATE INDEX ix_lab_report_items_report ON lab_report_items (report_id, position)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS lab_report_items")
    op.execute("DROP TABLE IF EXISTS lab_reports")
    op.execute("DROP TABLE IF EXISTS ocr_data")
