"""fiscal vouchers: bookings, invoices, credit notes

Revision ID: 0001_fiscal_vouchers
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_fiscal_vouchers"
down_revision = None
branch_labels = None
depends_on = None


AMOUNT_COLUMNS = (
    "sale_price",
    "taxable_base_21",
    "commission_21",
    "tax_21",
    "vat_on_commission_21",
    "taxable_base_10_5",
    "commission_10_5",
    "tax_10_5",
    "vat_on_commission_10_5",
    "taxable_card_interest",
    "vat_on_card_interest",
    "non_computable",
)

agency_counter_key = postgresql.ENUM("INVOICE", "CREDIT_NOTE", name="agency_counter_key", create_type=False)
voucher_status = postgresql.ENUM("AUTHORIZED", name="voucher_status", create_type=False)


def _amount_columns() -> list[sa.Column]:
    return [sa.Column(name, sa.Numeric(14, 2), nullable=False, server_default="0") for name in AMOUNT_COLUMNS]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _voucher_columns() -> list[sa.Column]:
    return [
        sa.Column("point_of_sale", sa.Integer(), nullable=False),
        sa.Column("voucher_type", sa.Integer(), nullable=False),
        sa.Column("voucher_number", sa.String(length=32), nullable=False),
        sa.Column("display_number", sa.String(length=32), nullable=False),
        sa.Column("legacy_number", sa.String(length=32), nullable=False),
        sa.Column("cae", sa.String(length=32), nullable=False),
        sa.Column("cae_due_date", sa.Date(), nullable=True),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(14, 6), nullable=False, server_default="1"),
        sa.Column("status", voucher_status, nullable=False),
        sa.Column("recipient", sa.String(length=200), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    postgresql.ENUM("INVOICE", "CREDIT_NOTE", name="agency_counter_key").create(bind, checkfirst=True)
    postgresql.ENUM("AUTHORIZED", name="voucher_status").create(bind, checkfirst=True)

    op.create_table(
        "agencies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("tax_id", sa.String(length=20), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("dni_number", sa.String(length=20), nullable=True),
        sa.Column("tax_id", sa.String(length=20), nullable=True),
        *_timestamps(),
    )
    op.create_index(op.f("ix_clients_agency_id"), "clients", ["agency_id"])

    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_booking_id", sa.Integer(), nullable=True),
        sa.Column("titular_client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index(op.f("ix_bookings_agency_id"), "bookings", ["agency_id"])

    op.create_table(
        "services",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("departure_date", sa.Date(), nullable=True),
        sa.Column("return_date", sa.Date(), nullable=True),
        *_amount_columns(),
        *_timestamps(),
    )
    op.create_index(op.f("ix_services_agency_id"), "services", ["agency_id"])
    op.create_index(op.f("ix_services_booking_id"), "services", ["booking_id"])

    op.create_table(
        "agency_counters",
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("key", agency_counter_key, nullable=False),
        sa.Column("next_value", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("agency_id", "key", name="pk_agency_counters"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_invoice_id", sa.Integer(), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=False),
        *_voucher_columns(),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "agency_id", "point_of_sale", "voucher_type", "voucher_number", name="uq_invoice_agency_pos_type_number"
        ),
        sa.UniqueConstraint("agency_id", "agency_invoice_id", name="uq_invoice_agency_sequence"),
    )
    op.create_index(op.f("ix_invoices_agency_id"), "invoices", ["agency_id"])
    op.create_index(op.f("ix_invoices_booking_id"), "invoices", ["booking_id"])

    op.create_table(
        "invoice_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "invoice_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("invoices.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("service_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("services.id"), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        *_amount_columns(),
    )
    op.create_index(op.f("ix_invoice_items_invoice_id"), "invoice_items", ["invoice_id"])

    op.create_table(
        "credit_notes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agencies.id"), nullable=False),
        sa.Column("agency_credit_note_id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("invoices.id"), nullable=False),
        *_voucher_columns(),
        sa.Column("associated_vouchers", postgresql.JSONB(), nullable=False),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "agency_id",
            "point_of_sale",
            "voucher_type",
            "voucher_number",
            name="uq_credit_note_agency_pos_type_number",
        ),
        sa.UniqueConstraint("agency_id", "agency_credit_note_id", name="uq_credit_note_agency_sequence"),
    )
    op.create_index(op.f("ix_credit_notes_agency_id"), "credit_notes", ["agency_id"])
    op.create_index(op.f("ix_credit_notes_invoice_id"), "credit_notes", ["invoice_id"])

    op.create_table(
        "credit_note_items",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "credit_note_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("credit_notes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        *_amount_columns(),
    )
    op.create_index(op.f("ix_credit_note_items_credit_note_id"), "credit_note_items", ["credit_note_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("actor", sa.String(length=200), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("after", sa.JSON(), nullable=True),
    )
    op.create_index(op.f("ix_audit_logs_agency_id"), "audit_logs", ["agency_id"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index(op.f("ix_audit_logs_agency_id"), table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index(op.f("ix_credit_note_items_credit_note_id"), table_name="credit_note_items")
    op.drop_table("credit_note_items")
    op.drop_index(op.f("ix_credit_notes_invoice_id"), table_name="credit_notes")
    op.drop_index(op.f("ix_credit_notes_agency_id"), table_name="credit_notes")
    op.drop_table("credit_notes")
    op.drop_index(op.f("ix_invoice_items_invoice_id"), table_name="invoice_items")
    op.drop_table("invoice_items")
    op.drop_index(op.f("ix_invoices_booking_id"), table_name="invoices")
    op.drop_index(op.f("ix_invoices_agency_id"), table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("agency_counters")
    op.drop_index(op.f("ix_services_booking_id"), table_name="services")
    op.drop_index(op.f("ix_services_agency_id"), table_name="services")
    op.drop_table("services")
    op.drop_index(op.f("ix_bookings_agency_id"), table_name="bookings")
    op.drop_table("bookings")
    op.drop_index(op.f("ix_clients_agency_id"), table_name="clients")
    op.drop_table("clients")
    op.drop_table("agencies")

    bind = op.get_bind()
    postgresql.ENUM(name="voucher_status").drop(bind, checkfirst=True)
    postgresql.ENUM(name="agency_counter_key").drop(bind, checkfirst=True)
