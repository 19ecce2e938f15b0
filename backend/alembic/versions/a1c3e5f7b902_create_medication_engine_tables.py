"""create medication engine tables

Revision ID: a1c3e5f7b902
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b902'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


priority_enum = sa.Enum('LOW', 'NORMAL', 'HIGH', 'CRITICAL', name='medicationpriority')
# Second use of the same type; it already exists by then.
schedule_priority_enum = postgresql.ENUM('LOW', 'NORMAL', 'HIGH', 'CRITICAL', name='medicationpriority', create_type=False)
order_status_enum = sa.Enum(
    'PENDING_APPROVAL', 'APPROVED', 'ACTIVE', 'REJECTED', 'COMPLETED', 'EXPIRED', 'DISCONTINUED',
    name='orderstatus',
)
lifecycle_enum = sa.Enum('ACTIVE', 'ARCHIVED', name='lifecycle')
schedule_status_enum = sa.Enum(
    'PENDING', 'AWAITING_CONFIRMATION', 'ADMINISTERED', 'MISSED', 'STUDENT_ABSENT',
    name='schedulestatus',
)
administration_kind_enum = sa.Enum('ADMINISTRATION', 'CORRECTION', 'RETURN', name='administrationkind')
movement_kind_enum = sa.Enum('CONSUME', 'REVERSE', name='movementkind')
usage_status_enum = sa.Enum('GIVEN', 'MISSED', 'REFUSED', 'ABSENT', 'CORRECTED', 'RETURNED', name='usagestatus')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'app_config',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('name', 'tenant_id', name='_app_config_name_tenant_uc'),
    )
    op.create_index('ix_app_config_id', 'app_config', ['id'])
    op.create_index('ix_app_config_name', 'app_config', ['name'])
    op.create_index('ix_app_config_tenant_id', 'app_config', ['tenant_id'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('table_name', sa.String(), nullable=False),
        sa.Column('record_id', sa.Integer(), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('changed_by', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
    )
    op.create_index('ix_audit_log_id', 'audit_log', ['id'])
    op.create_index('ix_audit_log_record_id', 'audit_log', ['record_id'])

    op.create_table(
        'medication_order',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=True),
        sa.Column('student_id', sa.String(), nullable=False),
        sa.Column('guardian_id', sa.String(), nullable=True),
        sa.Column('medication_name', sa.String(), nullable=False),
        sa.Column('dosage', sa.String(), nullable=False),
        sa.Column('dose_quantity', sa.Integer(), nullable=False),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('frequency_count', sa.Integer(), nullable=False),
        sa.Column('day_parts', sa.JSON(), nullable=False),
        sa.Column('specific_times', sa.JSON(), nullable=False),
        sa.Column('skip_weekends', sa.Boolean(), nullable=False),
        sa.Column('skip_dates', sa.JSON(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=False),
        sa.Column('total_doses', sa.Integer(), nullable=False),
        sa.Column('remaining_doses', sa.Integer(), nullable=False),
        sa.Column('min_stock_threshold', sa.Integer(), nullable=False),
        sa.Column('low_stock_alert_sent', sa.Boolean(), nullable=False),
        sa.Column('auto_generate_schedule', sa.Boolean(), nullable=False),
        sa.Column('require_nurse_confirmation', sa.Boolean(), nullable=False),
        sa.Column('skip_on_absence', sa.Boolean(), nullable=False),
        sa.Column('priority', priority_enum, nullable=False),
        sa.Column('status', order_status_enum, nullable=False),
        sa.Column('approved_by', sa.String(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('lifecycle', lifecycle_enum, nullable=False),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('archived_by', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_medication_order_id', 'medication_order', ['id'])
    op.create_index('ix_medication_order_tenant_id', 'medication_order', ['tenant_id'])
    op.create_index('ix_medication_order_student_id', 'medication_order', ['student_id'])

    op.create_table(
        'dose_schedule',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('medication_order.id'), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('scheduled_time', sa.Time(), nullable=False),
        sa.Column('scheduled_dosage', sa.String(), nullable=False),
        sa.Column('dose_sequence', sa.Integer(), nullable=False),
        sa.Column('priority', schedule_priority_enum, nullable=False),
        sa.Column('status', schedule_status_enum, nullable=False),
        sa.Column('administration_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('missed_at', sa.DateTime(), nullable=True),
        sa.Column('missed_reason', sa.String(), nullable=True),
        sa.Column('student_present', sa.Boolean(), nullable=False),
        sa.Column('attendance_checked_at', sa.DateTime(), nullable=True),
        sa.Column('reminder_sent', sa.Boolean(), nullable=False),
        sa.Column('reminder_sent_at', sa.DateTime(), nullable=True),
        sa.Column('reminder_count', sa.Integer(), nullable=False),
        sa.Column('reminders_suppressed', sa.Boolean(), nullable=False),
        sa.Column('escalated', sa.Boolean(), nullable=False),
        sa.Column('requires_nurse_confirmation', sa.Boolean(), nullable=False),
        sa.Column('pending_actor', sa.String(), nullable=True),
        sa.Column('confirmed_by', sa.String(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('order_id', 'dose_sequence', name='_dose_schedule_order_sequence_uc'),
    )
    op.create_index('ix_dose_schedule_id', 'dose_schedule', ['id'])
    op.create_index('ix_dose_schedule_order_id', 'dose_schedule', ['order_id'])
    op.create_index('ix_dose_schedule_scheduled_date', 'dose_schedule', ['scheduled_date'])
    op.create_index('ix_dose_schedule_status', 'dose_schedule', ['status'])

    op.create_table(
        'administration_event',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('medication_order.id'), nullable=False),
        sa.Column('schedule_id', sa.Integer(), sa.ForeignKey('dose_schedule.id'), nullable=True),
        sa.Column('kind', administration_kind_enum, nullable=False),
        sa.Column('administered_by', sa.String(), nullable=False),
        sa.Column('administered_at', sa.DateTime(), nullable=False),
        sa.Column('actual_dosage', sa.String(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('student_refused', sa.Boolean(), nullable=False),
        sa.Column('refusal_reason', sa.String(), nullable=True),
        sa.Column('side_effects', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('early_override', sa.Boolean(), nullable=False),
        sa.Column('reverses_id', sa.Integer(), sa.ForeignKey('administration_event.id'), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_administration_event_id', 'administration_event', ['id'])
    op.create_index('ix_administration_event_order_id', 'administration_event', ['order_id'])
    op.create_index('ix_administration_event_schedule_id', 'administration_event', ['schedule_id'])
    op.create_index('ix_administration_event_reverses_id', 'administration_event', ['reverses_id'])
    op.create_foreign_key(
        'fk_dose_schedule_administration_id', 'dose_schedule', 'administration_event',
        ['administration_id'], ['id'],
    )

    op.create_table(
        'stock_entry',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('medication_order.id'), nullable=False),
        sa.Column('quantity_added', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(), nullable=False),
        sa.Column('batch_expiry', sa.Date(), nullable=False),
        sa.Column('date_added', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_initial_stock', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_stock_entry_id', 'stock_entry', ['id'])
    op.create_index('ix_stock_entry_order_id', 'stock_entry', ['order_id'])

    op.create_table(
        'stock_movement',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('medication_order.id'), nullable=False),
        sa.Column('kind', movement_kind_enum, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('administration_id', sa.Integer(), sa.ForeignKey('administration_event.id'), nullable=True),
        sa.Column('note', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_stock_movement_id', 'stock_movement', ['id'])
    op.create_index('ix_stock_movement_order_id', 'stock_movement', ['order_id'])

    op.create_table(
        'usage_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('medication_order.id'), nullable=False),
        sa.Column('student_id', sa.String(), nullable=False),
        sa.Column('schedule_id', sa.Integer(), sa.ForeignKey('dose_schedule.id'), nullable=True),
        sa.Column('administration_id', sa.Integer(), sa.ForeignKey('administration_event.id'), nullable=True),
        sa.Column('medication_name', sa.String(), nullable=True),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('dosage_used', sa.String(), nullable=True),
        sa.Column('status', usage_status_enum, nullable=False),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('note', sa.String(), nullable=True),
        sa.Column('administered_by', sa.String(), nullable=True),
        sa.Column('administered_time', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_usage_history_id', 'usage_history', ['id'])
    op.create_index('ix_usage_history_order_id', 'usage_history', ['order_id'])
    op.create_index('ix_usage_history_student_id', 'usage_history', ['student_id'])


def downgrade() -> None:
    op.drop_table('usage_history')
    op.drop_table('stock_movement')
    op.drop_table('stock_entry')
    op.drop_constraint('fk_dose_schedule_administration_id', 'dose_schedule', type_='foreignkey')
    op.drop_table('administration_event')
    op.drop_table('dose_schedule')
    op.drop_table('medication_order')
    op.drop_table('audit_log')
    op.drop_table('app_config')
    for enum_type in (
        usage_status_enum, movement_kind_enum, administration_kind_enum,
        schedule_status_enum, lifecycle_enum, order_status_enum, priority_enum,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
