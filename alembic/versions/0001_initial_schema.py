"""Initial schema - users, students, examinations, marksheets, notifications, push subscriptions.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUM_TYPES = {
    'user_role': ('STAFF', 'HOD'),
    'marksheet_status': (
        'DRAFT',
        'VERIFIED_BY_STAFF',
        'DISPATCH_REQUESTED',
        'APPROVED_BY_HOD',
        'REJECTED_BY_HOD',
        'RESCHEDULED_BY_HOD',
        'DISPATCHED',
    ),
    'dispatch_request_status': ('PENDING', 'APPROVED', 'REJECTED', 'RESCHEDULED', 'DISPATCHED'),
    'hod_response': ('APPROVED', 'REJECTED', 'RESCHEDULED'),
    'whatsapp_status': ('PENDING', 'SENT', 'FAILED'),
    'subscription_status': ('ACTIVE', 'EXPIRED'),
    'examination_status': ('ACTIVE', 'COMPLETED', 'CANCELLED'),
}


def enum_type(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create the academics schema."""
    conn = op.get_bind()

    # Create enum types (check if exists first for PostgreSQL)
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{value}'" for value in values)
        conn.execute(sa.text(f"""
            DO $$ BEGIN
                CREATE TYPE {name} AS ENUM ({labels});
            EXCEPTION
                WHEN duplicate_object THEN null;
            END $$;
        """))

    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        *timestamps(),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.Text(), nullable=False),
        sa.Column('role', enum_type('user_role'), nullable=False),
        sa.Column('department', sa.String(20), nullable=False),
        sa.Column('year', sa.String(10), nullable=True),
        sa.Column('section', sa.String(10), nullable=True),
        sa.Column('e_signature', sa.Text(), nullable=True),
        sa.Column('phone_number', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_department', 'users', ['department'])

    op.create_table(
        'students',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        *timestamps(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('reg_number', sa.String(50), nullable=False),
        sa.Column('year', sa.String(10), nullable=False),
        sa.Column('section', sa.String(10), nullable=True),
        sa.Column('department', sa.String(20), nullable=False),
        sa.Column('parent_phone_number', sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_students_reg_number', 'students', ['reg_number'], unique=True)
    op.create_index('ix_students_department', 'students', ['department'])

    op.create_table(
        'examinations',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        *timestamps(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('year', sa.String(10), nullable=False),
        sa.Column('semester', sa.String(10), nullable=False),
        sa.Column('academic_year', sa.String(20), nullable=False),
        sa.Column('examination_month', sa.Integer(), nullable=False),
        sa.Column('examination_year', sa.Integer(), nullable=False),
        sa.Column('department', sa.String(20), nullable=False),
        sa.Column('staff_id', sa.BigInteger(), nullable=False),
        sa.Column('staff_name', sa.String(255), nullable=False),
        sa.Column('status', enum_type('examination_status'), nullable=False, server_default='ACTIVE'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['staff_id'], ['users.id'], ondelete='RESTRICT'),
    )
    op.create_index('ix_examinations_department', 'examinations', ['department'])
    op.create_index('ix_examinations_staff_id', 'examinations', ['staff_id'])
    op.create_index('ix_examinations_department_year', 'examinations', ['department', 'year'])

    op.create_table(
        'marksheets',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        *timestamps(),
        sa.Column('code', sa.String(32), nullable=False),
        sa.Column('document_token', sa.String(64), nullable=False),
        sa.Column('student_id', sa.BigInteger(), nullable=True),
        sa.Column('student_name', sa.String(255), nullable=False),
        sa.Column('reg_number', sa.String(50), nullable=False),
        sa.Column('department', sa.String(20), nullable=False),
        sa.Column('year', sa.String(10), nullable=False),
        sa.Column('section', sa.String(10), nullable=True),
        sa.Column('parent_phone_number', sa.String(50), nullable=True),
        sa.Column('examination_id', sa.BigInteger(), nullable=True),
        sa.Column('examination_name', sa.String(255), nullable=True),
        sa.Column('examination_date', sa.Date(), nullable=False),
        sa.Column('semester', sa.String(10), nullable=True),
        sa.Column('subjects', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('overall_result', sa.String(10), nullable=False, server_default='Pass'),
        sa.Column('staff_id', sa.BigInteger(), nullable=False),
        sa.Column('staff_name', sa.String(255), nullable=False),
        sa.Column('staff_signature', sa.Text(), nullable=True),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('hod_id', sa.BigInteger(), nullable=True),
        sa.Column('hod_name', sa.String(255), nullable=True),
        sa.Column('hod_signature', sa.Text(), nullable=True),
        sa.Column('status', enum_type('marksheet_status'), nullable=False, server_default='DRAFT'),
        sa.Column('request_status', enum_type('dispatch_request_status'), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('requested_by', sa.String(255), nullable=True),
        sa.Column('hod_response', enum_type('hod_response'), nullable=True),
        sa.Column('hod_comments', sa.Text(), nullable=True),
        sa.Column('scheduled_dispatch_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pre_dispatch_notification_sent', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('auto_dispatched', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('auto_dispatch_failed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('dispatch_error', sa.Text(), nullable=True),
        sa.Column('request_dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_dispatched', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('whatsapp_status', enum_type('whatsapp_status'), nullable=False, server_default='PENDING'),
        sa.Column('whatsapp_error', sa.Text(), nullable=True),
        sa.Column('whatsapp_message_sid', sa.String(64), nullable=True),
        sa.Column('visited', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('visited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['examination_id'], ['examinations.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['staff_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['hod_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_marksheets_code', 'marksheets', ['code'], unique=True)
    op.create_index('ix_marksheets_document_token', 'marksheets', ['document_token'], unique=True)
    op.create_index('ix_marksheets_examination_id', 'marksheets', ['examination_id'])
    op.create_index('ix_marksheets_student_id', 'marksheets', ['student_id'])
    op.create_index('ix_marksheets_reg_number', 'marksheets', ['reg_number'])
    op.create_index('ix_marksheets_staff_id', 'marksheets', ['staff_id'])
    op.create_index('ix_marksheets_status', 'marksheets', ['status'])
    op.create_index('ix_marksheets_staff_status', 'marksheets', ['staff_id', 'status'])
    op.create_index('ix_marksheets_department_status', 'marksheets', ['department', 'status'])
    op.create_index('ix_marksheets_request_schedule', 'marksheets', ['request_status', 'scheduled_dispatch_date'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('action_url', sa.Text(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])

    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        *timestamps(),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('endpoint', sa.Text(), nullable=False),
        sa.Column('p256dh', sa.Text(), nullable=False),
        sa.Column('auth', sa.Text(), nullable=False),
        sa.Column('status', enum_type('subscription_status'), nullable=False, server_default='ACTIVE'),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deactivated_reason', sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_push_subscriptions_user_id', 'push_subscriptions', ['user_id'])
    op.create_index('ix_push_subscriptions_endpoint', 'push_subscriptions', ['endpoint'])
    op.create_index('ix_push_subscriptions_status', 'push_subscriptions', ['status'])


def downgrade() -> None:
    """Drop the academics schema."""
    op.drop_table('push_subscriptions')
    op.drop_table('notifications')
    op.drop_table('marksheets')
    op.drop_table('examinations')
    op.drop_table('students')
    op.drop_table('users')

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
