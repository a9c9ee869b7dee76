"""Work-order platform schema

Revision ID: 001_work_orders
Revises: 
Create Date: 2026-10-18

Companies, users, buildings/spaces, occupants, entitlements, invitations,
issued tokens, tickets with status log and comments, jobs outbox, audit and
notification logs.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_work_orders'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    'user_role': ('platform_admin', 'company_admin', 'company_staff', 'resident'),
    'invitation_role': ('company_admin', 'company_staff'),
    'space_type': ('unit', 'common_area'),
    'common_area_type': (
        'boiler_room', 'pool', 'garage', 'roof', 'crawlspace', 'laundry', 'water_room', 'other',
    ),
    'occupant_type': ('homeowner', 'tenant'),
    'issue_type': (
        'active_leak', 'sewer_backup', 'drain_clog', 'water_heater', 'gas_smell',
        'toilet_faucet_shower', 'other_plumbing',
    ),
    'ticket_severity': ('emergency', 'urgent', 'standard'),
    'ticket_status': (
        'new', 'needs_info', 'scheduled', 'dispatched', 'on_site', 'in_progress',
        'waiting_approval', 'completed', 'invoiced', 'cancelled',
    ),
    'token_purpose': ('invitation', 'occupant_claim'),
    'token_state': ('issued', 'redeemed', 'superseded', 'expired'),
    'job_status': ('pending', 'processing', 'completed', 'failed', 'dead_letter'),
    'notification_channel': ('email', 'log'),
    'delivery_status': ('sent', 'failed'),
    'audit_action': (
        'invitation_sent', 'invitation_resent', 'invitation_accepted', 'invitation_deleted',
        'claim_issued', 'claim_resent', 'claim_redeemed',
        'entitlement_granted', 'entitlement_revoked',
        'status_override', 'notification_retried',
    ),
}


def enum(name: str) -> postgresql.ENUM:
    # Types are created once up front; tables only reference them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def uuid_pk() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True)


def fk(column: str, target: str, ondelete: str, nullable: bool = False, index: bool = True) -> sa.Column:
    return sa.Column(
        column,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
        index=index,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # === COMPANIES ===
    op.create_table(
        'companies',
        uuid_pk(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), unique=True, nullable=False, index=True),
        sa.Column('settings', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # === USERS ===
    op.create_table(
        'users',
        uuid_pk(),
        sa.Column('firebase_uid', sa.String(128), unique=True, nullable=False, index=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('role', enum('user_role'), nullable=False),
        fk('company_id', 'companies.id', 'RESTRICT', nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "role = 'platform_admin' OR company_id IS NOT NULL",
            name='ck_users_company_required',
        ),
    )

    # === BUILDINGS ===
    op.create_table(
        'buildings',
        uuid_pk(),
        fk('company_id', 'companies.id', 'RESTRICT'),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('address_line1', sa.String(255), nullable=False),
        sa.Column('address_line2', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=False),
        sa.Column('state', sa.String(2), nullable=False),
        sa.Column('zip', sa.String(10), nullable=False),
        sa.Column('gate_code', sa.String(50), nullable=True),
        sa.Column('water_shutoff_location', sa.Text(), nullable=True),
        sa.Column('gas_shutoff_location', sa.Text(), nullable=True),
        sa.Column('onsite_contact_name', sa.String(255), nullable=True),
        sa.Column('onsite_contact_phone', sa.String(20), nullable=True),
        sa.Column('access_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # === SPACES (units and common areas) ===
    op.create_table(
        'spaces',
        uuid_pk(),
        fk('building_id', 'buildings.id', 'RESTRICT'),
        sa.Column('space_type', enum('space_type'), nullable=False),
        sa.Column('unit_number', sa.String(20), nullable=True),
        sa.Column('common_area_type', enum('common_area_type'), nullable=True),
        sa.Column('floor', sa.Integer(), nullable=True),
        sa.Column('bedrooms', sa.Integer(), nullable=True),
        sa.Column('bathrooms', sa.Numeric(3, 1), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "(space_type = 'unit' AND unit_number IS NOT NULL AND common_area_type IS NULL)"
            " OR "
            "(space_type = 'common_area' AND common_area_type IS NOT NULL AND unit_number IS NULL)",
            name='ck_spaces_discriminator',
        ),
    )
    op.execute(
        'CREATE UNIQUE INDEX uq_spaces_building_unit_number '
        'ON spaces (building_id, lower(unit_number))'
    )

    # === OCCUPANTS ===
    op.create_table(
        'occupants',
        uuid_pk(),
        fk('space_id', 'spaces.id', 'RESTRICT'),
        fk('user_id', 'users.id', 'RESTRICT', nullable=True),
        sa.Column('occupant_type', enum('occupant_type'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('phone', sa.String(20), nullable=True),
        sa.Column('invite_sent_at', sa.DateTime(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # === BUILDING ENTITLEMENTS ===
    op.create_table(
        'building_entitlements',
        uuid_pk(),
        fk('user_id', 'users.id', 'CASCADE'),
        fk('building_id', 'buildings.id', 'CASCADE'),
        fk('granted_by_user_id', 'users.id', 'SET NULL', nullable=True, index=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'building_id', name='uq_building_entitlements_user_building'),
    )

    # === INVITATIONS ===
    op.create_table(
        'invitations',
        uuid_pk(),
        fk('company_id', 'companies.id', 'CASCADE'),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('role', enum('invitation_role'), nullable=False),
        fk('invited_by_user_id', 'users.id', 'SET NULL', nullable=True, index=False),
        fk('accepted_user_id', 'users.id', 'SET NULL', nullable=True, index=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    # === ISSUED TOKENS ===
    op.create_table(
        'issued_tokens',
        uuid_pk(),
        sa.Column('purpose', enum('token_purpose'), nullable=False),
        sa.Column('subject_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('token_hash', sa.String(64), unique=True, nullable=False),
        sa.Column('state', enum('token_state'), nullable=False, server_default='issued'),
        fk('issued_by_user_id', 'users.id', 'SET NULL', nullable=True, index=False),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(), nullable=True),
        sa.Column('superseded_at', sa.DateTime(), nullable=True),
    )
    # At most one live token per subject
    op.create_index(
        'uq_issued_tokens_live_subject',
        'issued_tokens',
        ['purpose', 'subject_id'],
        unique=True,
        postgresql_where=sa.text("state = 'issued'"),
    )

    # === TICKETS ===
    op.create_table(
        'tickets',
        uuid_pk(),
        sa.Column('ticket_number', sa.Integer(), unique=True, nullable=False),
        fk('building_id', 'buildings.id', 'RESTRICT'),
        fk('space_id', 'spaces.id', 'RESTRICT'),
        fk('created_by_user_id', 'users.id', 'RESTRICT'),
        sa.Column('issue_type', enum('issue_type'), nullable=False),
        sa.Column('severity', enum('ticket_severity'), nullable=False, server_default='standard'),
        sa.Column('status', enum('ticket_status'), nullable=False, server_default='new', index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('access_instructions', sa.Text(), nullable=True),
        sa.Column('scheduling_preference', postgresql.JSONB(), nullable=True),
        sa.Column('assigned_technician', sa.String(255), nullable=True),
        sa.Column('scheduled_date', sa.Date(), nullable=True),
        sa.Column('scheduled_time_window', sa.String(50), nullable=True),
        sa.Column('quote_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('invoice_number', sa.String(50), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tickets_building_status', 'tickets', ['building_id', 'status'])

    # === TICKET STATUS LOG (append-only) ===
    op.create_table(
        'ticket_status_log',
        uuid_pk(),
        fk('ticket_id', 'tickets.id', 'RESTRICT'),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('old_status', enum('ticket_status'), nullable=True),
        sa.Column('new_status', enum('ticket_status'), nullable=False),
        fk('changed_by_user_id', 'users.id', 'SET NULL', nullable=True, index=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_override', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('ticket_id', 'sequence', name='uq_ticket_status_log_sequence'),
    )

    # === TICKET COMMENTS ===
    op.create_table(
        'ticket_comments',
        uuid_pk(),
        fk('ticket_id', 'tickets.id', 'RESTRICT'),
        fk('user_id', 'users.id', 'RESTRICT', index=False),
        sa.Column('comment_text', sa.Text(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # === JOBS OUTBOX ===
    op.create_table(
        'jobs_outbox',
        uuid_pk(),
        sa.Column('type', sa.String(100), nullable=False, index=True),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', enum('job_status'), nullable=False, server_default='pending', index=True),
        sa.Column('unique_scope', sa.String(500), unique=True, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('run_after', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index(
        'ix_jobs_outbox_pending',
        'jobs_outbox',
        ['status', 'run_after'],
        postgresql_where=sa.text("status = 'pending'"),
    )

    # === AUDIT LOG ===
    op.create_table(
        'audit_log',
        uuid_pk(),
        fk('company_id', 'companies.id', 'SET NULL', nullable=True),
        fk('user_id', 'users.id', 'SET NULL', nullable=True),
        sa.Column('action', enum('audit_action'), nullable=False, index=True),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # === NOTIFICATION LOG ===
    op.create_table(
        'notification_log',
        uuid_pk(),
        fk('job_id', 'jobs_outbox.id', 'SET NULL', nullable=True),
        sa.Column('notification_type', sa.String(100), nullable=False),
        sa.Column('channel', enum('notification_channel'), nullable=False),
        sa.Column('recipient_email', sa.String(255), nullable=False),
        sa.Column('subject', sa.String(500), nullable=True),
        sa.Column('status', enum('delivery_status'), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('related_ticket_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('related_user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('notification_log')
    op.drop_table('audit_log')
    op.drop_index('ix_jobs_outbox_pending', table_name='jobs_outbox')
    op.drop_table('jobs_outbox')
    op.drop_table('ticket_comments')
    op.drop_table('ticket_status_log')
    op.drop_index('ix_tickets_building_status', table_name='tickets')
    op.drop_table('tickets')
    op.drop_index('uq_issued_tokens_live_subject', table_name='issued_tokens')
    op.drop_table('issued_tokens')
    op.drop_table('invitations')
    op.drop_table('building_entitlements')
    op.drop_table('occupants')
    op.execute('DROP INDEX IF EXISTS uq_spaces_building_unit_number')
    op.drop_table('spaces')
    op.drop_table('buildings')
    op.drop_table('users')
    op.drop_table('companies')

    for name in reversed(list(ENUMS)):
        op.execute(f'DROP TYPE IF EXISTS {name}')
