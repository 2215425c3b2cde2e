"""Portal core schema: tenants, relationships, sessions, cases, payments, invoices, RLS

Revision ID: 001_portal_core_schema
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_portal_core_schema'
down_revision = None

# Tables whose rows belong to one side of a relationship
_FACET_OWNED = {
    'cases': ('client_id', 'vendor_id'),
    'payments': ('from_id', 'to_id'),
    'invoices': ('client_id', 'vendor_id'),
}


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'tenants',
        sa.Column('tenant_id', sa.String(32), primary_key=True),
        sa.Column('tenant_client_id', sa.String(32), nullable=False, unique=True, index=True),
        sa.Column('tenant_vendor_id', sa.String(32), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='active', index=True),
        *_timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('user_id', sa.String(32), primary_key=True),
        sa.Column('tenant_id', sa.String(32), sa.ForeignKey('tenants.tenant_id'), nullable=False, index=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('password_hash', sa.Text(), nullable=True),
        sa.Column('auth_user_id', sa.String(64), nullable=True, unique=True, index=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('role', sa.String(32), nullable=False, server_default='member'),
        sa.Column('status', sa.String(32), nullable=False, server_default='active', index=True),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default='false'),
        *_timestamps(),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'tenant_relationships',
        sa.Column('relationship_id', sa.String(32), primary_key=True),
        sa.Column('client_id', sa.String(32), sa.ForeignKey('tenants.tenant_client_id'), nullable=False, index=True),
        sa.Column('vendor_id', sa.String(32), sa.ForeignKey('tenants.tenant_vendor_id'), nullable=False, index=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending', index=True),
        sa.Column('invite_token', sa.String(64), nullable=True),
        *_timestamps(),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('terminated_at', sa.DateTime(), nullable=True),
    )
    # At most one active edge per (client, vendor); history rows may repeat
    op.create_index(
        'uq_relationship_active_pair',
        'tenant_relationships',
        ['client_id', 'vendor_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        'relationship_invites',
        sa.Column('token', sa.String(64), primary_key=True),
        sa.Column('inviting_tenant_id', sa.String(32), sa.ForeignKey('tenants.tenant_id'), nullable=False, index=True),
        sa.Column('inviting_client_id', sa.String(32), nullable=False),
        sa.Column('invitee_email', sa.String(255), nullable=False, index=True),
        sa.Column('invitee_name', sa.String(255), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending', index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('expires_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('accepted_by_tenant_id', sa.String(32), nullable=True),
        sa.Column('accepted_by_vendor_id', sa.String(32), nullable=True),
    )

    op.create_table(
        'portal_sessions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(32), sa.ForeignKey('users.user_id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('tenant_id', sa.String(32), sa.ForeignKey('tenants.tenant_id'), nullable=False, index=True),
        sa.Column('active_context', sa.String(16), nullable=True),
        sa.Column('active_context_id', sa.String(32), nullable=True),
        sa.Column('active_counterparty', sa.String(32), nullable=True),
        sa.Column('auth_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('auth_expires_at', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('expires_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('last_active_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'cases',
        sa.Column('case_id', sa.String(32), primary_key=True),
        sa.Column('client_id', sa.String(32), nullable=False, index=True),
        sa.Column('vendor_id', sa.String(32), nullable=False, index=True),
        sa.Column('relationship_id', sa.String(32), sa.ForeignKey('tenant_relationships.relationship_id'), nullable=True),
        sa.Column('subject', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('case_type', sa.String(32), nullable=False, server_default='general'),
        sa.Column('priority', sa.String(32), nullable=False, server_default='normal', index=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='open', index=True),
        sa.Column('created_by_user_id', sa.String(32), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.String(32), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('closed_by', sa.String(32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp(), index=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'case_timeline_entries',
        sa.Column('message_id', sa.String(32), primary_key=True),
        sa.Column('case_id', sa.String(32), sa.ForeignKey('cases.case_id'), nullable=False, index=True),
        sa.Column('sender_user_id', sa.String(32), nullable=False),
        sa.Column('sender_tenant_id', sa.String(32), nullable=False),
        sa.Column('sender_context', sa.String(16), nullable=False),
        sa.Column('sender_context_id', sa.String(32), nullable=True),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(32), nullable=False, server_default='message'),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp(), index=True),
    )

    op.create_table(
        'case_evidence',
        sa.Column('evidence_id', sa.String(32), primary_key=True),
        sa.Column('case_id', sa.String(32), sa.ForeignKey('cases.case_id'), nullable=False, index=True),
        sa.Column('uploader_user_id', sa.String(32), nullable=False),
        sa.Column('uploader_tenant_id', sa.String(32), nullable=False),
        sa.Column('uploader_context', sa.String(16), nullable=False),
        sa.Column('original_filename', sa.String(255), nullable=False),
        sa.Column('file_type', sa.String(255), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False),
        sa.Column('storage_path', sa.String(500), nullable=False, unique=True),
        sa.Column('evidence_type', sa.String(32), nullable=False, server_default='document'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'payments',
        sa.Column('payment_id', sa.String(32), primary_key=True),
        sa.Column('from_id', sa.String(32), nullable=False, index=True),
        sa.Column('to_id', sa.String(32), nullable=False, index=True),
        sa.Column('relationship_id', sa.String(32), nullable=True),
        sa.Column('case_id', sa.String(32), nullable=True),
        sa.Column('invoice_id', sa.String(32), nullable=True),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending', index=True),
        *_timestamps(),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'invoices',
        sa.Column('invoice_id', sa.String(32), primary_key=True),
        sa.Column('vendor_id', sa.String(32), nullable=False, index=True),
        sa.Column('client_id', sa.String(32), nullable=False, index=True),
        sa.Column('relationship_id', sa.String(32), nullable=True),
        sa.Column('invoice_number', sa.String(100), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False, index=True),
        sa.Column('total_amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(32), nullable=False, server_default='draft', index=True),
        sa.Column('case_id', sa.String(32), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
    )

    # Row Level Security, keyed on the portal claims the session synchronizer
    # writes into the provider's app_metadata
    op.execute("""
        CREATE OR REPLACE FUNCTION portal_tenant_id() RETURNS text
        LANGUAGE sql STABLE AS $$
            SELECT nullif(
                current_setting('request.jwt.claims', true)::jsonb
                    -> 'app_metadata' ->> 'portal_tenant_id',
                ''
            )
        $$;
    """)

    for table, (client_col, vendor_col) in _FACET_OWNED.items():
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')
        op.execute(f"""
            CREATE POLICY {table}_party_access ON {table}
            FOR ALL
            USING (EXISTS (
                SELECT 1 FROM tenants t
                WHERE t.tenant_id = portal_tenant_id()
                  AND (t.tenant_client_id = {table}.{client_col} OR t.tenant_vendor_id = {table}.{vendor_col})
            ));
        """)

    for table in ('case_timeline_entries', 'case_evidence'):
        op.execute(f'ALTER TABLE {table} ENABLE ROW LEVEL SECURITY')
        op.execute(f"""
            CREATE POLICY {table}_party_access ON {table}
            FOR ALL
            USING (EXISTS (
                SELECT 1 FROM cases c JOIN tenants t ON t.tenant_id = portal_tenant_id()
                WHERE c.case_id = {table}.case_id
                  AND (t.tenant_client_id = c.client_id OR t.tenant_vendor_id = c.vendor_id)
            ));
        """)

    # Timeline rows are append-only for database roles too
    op.execute("""
        CREATE POLICY case_timeline_entries_no_update ON case_timeline_entries
        AS RESTRICTIVE FOR UPDATE USING (false);
    """)
    op.execute("""
        CREATE POLICY case_timeline_entries_no_delete ON case_timeline_entries
        AS RESTRICTIVE FOR DELETE USING (false);
    """)

    op.execute('ALTER TABLE tenant_relationships ENABLE ROW LEVEL SECURITY')
    op.execute("""
        CREATE POLICY tenant_relationships_party_access ON tenant_relationships
        FOR SELECT
        USING (EXISTS (
            SELECT 1 FROM tenants t
            WHERE t.tenant_id = portal_tenant_id()
              AND (t.tenant_client_id = tenant_relationships.client_id
                   OR t.tenant_vendor_id = tenant_relationships.vendor_id)
        ));
    """)


def downgrade():
    op.execute('DROP POLICY IF EXISTS tenant_relationships_party_access ON tenant_relationships')
    op.execute('DROP POLICY IF EXISTS case_timeline_entries_no_delete ON case_timeline_entries')
    op.execute('DROP POLICY IF EXISTS case_timeline_entries_no_update ON case_timeline_entries')
    for table in ('case_timeline_entries', 'case_evidence', *_FACET_OWNED):
        op.execute(f'DROP POLICY IF EXISTS {table}_party_access ON {table}')
    op.execute('DROP FUNCTION IF EXISTS portal_tenant_id()')

    op.drop_table('invoices')
    op.drop_table('payments')
    op.drop_table('case_evidence')
    op.drop_table('case_timeline_entries')
    op.drop_table('cases')
    op.drop_table('portal_sessions')
    op.drop_table('relationship_invites')
    op.drop_index('uq_relationship_active_pair', 'tenant_relationships')
    op.drop_table('tenant_relationships')
    op.drop_table('users')
    op.drop_table('tenants')
