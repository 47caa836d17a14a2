"""document store, store indexes and identity accounts

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = inspect(bind)
    tables = set(inspector.get_table_names())

    if 'documents' not in tables:
        op.create_table(
            'documents',
            sa.Column('seq', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('collection', sa.String(length=80), nullable=False),
            sa.Column('doc_id', sa.String(length=64), nullable=False),
            sa.Column('data', sa.JSON(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('updated_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint('collection', 'doc_id', name='uq_documents_collection_doc_id'),
        )
    if 'store_indexes' not in tables:
        op.create_table(
            'store_indexes',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('collection', sa.String(length=80), nullable=False),
            sa.Column('state', sa.String(length=20), nullable=False, server_default='building'),
            sa.Column('build_started_at', sa.DateTime(), nullable=True),
            sa.Column('ready_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint('name', name='uq_store_indexes_name'),
        )
    if 'identity_accounts' not in tables:
        op.create_table(
            'identity_accounts',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('uid', sa.String(length=64), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
            sa.Column('created_at', sa.DateTime(), nullable=True),
            sa.Column('last_login_at', sa.DateTime(), nullable=True),
        )

    inspector = inspect(bind)
    document_indexes = {idx['name'] for idx in inspector.get_indexes('documents')}
    if 'ix_documents_collection_seq' not in document_indexes:
        op.create_index('ix_documents_collection_seq', 'documents', ['collection', 'seq'])
    if 'ix_documents_collection' not in document_indexes:
        op.create_index('ix_documents_collection', 'documents', ['collection'])
    if 'ix_documents_doc_id' not in document_indexes:
        op.create_index('ix_documents_doc_id', 'documents', ['doc_id'])

    store_index_indexes = {idx['name'] for idx in inspector.get_indexes('store_indexes')}
    if 'ix_store_indexes_id' not in store_index_indexes:
        op.create_index('ix_store_indexes_id', 'store_indexes', ['id'])
    if 'ix_store_indexes_name' not in store_index_indexes:
        op.create_index('ix_store_indexes_name', 'store_indexes', ['name'])
    if 'ix_store_indexes_collection' not in store_index_indexes:
        op.create_index('ix_store_indexes_collection', 'store_indexes', ['collection'])
    if 'ix_store_indexes_state' not in store_index_indexes:
        op.create_index('ix_store_indexes_state', 'store_indexes', ['state'])

    account_indexes = {idx['name'] for idx in inspector.get_indexes('identity_accounts')}
    if 'ix_identity_accounts_id' not in account_indexes:
        op.create_index('ix_identity_accounts_id', 'identity_accounts', ['id'])
    if 'ix_identity_accounts_uid' not in account_indexes:
        op.create_index('ix_identity_accounts_uid', 'identity_accounts', ['uid'], unique=True)
    if 'ix_identity_accounts_email' not in account_indexes:
        op.create_index('ix_identity_accounts_email', 'identity_accounts', ['email'], unique=True)


def downgrade() -> None:
    bind = op.get_bind()
    tables = set(inspect(bind).get_table_names())
    for table in ('identity_accounts', 'store_indexes', 'documents'):
        if table in tables:
            op.drop_table(table)
