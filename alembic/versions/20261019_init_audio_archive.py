"""Initial table for audio_archive service"""

import sqlalchemy as sa

from alembic import op

revision = '20261019_init_audio_archive'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'audio_files',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=False),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('uploaded_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audio_files_uploaded_by', 'audio_files', ['uploaded_by'])
    op.create_index('ix_audio_files_created_at', 'audio_files', ['created_at'])

def downgrade() -> None:
    op.drop_index('ix_audio_files_created_at', table_name='audio_files')
    op.drop_index('ix_audio_files_uploaded_by', table_name='audio_files')
    op.drop_table('audio_files')
