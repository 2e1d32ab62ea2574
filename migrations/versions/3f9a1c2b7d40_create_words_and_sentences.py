"""create words, sentences and settings tables

Revision ID: 3f9a1c2b7d40
Revises:
Create Date: 2026-09-02 10:15:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the base vocabulary schema."""
    op.create_table('words',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('word', sa.String(), nullable=False),
        sa.Column('language', sa.String(), nullable=False, server_default='spanish'),
        sa.Column('translation', sa.Text(), nullable=False, server_default=''),
        sa.Column('audio_path', sa.String(), nullable=True),
        sa.Column('strength', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('known', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('ignored', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('last_studied', sa.DateTime(), nullable=True),
        sa.Column('interval_days', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('ease_factor', sa.Float(), nullable=False, server_default='2.5'),
        sa.Column('last_review', sa.DateTime(), nullable=True),
        sa.Column('next_due', sa.DateTime(), nullable=False, server_default=sa.text("(datetime('now', '+1 day'))")),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_words_known_ignored', 'words', ['known', 'ignored'])
    op.create_index('idx_words_srs_review', 'words', ['next_due', 'strength'])

    op.create_table('sentences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('word_id', sa.Integer(), nullable=True),
        sa.Column('sentence', sa.Text(), nullable=False),
        sa.Column('translation', sa.Text(), nullable=False),
        sa.Column('audio_path', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('last_shown', sa.DateTime(), nullable=True),
        sa.Column('context_before', sa.Text(), nullable=True),
        sa.Column('context_after', sa.Text(), nullable=True),
        sa.Column('context_before_translation', sa.Text(), nullable=True),
        sa.Column('context_after_translation', sa.Text(), nullable=True),
        sa.Column('sentence_parts', sa.Text(), nullable=True),
        sa.Column('sentence_generation_model', sa.String(), nullable=True),
        sa.ForeignKeyConstraint(['word_id'], ['words.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sentences_word_id', 'sentences', ['word_id'])

    op.create_table('settings',
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade() -> None:
    """Drop the base vocabulary schema."""
    op.drop_table('settings')
    op.drop_index('ix_sentences_word_id', table_name='sentences')
    op.drop_table('sentences')
    op.drop_index('idx_words_srs_review', table_name='words')
    op.drop_index('idx_words_known_ignored', table_name='words')
    op.drop_table('words')
