"""add word_generation_queue, sentence_words and scheduler columns

Revision ID: 8c4e2d6f1a93
Revises: 3f9a1c2b7d40
Create Date: 2026-09-20 18:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c4e2d6f1a93'
down_revision: Union[str, Sequence[str], None] = '3f9a1c2b7d40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add the generation queue, sentence links and extended word state.

    Existing sentences get a link to their owner word and every word's
    sentence_count is recomputed from the links.
    """
    with op.batch_alter_table('words') as batch_op:
        batch_op.add_column(sa.Column('difficulty', sa.Float(), nullable=True))
        batch_op.add_column(sa.Column('stability', sa.Float(), nullable=True))
        batch_op.add_column(sa.Column('lapses', sa.Integer(), nullable=False, server_default='0'))
        batch_op.add_column(sa.Column('last_rating', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('scheduler_version', sa.String(), nullable=True))
        batch_op.add_column(sa.Column('processing_status', sa.String(), nullable=False, server_default='ready'))
        batch_op.add_column(sa.Column('sentence_count', sa.Integer(), nullable=False, server_default='0'))

    op.create_table('sentence_words',
        sa.Column('sentence_id', sa.Integer(), nullable=False),
        sa.Column('word_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sentence_id'], ['sentences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['word_id'], ['words.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('sentence_id', 'word_id')
    )
    op.create_index('ix_sentence_words_word_id', 'sentence_words', ['word_id'])

    op.create_table('word_generation_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('word_id', sa.Integer(), nullable=False),
        sa.Column('language', sa.String(), nullable=False),
        sa.Column('topic', sa.String(), nullable=True),
        sa.Column('desired_sentence_count', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('status', sa.String(), nullable=False, server_default='queued'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['word_id'], ['words.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('word_id')
    )
    op.create_index('idx_word_generation_queue_status', 'word_generation_queue', ['status', 'updated_at'])

    op.execute(
        "INSERT OR IGNORE INTO sentence_words (sentence_id, word_id) "
        "SELECT id, word_id FROM sentences WHERE word_id IS NOT NULL"
    )
    op.execute(
        "UPDATE words SET sentence_count = "
        "(SELECT COUNT(*) FROM sentence_words WHERE sentence_words.word_id = words.id)"
    )


def downgrade() -> None:
    """Drop the generation queue, sentence links and extended word state."""
    op.drop_index('idx_word_generation_queue_status', table_name='word_generation_queue')
    op.drop_table('word_generation_queue')
    op.drop_index('ix_sentence_words_word_id', table_name='sentence_words')
    op.drop_table('sentence_words')
    with op.batch_alter_table('words') as batch_op:
        batch_op.drop_column('sentence_count')
        batch_op.drop_column('processing_status')
        batch_op.drop_column('scheduler_version')
        batch_op.drop_column('last_rating')
        batch_op.drop_column('lapses')
        batch_op.drop_column('stability')
        batch_op.drop_column('difficulty')
