from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "manual_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "manual_item_tags",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("manual_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tag", sa.String(), nullable=False),
    )
    op.create_index("ix_manual_item_tags_tag", "manual_item_tags", ["tag"], unique=False)
    op.create_index("ux_manual_item_tags_item_tag", "manual_item_tags", ["item_id", "tag"], unique=True)

def downgrade():
    op.drop_index("ux_manual_item_tags_item_tag", table_name="manual_item_tags")
    op.drop_index("ix_manual_item_tags_tag", table_name="manual_item_tags")
    op.drop_table("manual_item_tags")
    op.drop_table("manual_items")
