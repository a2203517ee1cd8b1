
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('name_folded', sa.Text(), nullable=False),
        sa.Column('phone', sa.String(length=11), nullable=False),
        sa.Column('discount', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_clients_name_folded', 'clients', ['name_folded'])

    op.create_table(
        'tables',
        sa.Column('numeral', sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('occupied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('vip', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('exclusive_view', sa.Boolean(), nullable=True),
    )

    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_id', sa.Integer(), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('table_numeral', sa.Integer(), sa.ForeignKey('tables.numeral'), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('table_numeral', 'timestamp', name='uq_reservation_slot'),
    )
    op.create_index('ix_reservations_client_id', 'reservations', ['client_id'])
    op.create_index('ix_reservations_timestamp', 'reservations', ['timestamp'])

def downgrade():
    op.drop_index('ix_reservations_timestamp', table_name='reservations')
    op.drop_index('ix_reservations_client_id', table_name='reservations')
    op.drop_table('reservations')
    op.drop_table('tables')
    op.drop_index('ix_clients_name_folded', table_name='clients')
    op.drop_table('clients')
