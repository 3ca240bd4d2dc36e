"""create_vehicle_tables

Revision ID: 20261018_0900_vehicle_tables
Revises: None
Create Date: 2026-10-18 09:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261018_0900_vehicle_tables'
down_revision = None
branch_labels = None
depends_on = None

vehicle_category = sa.Enum('car', 'bike', 'van', name='vehicle_category')


def upgrade() -> None:
    """
    Create the vehicle_history cache table and the live vehicles table.
    """
    # Create vehicle_history table (one cache entry per VRM)
    op.create_table(
        'vehicle_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('vrm', sa.String(length=10), nullable=False),
        sa.Column('make', sa.String(length=100), nullable=True),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('fuel_type', sa.String(length=50), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('total_cost', sa.JSON(), nullable=True),
        sa.Column('checked_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('vrm')
    )
    op.create_index('ix_vehicle_history_vrm', 'vehicle_history', ['vrm'], unique=True)
    op.create_index('ix_vehicle_history_checked_at', 'vehicle_history', ['checked_at'])

    # Create vehicles table
    op.create_table(
        'vehicles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('registration_number', sa.String(length=10), nullable=False),
        sa.Column('category', vehicle_category, nullable=False),
        sa.Column('make', sa.String(length=100), nullable=True),
        sa.Column('model', sa.String(length=100), nullable=True),
        sa.Column('variant', sa.String(length=200), nullable=True),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('fuel_type', sa.String(length=50), nullable=True),
        sa.Column('transmission', sa.String(length=20), nullable=True),
        sa.Column('body_type', sa.String(length=50), nullable=True),
        sa.Column('doors', sa.Integer(), nullable=True),
        sa.Column('seats', sa.Integer(), nullable=True),
        sa.Column('engine_size', sa.Float(), nullable=True),
        sa.Column('urban_mpg', sa.Float(), nullable=True),
        sa.Column('extra_urban_mpg', sa.Float(), nullable=True),
        sa.Column('combined_mpg', sa.Float(), nullable=True),
        sa.Column('co2_emissions', sa.Integer(), nullable=True),
        sa.Column('insurance_group', sa.Integer(), nullable=True),
        sa.Column('annual_tax', sa.Float(), nullable=True),
        sa.Column('emission_class', sa.String(length=50), nullable=True),
        sa.Column('running_costs', sa.JSON(), nullable=True),
        sa.Column('power', sa.Integer(), nullable=True),
        sa.Column('torque', sa.Float(), nullable=True),
        sa.Column('acceleration', sa.Float(), nullable=True),
        sa.Column('top_speed', sa.Integer(), nullable=True),
        sa.Column('electric_range', sa.Integer(), nullable=True),
        sa.Column('battery_capacity', sa.Float(), nullable=True),
        sa.Column('charging_time', sa.Float(), nullable=True),
        sa.Column('home_charging_speed', sa.Float(), nullable=True),
        sa.Column('rapid_charging_speed', sa.Float(), nullable=True),
        sa.Column('electric_motor_power', sa.Float(), nullable=True),
        sa.Column('electric_motor_torque', sa.Float(), nullable=True),
        sa.Column('charging_port_type', sa.String(length=100), nullable=True),
        sa.Column('mot_status', sa.String(length=50), nullable=True),
        sa.Column('mot_due_date', sa.Date(), nullable=True),
        sa.Column('mot_history', sa.JSON(), nullable=True),
        sa.Column('previous_keepers', sa.Integer(), nullable=True),
        sa.Column('exported', sa.Boolean(), nullable=True),
        sa.Column('scrapped', sa.Boolean(), nullable=True),
        sa.Column('is_written_off', sa.Boolean(), nullable=True),
        sa.Column('write_off_category', sa.String(length=20), nullable=True),
        sa.Column('write_off_details', sa.JSON(), nullable=True),
        sa.Column('estimated_value', sa.Integer(), nullable=True),
        sa.Column('private_price', sa.Integer(), nullable=True),
        sa.Column('dealer_price', sa.Integer(), nullable=True),
        sa.Column('part_exchange_price', sa.Integer(), nullable=True),
        sa.Column('history_check_id', sa.Integer(), nullable=True),
        sa.Column('history_check_status', sa.String(length=20), nullable=True),
        sa.Column('history_check_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('data_completeness', sa.Integer(), nullable=True),
        sa.Column('needs_data_review', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['history_check_id'], ['vehicle_history.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_vehicles_registration_number', 'vehicles', ['registration_number'])
    op.create_index('ix_vehicles_needs_data_review', 'vehicles', ['needs_data_review'])


def downgrade() -> None:
    """
    Drop the vehicles and vehicle_history tables.
    """
    op.drop_index('ix_vehicles_needs_data_review', table_name='vehicles')
    op.drop_index('ix_vehicles_registration_number', table_name='vehicles')
    op.drop_table('vehicles')
    vehicle_category.drop(op.get_bind(), checkfirst=True)

    op.drop_index('ix_vehicle_history_checked_at', table_name='vehicle_history')
    op.drop_index('ix_vehicle_history_vrm', table_name='vehicle_history')
    op.drop_table('vehicle_history')
