"""create users, patients, audit_log, payroll_entries, therapy_sessions,
session_counters

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19

Esquema inicial: planilla de pagos del personal y sesiones de kinesiología
"""
from typing import Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = 'a1c2e3f4b5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, None] = None
depends_on: Union[str, None] = None


def upgrade() -> None:
    # 1. Crear enums
    op.execute("CREATE TYPE userrole AS ENUM ('admin', 'employee', 'user')")
    op.execute(
        "CREATE TYPE weekday AS ENUM ('domingo', 'lunes', 'martes', 'miercoles', "
        "'jueves', 'viernes', 'sabado')"
    )
    op.execute(
        "CREATE TYPE payrollstatus AS ENUM ('pending', 'processing', 'paid', 'cancelled')"
    )
    op.execute(
        "CREATE TYPE sessiontype AS ENUM ('in_person', 'home_visit', 'virtual', "
        "'evaluation', 'follow_up')"
    )
    op.execute(
        "CREATE TYPE paymentmethod AS ENUM ('cash', 'transfer', 'card', 'insurance', 'pending')"
    )
    op.execute(
        "CREATE TYPE sessionstatus AS ENUM ('scheduled', 'completed', 'cancelled', "
        "'no_show', 'rescheduled')"
    )

    # 2. users
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role',
                  postgresql.ENUM('admin', 'employee', 'user', name='userrole', create_type=False),
                  nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # 3. patients
    op.create_table(
        'patients',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('dni', sa.String(15), nullable=False),
        sa.Column('first_name', sa.String(50), nullable=False),
        sa.Column('last_name', sa.String(50), nullable=False),
        sa.Column('phone', sa.String(30)),
        sa.Column('insurance_name', sa.String(100), comment='Obra social / cobertura'),
        sa.Column('planned_sessions', sa.Integer,
                  comment='Sesiones indicadas en el plan de tratamiento'),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('total_sessions', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_paid', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('pending_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('last_session_date', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_patients_dni', 'patients', ['dni'], unique=True)

    # 4. audit_log
    op.create_table(
        'audit_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id')),
        sa.Column('entity', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('old_data', postgresql.JSONB),
        sa.Column('new_data', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])
    op.create_index('ix_audit_log_entity', 'audit_log', ['entity'])
    op.create_index('ix_audit_log_action', 'audit_log', ['action'])

    # 5. payroll_entries
    op.create_table(
        'payroll_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('year', sa.SmallInteger, nullable=False),
        sa.Column('month', sa.SmallInteger, nullable=False),
        sa.Column('week_of_month', sa.SmallInteger, nullable=False,
                  comment='Bucket fijo de 7 días desde el 1 del mes (1-5)'),
        sa.Column('weekday',
                  postgresql.ENUM(name='weekday', create_type=False),
                  nullable=False),
        sa.Column('entry_date', sa.Date, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('share_a', sa.Numeric(12, 2), nullable=False, comment='30% del total'),
        sa.Column('share_b', sa.Numeric(12, 2), nullable=False, comment='20% del total'),
        sa.Column('share_c', sa.Numeric(12, 2), nullable=False,
                  comment='50% del total, absorbe el remanente del redondeo'),
        sa.Column('notes', sa.String(500)),
        sa.Column('status',
                  postgresql.ENUM(name='payrollstatus', create_type=False),
                  nullable=False),
        sa.Column('created_by', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('modified_by', UUID(as_uuid=True), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('year', 'month', 'week_of_month', 'entry_date',
                            name='uq_payroll_entry_period_date'),
    )
    op.create_index('ix_payroll_entries_entry_date', 'payroll_entries', ['entry_date'])
    op.create_index('idx_payroll_entry_year_month', 'payroll_entries', ['year', 'month'])
    op.create_index('idx_payroll_entry_status_date', 'payroll_entries', ['status', 'entry_date'])

    # 6. therapy_sessions
    op.create_table(
        'therapy_sessions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('patient_id', UUID(as_uuid=True), sa.ForeignKey('patients.id'), nullable=False),
        sa.Column('professional_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('session_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('session_type',
                  postgresql.ENUM(name='sessiontype', create_type=False),
                  nullable=False),
        sa.Column('entry_time', sa.String(5), comment='HH:MM'),
        sa.Column('exit_time', sa.String(5), comment='HH:MM'),
        sa.Column('duration_minutes', sa.Integer, nullable=False, server_default='0'),
        sa.Column('daily_order_number', sa.Integer, nullable=False,
                  comment='Orden de atención dentro del día'),
        sa.Column('session_number', sa.Integer, nullable=False,
                  comment='N-ésima sesión del paciente'),
        sa.Column('treatment', postgresql.JSONB),
        sa.Column('evolution', postgresql.JSONB),
        sa.Column('notes', sa.String(1000)),
        sa.Column('indications', sa.String(500)),
        sa.Column('payment_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payment_method',
                  postgresql.ENUM(name='paymentmethod', create_type=False),
                  nullable=False),
        sa.Column('is_paid', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('receipt', postgresql.JSONB),
        sa.Column('status',
                  postgresql.ENUM(name='sessionstatus', create_type=False),
                  nullable=False),
        sa.Column('cancellation_reason', sa.String(500)),
        sa.Column('rescheduled_to_date', sa.DateTime(timezone=True)),
        sa.Column('rescheduled_to_id', UUID(as_uuid=True), sa.ForeignKey('therapy_sessions.id')),
        sa.Column('modified_by', UUID(as_uuid=True), sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_session_patient_date', 'therapy_sessions', ['patient_id', 'session_date'])
    op.create_index('idx_session_date_order', 'therapy_sessions',
                    ['session_date', 'daily_order_number'])
    op.create_index('idx_session_status_date', 'therapy_sessions', ['status', 'session_date'])
    op.create_index('idx_session_paid', 'therapy_sessions', ['is_paid'])
    op.create_index('idx_session_professional_date', 'therapy_sessions',
                    ['professional_id', 'session_date'])

    # 7. session_counters (filas de bloqueo para numerar sesiones)
    op.create_table(
        'session_counters',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('scope', sa.String(20), nullable=False,
                  comment='daily_order o patient_sequence'),
        sa.Column('key', sa.String(36), nullable=False),
        sa.Column('last_number', sa.Integer, nullable=False, server_default='0'),
        sa.UniqueConstraint('scope', 'key', name='uq_session_counter_scope_key'),
    )


def downgrade() -> None:
    op.drop_table('session_counters')
    op.drop_table('therapy_sessions')
    op.drop_table('payroll_entries')
    op.drop_table('audit_log')
    op.drop_table('patients')
    op.drop_table('users')
    op.execute("DROP TYPE IF EXISTS sessionstatus")
    op.execute("DROP TYPE IF EXISTS paymentmethod")
    op.execute("DROP TYPE IF EXISTS sessiontype")
    op.execute("DROP TYPE IF EXISTS payrollstatus")
    op.execute("DROP TYPE IF EXISTS weekday")
    op.execute("DROP TYPE IF EXISTS userrole")
