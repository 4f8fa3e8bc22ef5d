from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


engine = create_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_operating_hours_schema_checked = False


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('practitioner_id', 'ALTER TABLE appointments ADD COLUMN practitioner_id INTEGER'),
            ('duration_minutes', 'ALTER TABLE appointments ADD COLUMN duration_minutes INTEGER'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR(1000)'),
            ('emergency', 'ALTER TABLE appointments ADD COLUMN emergency BOOLEAN DEFAULT FALSE'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_practitioner_day '
                     'ON appointments(practitioner_id, date, status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_clinic_day ON appointments(clinic_id, date, status)')
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_practitioner_slot '
                    'ON appointments(practitioner_id, date, time_slot) '
                    "WHERE status NOT IN ('cancelled', 'no-show')"
                )
            )

        _appointment_schema_checked = True


def ensure_operating_hours_schema() -> None:
    global _operating_hours_schema_checked

    if _operating_hours_schema_checked:
        return

    with _schema_lock:
        if _operating_hours_schema_checked:
            return

        inspector = inspect(engine)

        if 'operating_hours' not in inspector.get_table_names():
            _operating_hours_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('operating_hours')}

        with engine.begin() as connection:
            if 'is_closed' not in existing_columns:
                connection.execute(text('ALTER TABLE operating_hours ADD COLUMN is_closed BOOLEAN DEFAULT FALSE'))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_operating_hours_clinic_day ON operating_hours(clinic_id, weekday)')
            )

        _operating_hours_schema_checked = True
