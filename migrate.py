"""
Bring an existing calendar database up to the current schema.
Run:  python migrate.py

What it does (idempotent):
- Create any missing tables (task, calendar_event, goal, reminder, time_block,
  recurrence_rule, recurrence_exception, job_lock)
- Add columns introduced after the first release to task and calendar_event
- Normalize legacy task status done -> completed
"""
from app import app, db

LATER_COLUMNS = {
    'task': [
        ('estimated_minutes', 'INTEGER'),
        ('rollover_enabled', 'BOOLEAN DEFAULT 1'),
        ('is_auto_rolled', 'BOOLEAN DEFAULT 0'),
        ('rolled_from', 'DATETIME'),
        ('recurrence_id', 'INTEGER'),
    ],
    'calendar_event': [
        ('project', 'VARCHAR(100)'),
        ('all_day', 'BOOLEAN DEFAULT 0'),
        ('color', 'VARCHAR(20)'),
        ('recurrence_id', 'INTEGER'),
    ],
}


def ensure_columns(conn, table, columns):
    existing = {row[1] for row in conn.execute(db.text(f"PRAGMA table_info({table})"))}
    for column, col_type in columns:
        if column in existing:
            print(f"[skip] {table}.{column} exists")
            continue
        conn.execute(db.text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
        print(f"[add] {table}.{column}")


def main():
    with app.app_context():
        db.create_all()
        with db.engine.begin() as conn:
            for table, columns in LATER_COLUMNS.items():
                ensure_columns(conn, table, columns)
            conn.execute(db.text("UPDATE task SET status='completed' WHERE status='done'"))
            print("[update] normalized task status done -> completed")
        print("Migration complete.")


if __name__ == '__main__':
    main()
