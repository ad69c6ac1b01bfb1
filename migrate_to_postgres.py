#!/usr/bin/env python3
"""
Copy the local JSON store (event + allocation sessions) into PostgreSQL.
"""
import json
import os
import psycopg2

from kart_manager import datastore_json
from kart_manager.datastore_pg import EVENT_DOC_ID, SCHEMA_SQL


def create_tables(conn):
    """Create the database schema"""
    with conn.cursor() as cur:
        for stmt in SCHEMA_SQL:
            cur.execute(stmt)
    conn.commit()
    print("Database schema created successfully")


def migrate_event(conn, data):
    """Migrate the active event document, replacing any stored one"""
    state = data.get('event')
    with conn.cursor() as cur:
        cur.execute("DELETE FROM events WHERE id = %s", (EVENT_DOC_ID,))
        if state:
            cur.execute(
                "INSERT INTO events (id, state, updated_at) VALUES (%s, %s, now())",
                (EVENT_DOC_ID, json.dumps(state)),
            )
    conn.commit()
    if state:
        print(f"Migrated event in round '{state.get('current_round')}' with {len(state.get('drivers') or [])} drivers")
    else:
        print("No active event to migrate")


def migrate_sessions(conn, data):
    """Migrate kart allocation sessions"""
    sessions = data.get('sessions') or []
    with conn.cursor() as cur:
        for session in sessions:
            cur.execute(
                """
                INSERT INTO kart_sessions (id, data, created_at)
                VALUES (%s, %s, COALESCE(%s::timestamptz, now()))
                ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
                """,
                (session.get('id'), json.dumps(session), session.get('created_at')),
            )
    conn.commit()
    print(f"Migrated {len(sessions)} sessions")


def main():
    """Main migration function"""
    database_url = os.environ.get('DATABASE_URL')
    if not database_url:
        print("ERROR: DATABASE_URL environment variable not set")
        return

    path = datastore_json.store_path()
    print(f"Loading data from {path}...")
    data = datastore_json.load_data()

    conn = None
    try:
        conn = psycopg2.connect(database_url)
        print("Connected to PostgreSQL database")

        create_tables(conn)
        migrate_event(conn, data)
        migrate_sessions(conn, data)

        print("\nMigration completed successfully!")

        with conn.cursor() as cur:
            cur.execute("SELECT COUNT(*) FROM events")
            event_count = cur.fetchone()[0]
            cur.execute("SELECT COUNT(*) FROM kart_sessions")
            session_count = cur.fetchone()[0]
        print("\nSummary:")
        print(f"- {event_count} active event")
        print(f"- {session_count} sessions")
    except psycopg2.Error as e:
        print(f"Error during migration: {e}")
    finally:
        if conn is not None:
            conn.close()


if __name__ == "__main__":
    main()
