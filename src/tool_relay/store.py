# store.py
# The shared SQLite handle behind the query_database capability.
#
# Opened once per host process and injected into the handler. Autocommit
# mode: every statement is its own transaction, scripts are non-atomic.

import os
import sqlite3

_BOOKS = [
    ("To Kill a Mockingbird", "Harper Lee", 1960, "Fiction"),
    ("1984", "George Orwell", 1949, "Dystopian"),
    ("The Great Gatsby", "F. Scott Fitzgerald", 1925, "Fiction"),
    ("Neuromancer", "William Gibson", 1984, "Science Fiction"),
    ("The Hobbit", "J.R.R. Tolkien", 1937, "Fantasy"),
    ("Pride and Prejudice", "Jane Austen", 1813, "Romance"),
    ("The Left Hand of Darkness", "Ursula K. Le Guin", 1969, "Science Fiction"),
    ("Brave New World", "Aldous Huxley", 1932, "Dystopian"),
]

_USERS = [
    ("Alice Johnson", "alice@example.com", "Science Fiction"),
    ("Bob Smith", "bob@example.com", "Fiction"),
    ("Carol Williams", "carol@example.com", "Fantasy"),
    ("Dave Brown", "dave@example.com", "Dystopian"),
    ("Eve Davis", "eve@example.com", "Romance"),
]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT NOT NULL,
    year INTEGER,
    genre TEXT
);
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    favorite_genre TEXT
);
"""


def seed(conn: sqlite3.Connection) -> None:
    """Create the demo tables and fill them, only when they are empty."""
    conn.executescript(_SCHEMA)

    if conn.execute("SELECT COUNT(*) FROM books").fetchone()[0] == 0:
        with conn:
            conn.executemany(
                "INSERT INTO books (title, author, year, genre) VALUES (?, ?, ?, ?)", _BOOKS
            )

    if conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 0:
        with conn:
            conn.executemany(
                "INSERT INTO users (name, email, favorite_genre) VALUES (?, ?, ?)", _USERS
            )


def open_store(path: str) -> sqlite3.Connection:
    """Open (creating if needed) and seed the store at `path`. ':memory:' works."""
    if path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    conn = sqlite3.connect(path, isolation_level=None)
    conn.execute("PRAGMA journal_mode = WAL")
    seed(conn)
    return conn
