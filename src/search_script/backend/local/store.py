"""SQLite + FTS5 storage for one index.

Each index is a single database file. WAL mode lets the indexer write while
script workers and protocol server connections read.
"""

import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from search_script.backend.local.language import TOKENIZER_NAME
from search_script.logger import logging

logger = logging.getLogger(__name__)

INDEX_FILE_SUFFIX = ".db"

# Searchable columns of the full text table, in column order
SEARCH_FIELDS = ("title", "text")

SCHEMA_VERSION = "1"


@dataclass
class StoredItem:
    item_name: str
    mime_type: str
    length: int
    url: str | None = None


@dataclass
class StoredDocument:
    id: int
    document_key: str
    title: str
    language_code: str | None
    rank: int
    term_count: int
    ansi_date: int


@dataclass
class StoredHit:
    document: StoredDocument
    score: float  # bm25, lower is better


@dataclass
class VocabularyEntry:
    term: str
    document_count: int
    count: int


class IndexStore:
    """One index database: documents, their items and the full text table."""

    connection: sqlite3.Connection
    database_path: Path

    def __init__(self, database_path: Path):
        self.database_path = database_path
        self.connection = sqlite3.connect(database_path, check_same_thread=False)

        # Enable WAL mode for concurrent access
        self.connection.execute("PRAGMA journal_mode=WAL")
        self.connection.execute("PRAGMA synchronous=NORMAL")
        self.connection.execute("PRAGMA busy_timeout=5000")
        self.connection.execute("PRAGMA foreign_keys=ON")

        self.initialize()

    @property
    def name(self) -> str:
        return self.database_path.stem

    def _table_exists(self, table_name: str) -> bool:
        """Check if a table exists in the database."""
        result = self.connection.execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE name=?",
            (table_name,),
        ).fetchone()
        return result[0] > 0

    def initialize(self):
        """Create the tables of a fresh index, leave an existing one alone."""
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_key TEXT NOT NULL UNIQUE,
                title TEXT NOT NULL,
                language_code TEXT,
                rank INTEGER NOT NULL DEFAULT 0,
                term_count INTEGER NOT NULL DEFAULT 0,
                ansi_date INTEGER NOT NULL DEFAULT 0,
                content_hash TEXT
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS items (
                document_id INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
                item_name TEXT NOT NULL,
                mime_type TEXT NOT NULL,
                url TEXT,
                data BLOB NOT NULL,
                PRIMARY KEY (document_id, item_name, mime_type)
            )
        """)

        if not self._table_exists("documents_fts"):
            self.connection.execute(f"""
                CREATE VIRTUAL TABLE documents_fts USING fts5(
                    {", ".join(SEARCH_FIELDS)},
                    tokenize = '{TOKENIZER_NAME} remove_diacritics 0'
                )
            """)

        # Term statistics straight from the full text index
        self.connection.execute(
            "CREATE VIRTUAL TABLE IF NOT EXISTS documents_vocab_row USING fts5vocab(documents_fts, 'row')"
        )
        self.connection.execute(
            "CREATE VIRTUAL TABLE IF NOT EXISTS documents_vocab_col USING fts5vocab(documents_fts, 'col')"
        )

        self.connection.execute(
            "INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )
        self.connection.commit()

    def get_metadata(self, key: str) -> str | None:
        result = self.connection.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return result[0] if result else None

    def set_metadata(self, key: str, value: str | None):
        self.connection.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value),
        )
        self.connection.commit()

    def num_documents(self) -> int:
        result = self.connection.execute("SELECT COUNT(*) FROM documents").fetchone()
        return result[0]

    def get_hashes_for_keys(self, document_keys: Sequence[str]) -> dict[str, str | None]:
        """Get content hashes for a list of document keys."""
        if not document_keys:
            return {}

        placeholders = ", ".join("?" for _ in document_keys)
        query = f"SELECT document_key, content_hash FROM documents WHERE document_key IN ({placeholders})"
        result = self.connection.execute(query, list(document_keys)).fetchall()
        return {row[0]: row[1] for row in result}

    def get_all_keys(self) -> list[str]:
        return [row[0] for row in self.connection.execute("SELECT document_key FROM documents").fetchall()]

    def delete_document(self, document_key: str):
        result = self.connection.execute(
            "SELECT id FROM documents WHERE document_key = ?",
            (document_key,),
        ).fetchone()

        if result:
            document_id = result[0]
            self.connection.execute("DELETE FROM documents_fts WHERE rowid = ?", (document_id,))
            self.connection.execute("DELETE FROM items WHERE document_id = ?", (document_id,))
            self.connection.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            self.connection.commit()

    def store_document(
        self,
        document_key: str,
        title: str,
        text: str,
        language_code: str | None,
        term_count: int,
        ansi_date: int,
        content_hash: str,
        items: Sequence[tuple[str, str, str | None, bytes]],
    ):
        """Store or replace a document, its full text and its items.

        `items` holds (item_name, mime_type, url, data) tuples.
        """
        existing = self.connection.execute(
            "SELECT id FROM documents WHERE document_key = ?",
            (document_key,),
        ).fetchone()

        if existing:
            document_id = existing[0]
            self.connection.execute(
                """UPDATE documents
                   SET title = ?, language_code = ?, term_count = ?, ansi_date = ?, content_hash = ?
                   WHERE id = ?""",
                (title, language_code, term_count, ansi_date, content_hash, document_id),
            )
            self.connection.execute("DELETE FROM documents_fts WHERE rowid = ?", (document_id,))
            self.connection.execute("DELETE FROM items WHERE document_id = ?", (document_id,))
        else:
            cursor = self.connection.execute(
                """INSERT INTO documents (document_key, title, language_code, term_count, ansi_date, content_hash)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (document_key, title, language_code, term_count, ansi_date, content_hash),
            )
            document_id = cursor.lastrowid

        self.connection.execute(
            "INSERT INTO documents_fts (rowid, title, text) VALUES (?, ?, ?)",
            (document_id, title, text),
        )
        self.connection.executemany(
            "INSERT INTO items (document_id, item_name, mime_type, url, data) VALUES (?, ?, ?, ?, ?)",
            [(document_id, item_name, mime_type, url, data) for item_name, mime_type, url, data in items],
        )
        self.connection.commit()

    def _document_from_row(self, row: tuple) -> StoredDocument:
        return StoredDocument(
            id=row[0],
            document_key=row[1],
            title=row[2],
            language_code=row[3],
            rank=row[4],
            term_count=row[5],
            ansi_date=row[6],
        )

    def get_document(self, document_key: str) -> StoredDocument | None:
        row = self.connection.execute(
            """SELECT id, document_key, title, language_code, rank, term_count, ansi_date
               FROM documents WHERE document_key = ?""",
            (document_key,),
        ).fetchone()
        return self._document_from_row(row) if row else None

    def get_items(self, document_id: int) -> list[StoredItem]:
        rows = self.connection.execute(
            """SELECT item_name, mime_type, length(data), url
               FROM items WHERE document_id = ? ORDER BY rowid""",
            (document_id,),
        ).fetchall()
        return [StoredItem(item_name=row[0], mime_type=row[1], length=row[2], url=row[3]) for row in rows]

    def get_item_data(self, document_id: int, item_name: str, mime_type: str) -> bytes | None:
        row = self.connection.execute(
            "SELECT data FROM items WHERE document_id = ? AND item_name = ? AND mime_type = ?",
            (document_id, item_name, mime_type),
        ).fetchone()
        return bytes(row[0]) if row else None

    def has_item_name(self, document_id: int, item_name: str) -> bool:
        row = self.connection.execute(
            "SELECT COUNT(*) FROM items WHERE document_id = ? AND item_name = ?",
            (document_id, item_name),
        ).fetchone()
        return row[0] > 0

    def search(self, match_query: str) -> list[StoredHit]:
        """Run an FTS5 match query, best bm25 score first.

        Raises:
            sqlite3.OperationalError: If the match query does not parse.
        """
        rows = self.connection.execute(
            """SELECT d.id, d.document_key, d.title, d.language_code, d.rank, d.term_count, d.ansi_date,
                      bm25(documents_fts) AS score
               FROM documents_fts
               JOIN documents d ON d.id = documents_fts.rowid
               WHERE documents_fts MATCH ?
               ORDER BY score""",
            (match_query,),
        ).fetchall()
        return [StoredHit(document=self._document_from_row(row[:7]), score=row[7]) for row in rows]

    def vocabulary(self, field_name: str | None = None) -> list[VocabularyEntry]:
        """Indexed terms with their document and occurrence counts, across fields or for one."""
        if field_name is None:
            rows = self.connection.execute("SELECT term, doc, cnt FROM documents_vocab_row ORDER BY term").fetchall()
        else:
            rows = self.connection.execute(
                "SELECT term, doc, cnt FROM documents_vocab_col WHERE col = ? ORDER BY term",
                (field_name,),
            ).fetchall()
        return [VocabularyEntry(term=row[0], document_count=row[1], count=row[2]) for row in rows]

    def close(self):
        self.connection.close()
