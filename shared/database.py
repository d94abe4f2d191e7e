"""
SQLite Database Manager for Soundpost.
Stores articles and categories as documents and keeps play/duration counters.
"""

import sqlite3
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple
from shared.models import Article, Category, utc_now
from shared.constants import DEFAULT_DATABASE_PATH

ARTICLE_COLUMNS = [
    "id", "title", "description", "content", "audio_url", "thumbnail_url",
    "audio_public_id", "thumbnail_public_id", "duration", "category",
    "created_at", "published", "plays", "featured",
]

# Fields an update request may touch
EDITABLE_ARTICLE_FIELDS = {
    "title", "description", "content", "category", "published", "featured",
    "duration", "thumbnail_url", "thumbnail_public_id", "audio_url", "audio_public_id",
}


class DatabaseManager:
    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            self.db_path = Path(DEFAULT_DATABASE_PATH).expanduser()
        else:
            self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _get_connection(self):
        conn = sqlite3.connect(self.db_path)
        # Enable WAL mode for high concurrency
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize the database schema."""
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN TRANSACTION")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS articles (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        description TEXT NOT NULL,
                        content TEXT NOT NULL,
                        audio_url TEXT NOT NULL,
                        thumbnail_url TEXT NOT NULL,
                        audio_public_id TEXT NOT NULL,
                        thumbnail_public_id TEXT NOT NULL,
                        duration INTEGER NOT NULL DEFAULT 0,
                        category TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        published BOOLEAN NOT NULL DEFAULT 1,
                        plays INTEGER NOT NULL DEFAULT 0,
                        featured BOOLEAN NOT NULL DEFAULT 0
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS categories (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL UNIQUE,
                        slug TEXT NOT NULL UNIQUE,
                        description TEXT,
                        article_count INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_category ON articles(category, published)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_articles_created ON articles(created_at)")
                conn.execute("COMMIT")
            except Exception as e:
                conn.execute("ROLLBACK")
                raise e

    # --- Articles ---

    def insert_article(self, article: Article) -> Article:
        placeholders = ",".join(["?"] * len(ARTICLE_COLUMNS))
        values = [getattr(article, column) for column in ARTICLE_COLUMNS]
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT INTO articles ({','.join(ARTICLE_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
        return article

    def get_article(self, article_id: str) -> Optional[Article]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
            return self._row_to_article(row) if row else None

    def list_articles(self, category: Optional[str] = None, featured: Optional[bool] = None,
                      limit: int = 10, page: int = 1,
                      published_only: bool = True) -> Tuple[List[Article], int]:
        """
        Page through articles, newest first.

        Returns:
            (articles on the requested page, total matching articles)
        """
        clauses = []
        params: List[Any] = []
        if published_only:
            clauses.append("published = 1")
        if category:
            clauses.append("category = ?")
            params.append(category)
        if featured is not None:
            clauses.append("featured = ?")
            params.append(1 if featured else 0)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        limit = max(1, limit)
        offset = (max(1, page) - 1) * limit
        with self._get_connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM articles {where}", params).fetchone()[0]
            cursor = conn.execute(
                f"SELECT * FROM articles {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
                params + [limit, offset],
            )
            return [self._row_to_article(row) for row in cursor.fetchall()], total

    def update_article(self, article_id: str, fields: Dict[str, Any]) -> Optional[Article]:
        """Apply the editable subset of `fields`; returns the updated article or None."""
        updates = {k: v for k, v in fields.items() if k in EDITABLE_ARTICLE_FIELDS}
        if updates:
            assignments = ", ".join(f"{column} = ?" for column in updates)
            with self._get_connection() as conn:
                conn.execute(
                    f"UPDATE articles SET {assignments} WHERE id = ?",
                    list(updates.values()) + [article_id],
                )
        return self.get_article(article_id)

    def update_duration(self, article_id: str, duration: int) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("UPDATE articles SET duration = ? WHERE id = ?", (int(duration), article_id))
            return cursor.rowcount > 0

    def increment_plays(self, article_id: str) -> Optional[int]:
        with self._get_connection() as conn:
            cursor = conn.execute("UPDATE articles SET plays = plays + 1 WHERE id = ?", (article_id,))
            if cursor.rowcount == 0:
                return None
            return conn.execute("SELECT plays FROM articles WHERE id = ?", (article_id,)).fetchone()[0]

    def delete_article(self, article_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))
            return cursor.rowcount > 0

    def count_published(self, category_name: str) -> int:
        with self._get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM articles WHERE category = ? AND published = 1",
                (category_name,),
            ).fetchone()[0]

    def _row_to_article(self, row: sqlite3.Row) -> Article:
        return Article.from_dict(dict(row))

    # --- Categories ---

    def create_category(self, category: Category) -> Category:
        """
        Raises:
            sqlite3.IntegrityError: If the name or slug is already taken
        """
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO categories (id, name, slug, description, article_count, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (category.id, category.name, category.slug, category.description,
                 category.article_count, category.created_at, category.updated_at),
            )
        return category

    def get_category(self, category_id: str) -> Optional[Category]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
            return Category.from_dict(dict(row)) if row else None

    def list_categories(self) -> List[Category]:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT * FROM categories ORDER BY name")
            return [Category.from_dict(dict(row)) for row in cursor.fetchall()]

    def update_category(self, category_id: str, name: str, slug: str,
                        description: Optional[str]) -> Optional[Category]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE categories SET name = ?, slug = ?, description = ?, updated_at = ? WHERE id = ?",
                (name, slug, description, utc_now(), category_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_category(category_id)

    def delete_category(self, category_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            return cursor.rowcount > 0

    def refresh_category_counts(self) -> Dict[str, int]:
        """Recount published articles per category and persist the counts atomically."""
        with self._get_connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                counts = {}
                for row in conn.execute("SELECT id, name FROM categories").fetchall():
                    count = conn.execute(
                        "SELECT COUNT(*) FROM articles WHERE category = ? AND published = 1",
                        (row["name"],),
                    ).fetchone()[0]
                    conn.execute(
                        "UPDATE categories SET article_count = ?, updated_at = ? WHERE id = ?",
                        (count, utc_now(), row["id"]),
                    )
                    counts[row["name"]] = count
                conn.execute("COMMIT")
                return counts
            except Exception as e:
                conn.execute("ROLLBACK")
                raise e
