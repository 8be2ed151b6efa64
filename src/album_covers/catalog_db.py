"""
Album catalog storage.

Defines the Album/Artist records, the AlbumStore protocol the cover pipeline
depends on, and a SQLite implementation used by the CLI.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from album_covers.resolver import DEFAULT_COVER, PLACEHOLDER_PATTERNS


@dataclass
class Artist:
    """Catalog artist."""

    name: str
    id: int | None = None

    @property
    def letter(self) -> str:
        """Index letter used for alphabetical browsing ('#' for non-letters)."""
        first = self.name.strip()[:1].upper()
        return first if first.isalpha() else "#"


@dataclass
class Album:
    """Catalog album; cover_url is owned by the cover pipeline."""

    title: str
    artist: Artist
    id: int | None = None
    release_year: int | None = None
    genre: str | None = None
    rating: float | None = None
    cover_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "artist": self.artist.name,
            "artist_id": self.artist.id,
            "release_year": self.release_year,
            "genre": self.genre,
            "rating": self.rating,
            "cover_url": self.cover_url,
        }


class AlbumStore(Protocol):
    """Record store interface used by the cover pipeline."""

    def find_by_id(self, album_id: int) -> Album | None: ...

    def find_all(self) -> list[Album]: ...

    def save(self, album: Album) -> Album: ...

    def delete_by_id(self, album_id: int) -> bool: ...

    def find_records_missing_cover(self) -> list[Album]: ...


_ALBUM_SELECT = """
    SELECT al.id, al.title, al.release_year, al.genre, al.rating, al.cover_url,
           ar.id AS artist_id, ar.name AS artist_name
    FROM album al
    JOIN artist ar ON ar.id = al.artist_id
"""


class CatalogDB:
    """
    SQLite catalog of artists and albums.

    Implements AlbumStore plus the catalog's browsing queries.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with foreign keys enabled."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _db_connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._db_connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS artist (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE
                );

                CREATE TABLE IF NOT EXISTS album (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    artist_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    release_year INTEGER,
                    genre TEXT,
                    rating REAL,
                    cover_url TEXT,
                    FOREIGN KEY (artist_id) REFERENCES artist(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_album_artist ON album(artist_id);
                CREATE INDEX IF NOT EXISTS idx_album_year ON album(release_year);

                CREATE TABLE IF NOT EXISTS schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                INSERT OR IGNORE INTO schema_meta (key, value)
                    VALUES ('db_version_catalog', '1');
                """
            )
            conn.commit()

    @staticmethod
    def _row_to_album(row: sqlite3.Row) -> Album:
        return Album(
            id=row["id"],
            title=row["title"],
            artist=Artist(id=row["artist_id"], name=row["artist_name"]),
            release_year=row["release_year"],
            genre=row["genre"],
            rating=row["rating"],
            cover_url=row["cover_url"],
        )

    def _query_albums(self, where: str = "", params: tuple[Any, ...] = ()) -> list[Album]:
        sql = _ALBUM_SELECT + (f" WHERE {where}" if where else "") + " ORDER BY al.id"
        with self._db_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_album(row) for row in rows]

    # Artists

    def get_or_create_artist(self, name: str) -> Artist:
        """Look up an artist by exact name, inserting it if missing."""
        name = name.strip()
        with self._db_connection() as conn:
            conn.execute("INSERT OR IGNORE INTO artist (name) VALUES (?)", (name,))
            conn.commit()
            row = conn.execute("SELECT id, name FROM artist WHERE name = ?", (name,)).fetchone()
        return Artist(id=row["id"], name=row["name"])

    def find_all_artists(self) -> list[Artist]:
        with self._db_connection() as conn:
            rows = conn.execute("SELECT id, name FROM artist ORDER BY name COLLATE NOCASE").fetchall()
        return [Artist(id=row["id"], name=row["name"]) for row in rows]

    # AlbumStore

    def find_by_id(self, album_id: int) -> Album | None:
        albums = self._query_albums("al.id = ?", (album_id,))
        return albums[0] if albums else None

    def find_all(self) -> list[Album]:
        return self._query_albums()

    def save(self, album: Album) -> Album:
        """Insert or update an album; assigns ids to new albums and artists."""
        if album.artist.id is None:
            album.artist = self.get_or_create_artist(album.artist.name)

        values = (
            album.artist.id,
            album.title,
            album.release_year,
            album.genre,
            album.rating,
            album.cover_url,
        )
        with self._db_connection() as conn:
            if album.id is None:
                cursor = conn.execute(
                    """
                    INSERT INTO album (artist_id, title, release_year, genre, rating, cover_url)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                album.id = cursor.lastrowid
            else:
                conn.execute(
                    """
                    INSERT INTO album (id, artist_id, title, release_year, genre, rating, cover_url)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        artist_id = excluded.artist_id,
                        title = excluded.title,
                        release_year = excluded.release_year,
                        genre = excluded.genre,
                        rating = excluded.rating,
                        cover_url = excluded.cover_url
                    """,
                    (album.id, *values),
                )
            conn.commit()
        return album

    def delete_by_id(self, album_id: int) -> bool:
        with self._db_connection() as conn:
            cursor = conn.execute("DELETE FROM album WHERE id = ?", (album_id,))
            conn.commit()
            return cursor.rowcount > 0

    def find_records_missing_cover(self) -> list[Album]:
        """Albums whose cover is missing, blank, the default, or a placeholder."""
        clauses = ["al.cover_url IS NULL", "TRIM(al.cover_url) = ''", "al.cover_url LIKE ?"]
        params: list[str] = [f"%{DEFAULT_COVER}%"]
        for pattern in PLACEHOLDER_PATTERNS:
            clauses.append("al.cover_url LIKE ?")
            params.append(f"%{pattern}%")
        return self._query_albums(" OR ".join(clauses), tuple(params))

    # Browsing

    def find_by_artist(self, artist: Artist) -> list[Album]:
        if artist.id is not None:
            return self._query_albums("ar.id = ?", (artist.id,))
        return self._query_albums("ar.name = ?", (artist.name,))

    def find_by_genre(self, genre: str) -> list[Album]:
        return self._query_albums("LOWER(al.genre) = LOWER(?)", (genre,))

    def find_by_year(self, year: int) -> list[Album]:
        return self._query_albums("al.release_year = ?", (year,))

    def find_by_min_rating(self, rating: float) -> list[Album]:
        return self._query_albums("al.rating >= ?", (rating,))


## Tests


def test_catalog_db_schema(tmp_path):
    db = CatalogDB(tmp_path / "catalog.sqlite")
    assert db.db_path.exists()

    with db._db_connection() as conn:
        tables = {
            row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
    assert {"artist", "album", "schema_meta"} <= tables


def test_save_assigns_ids(tmp_path):
    db = CatalogDB(tmp_path / "catalog.sqlite")
    album = db.save(Album(title="Nevermind", artist=Artist(name="Nirvana"), release_year=1991))
    assert album.id is not None
    assert album.artist.id is not None

    loaded = db.find_by_id(album.id)
    assert loaded is not None
    assert loaded.title == "Nevermind"
    assert loaded.artist.name == "Nirvana"
    assert loaded.cover_url is None


def test_save_updates_existing(tmp_path):
    db = CatalogDB(tmp_path / "catalog.sqlite")
    album = db.save(Album(title="Homogenic", artist=Artist(name="Björk")))
    album.cover_url = "https://img.example/homogenic.jpg"
    db.save(album)

    assert len(db.find_all()) == 1
    loaded = db.find_by_id(album.id)
    assert loaded is not None
    assert loaded.cover_url == "https://img.example/homogenic.jpg"


def test_get_or_create_artist_is_idempotent(tmp_path):
    db = CatalogDB(tmp_path / "catalog.sqlite")
    first = db.get_or_create_artist("Radiohead")
    second = db.get_or_create_artist("Radiohead ")
    assert first.id == second.id
    assert len(db.find_all_artists()) == 1


def test_artist_letter():
    assert Artist(name="abba").letter == "A"
    assert Artist(name="2Pac").letter == "#"


def test_delete_by_id(tmp_path):
    db = CatalogDB(tmp_path / "catalog.sqlite")
    album = db.save(Album(title="Blue Lines", artist=Artist(name="Massive Attack")))
    assert album.id is not None
    assert db.delete_by_id(album.id)
    assert not db.delete_by_id(album.id)
    assert db.find_by_id(album.id) is None


def test_browsing_finders(tmp_path):
    db = CatalogDB(tmp_path / "catalog.sqlite")
    db.save(Album(title="OK Computer", artist=Artist("Radiohead"), release_year=1997, rating=4.8))
    db.save(Album(title="Kid A", artist=Artist("Radiohead"), release_year=2000, genre="Electronic"))
    db.save(Album(title="Parklife", artist=Artist("Blur"), release_year=1994, rating=4.1))

    assert {a.title for a in db.find_by_artist(Artist("Radiohead"))} == {"OK Computer", "Kid A"}
    assert [a.title for a in db.find_by_genre("ELECTRONIC")] == ["Kid A"]
    assert [a.title for a in db.find_by_year(1994)] == ["Parklife"]
    assert [a.title for a in db.find_by_min_rating(4.5)] == ["OK Computer"]
