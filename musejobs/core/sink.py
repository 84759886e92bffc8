"""Append-only output sinks: JSON Lines file or SQLite database.

Sinks never enforce uniqueness; deduplication is done by the crawl engine.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Protocol, TextIO, runtime_checkable

from musejobs.core.schemas import CanonicalJobRecord, CrawlSummary

logger = logging.getLogger(__name__)

SQLITE_SUFFIXES = (".db", ".sqlite", ".sqlite3")

_JOBS_TABLE = """
CREATE TABLE IF NOT EXISTS jobs (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    source            TEXT NOT NULL,
    job_id            TEXT,
    slug              TEXT NOT NULL DEFAULT '',
    title             TEXT NOT NULL DEFAULT '',
    company           TEXT NOT NULL DEFAULT '',
    company_id        TEXT,
    locations_json    TEXT NOT NULL DEFAULT '[]',
    categories_json   TEXT NOT NULL DEFAULT '[]',
    levels_json       TEXT NOT NULL DEFAULT '[]',
    tags_json         TEXT NOT NULL DEFAULT '[]',
    job_type          TEXT NOT NULL DEFAULT '',
    publication_date  TEXT NOT NULL DEFAULT '',
    url               TEXT NOT NULL DEFAULT '',
    api_url           TEXT NOT NULL DEFAULT '',
    description_html  TEXT NOT NULL DEFAULT '',
    description_text  TEXT NOT NULL DEFAULT '',
    raw_json          TEXT NOT NULL DEFAULT '{}',
    scraped_at        TEXT NOT NULL
);
"""

_CRAWL_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS crawl_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    total_saved     INTEGER NOT NULL,
    total_requests  INTEGER NOT NULL,
    pages_fetched   INTEGER NOT NULL,
    api_errors      INTEGER NOT NULL,
    started_at      TEXT NOT NULL,
    finished_at     TEXT NOT NULL
);
"""


@runtime_checkable
class DatasetSink(Protocol):
    """Append-only record sink."""

    def write(self, record: CanonicalJobRecord) -> None: ...
    def close(self) -> None: ...


class JsonlSink:
    """Appends one JSON object per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: TextIO = self.path.open("a", encoding="utf-8")

    def write(self, record: CanonicalJobRecord) -> None:
        self._fh.write(record.model_dump_json() + "\n")
        self._fh.flush()

    def record_run(self, summary: CrawlSummary) -> None:
        logger.debug("JSONL sink does not persist run summaries")

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.close()


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_JOBS_TABLE)
    conn.execute(_CRAWL_RUNS_TABLE)
    conn.commit()
    return conn


def insert_job(conn: sqlite3.Connection, record: CanonicalJobRecord) -> int:
    """Append a job row. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO jobs
            (source, job_id, slug, title, company, company_id,
             locations_json, categories_json, levels_json, tags_json,
             job_type, publication_date, url, api_url,
             description_html, description_text, raw_json, scraped_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.source.value,
            record.job_id,
            record.slug,
            record.title,
            record.company,
            record.company_id,
            json.dumps(record.locations, ensure_ascii=False),
            json.dumps(record.categories, ensure_ascii=False),
            json.dumps(record.levels, ensure_ascii=False),
            json.dumps(record.tags, ensure_ascii=False),
            record.job_type,
            record.publication_date,
            record.url,
            record.api_url,
            record.description_html,
            record.description_text,
            json.dumps(record.raw, ensure_ascii=False, default=str),
            record.scraped_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def insert_crawl_run(conn: sqlite3.Connection, summary: CrawlSummary) -> int:
    """Record a completed crawl run. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO crawl_runs
            (total_saved, total_requests, pages_fetched, api_errors, started_at, finished_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            summary.total_saved,
            summary.total_requests,
            summary.pages_fetched,
            summary.api_errors,
            summary.started_at.isoformat(),
            summary.finished_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


class SqliteSink:
    """Appends records to the ``jobs`` table of a SQLite database."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.conn = init_db(self.path)

    def write(self, record: CanonicalJobRecord) -> None:
        insert_job(self.conn, record)

    def record_run(self, summary: CrawlSummary) -> None:
        insert_crawl_run(self.conn, summary)

    def close(self) -> None:
        self.conn.close()


def open_sink(path: str | Path) -> JsonlSink | SqliteSink:
    """Pick a sink by file suffix: SQLite for .db/.sqlite, JSON Lines otherwise."""
    path = Path(path)
    if path.suffix.lower() in SQLITE_SUFFIXES:
        logger.info("Writing records to SQLite database %s", path)
        return SqliteSink(path)
    logger.info("Writing records to JSON Lines file %s", path)
    return JsonlSink(path)
