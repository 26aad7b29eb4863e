import json
import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from db_pool import SQLiteConnectionPool
from engines.errors import NotFound, StoreError, as_store_error

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE,
        pw_hash TEXT,
        pw_salt TEXT,
        display_name TEXT,
        first_name TEXT,
        last_name TEXT,
        profile TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS courses (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        category TEXT,
        difficulty TEXT CHECK (difficulty IN ('beginner', 'intermediate', 'advanced')),
        sort_order INTEGER DEFAULT 0,
        is_active INTEGER DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lessons (
        id TEXT PRIMARY KEY,
        course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
        title TEXT NOT NULL,
        sort_order INTEGER DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS learning_sessions (
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        lesson_id TEXT NOT NULL REFERENCES lessons(id) ON DELETE CASCADE,
        status TEXT NOT NULL CHECK (status IN ('started', 'completed')),
        score REAL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (user_id, lesson_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_lessons_course ON lessons(course_id)",
)


def _row_to_user(row: sqlite3.Row) -> Dict[str, Any]:
    user = {key: row[key] for key in row.keys() if key not in ("pw_hash", "pw_salt", "profile")}
    raw_profile = row["profile"] if "profile" in row.keys() else None
    try:
        user["profile"] = json.loads(raw_profile) if raw_profile else {}
    except json.JSONDecodeError:
        user["profile"] = {}
    return user


class SQLiteStore:
    """Backing store for accounts, courses and learning progress.

    Every public method raises a classified :class:`engines.errors.StoreError`
    on failure. Methods are blocking; async callers run them through
    ``asyncio.to_thread``.
    """

    def __init__(self, path: str, *, max_connections: int = 5, acquire_timeout: float = 5.0) -> None:
        self.path = path
        self._pool = SQLiteConnectionPool(path, max_connections=max_connections, acquire_timeout=acquire_timeout)

    @contextmanager
    def _classified(self) -> Iterator[None]:
        try:
            yield
        except StoreError:
            raise
        except sqlite3.Error as exc:
            raise as_store_error(exc) from exc

    def _exec(self, sql: str, params: Iterable = ()) -> int:
        with self._classified(), self._pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur.rowcount

    def _query(self, sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
        with self._classified(), self._pool.get_connection() as con:
            return con.execute(sql, tuple(params)).fetchall()

    # -------------- lifecycle --------------
    def init(self) -> None:
        with self._classified(), self._pool.get_connection() as con:
            for statement in _SCHEMA:
                con.execute(statement)
            con.commit()

    def close(self) -> None:
        self._pool.close()

    def ping(self) -> bool:
        rows = self._query("SELECT 1")
        return bool(rows) and rows[0][0] == 1

    # -------------- users --------------
    def create_user(
        self,
        user_id: str,
        email: str,
        pw_hash: str,
        pw_salt: Optional[str],
        display_name: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Insert a user; a duplicate id or email raises ``ConstraintViolation``."""
        self._exec(
            """
            INSERT INTO users(id, email, pw_hash, pw_salt, display_name, first_name, last_name, profile)
            VALUES (?,?,?,?,?,?,?,?)
            """,
            (
                user_id,
                email,
                pw_hash,
                pw_salt,
                display_name,
                first_name,
                last_name,
                json.dumps(dict(profile or {})),
            ),
        )
        return self.get_user(user_id)

    def get_user(self, user_id: str) -> Dict[str, Any]:
        rows = self._query("SELECT * FROM users WHERE id = ?", (user_id,))
        if not rows:
            raise NotFound(f"user {user_id} not found")
        return _row_to_user(rows[0])

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT * FROM users WHERE email = ?", (email,))
        return _row_to_user(rows[0]) if rows else None

    def update_user_profile(
        self,
        user_id: str,
        profile: Mapping[str, Any],
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Merge ``profile`` into the stored profile and return the updated user.

        Names are replaced only when given; the display name follows them.
        Re-applying the same update is harmless, so abandoned attempts may be retried.
        """
        with self._classified(), self._pool.get_connection() as con:
            row = con.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
            if row is None:
                raise NotFound(f"user {user_id} not found")
            current = _row_to_user(row)
            merged = {**current["profile"], **dict(profile)}
            first = first_name if first_name is not None else current.get("first_name")
            last = last_name if last_name is not None else current.get("last_name")
            display_name = current.get("display_name")
            if first_name is not None or last_name is not None:
                display_name = f"{first or ''} {last or ''}".strip() or display_name
            con.execute(
                """
                UPDATE users
                SET profile = ?, first_name = ?, last_name = ?, display_name = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (json.dumps(merged), first, last, display_name, user_id),
            )
            con.commit()
            row = con.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row)

    def count_users(self) -> int:
        return int(self._query("SELECT COUNT(*) FROM users")[0][0])

    # -------------- courses / lessons --------------
    def upsert_course(
        self,
        course_id: str,
        title: str,
        *,
        description: Optional[str] = None,
        category: Optional[str] = None,
        difficulty: Optional[str] = None,
        sort_order: int = 0,
        is_active: bool = True,
    ) -> None:
        self._exec(
            """
            INSERT INTO courses(id, title, description, category, difficulty, sort_order, is_active)
            VALUES (?,?,?,?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                description = excluded.description,
                category = excluded.category,
                difficulty = excluded.difficulty,
                sort_order = excluded.sort_order,
                is_active = excluded.is_active
            """,
            (course_id, title, description, category, difficulty, int(sort_order), 1 if is_active else 0),
        )

    def upsert_lesson(self, lesson_id: str, course_id: str, title: str, sort_order: int = 0) -> None:
        self._exec(
            """
            INSERT INTO lessons(id, course_id, title, sort_order) VALUES (?,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
                course_id = excluded.course_id,
                title = excluded.title,
                sort_order = excluded.sort_order
            """,
            (lesson_id, course_id, title, int(sort_order)),
        )

    def list_courses(self) -> List[Dict[str, Any]]:
        rows = self._query(
            """
            SELECT c.id, c.title, c.description, c.category, c.difficulty,
                   COUNT(l.id) AS total_lessons
            FROM courses c
            LEFT JOIN lessons l ON l.course_id = c.id
            WHERE c.is_active = 1
            GROUP BY c.id
            ORDER BY c.sort_order, c.id
            """
        )
        return [dict(row) for row in rows]

    def completed_lessons_by_course(self, user_id: str) -> Dict[str, int]:
        rows = self._query(
            """
            SELECT l.course_id AS course_id, COUNT(*) AS completed
            FROM learning_sessions s
            JOIN lessons l ON l.id = s.lesson_id
            WHERE s.user_id = ? AND s.status = 'completed'
            GROUP BY l.course_id
            """,
            (user_id,),
        )
        return {row["course_id"]: int(row["completed"]) for row in rows}

    # -------------- progress --------------
    def record_progress(
        self,
        user_id: str,
        course_id: str,
        lesson_id: str,
        status: str,
        score: Optional[float] = None,
    ) -> None:
        """Upsert a learning session.

        A lesson outside ``course_id`` raises ``NotFound``; an unknown user
        raises ``ConstraintViolation`` through the foreign key.
        """
        with self._classified(), self._pool.get_connection() as con:
            row = con.execute("SELECT course_id FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
            if row is None or row["course_id"] != course_id:
                raise NotFound(f"lesson {lesson_id} not found in course {course_id}")
            con.execute(
                """
                INSERT INTO learning_sessions(user_id, lesson_id, status, score, updated_at)
                VALUES (?,?,?,?, CURRENT_TIMESTAMP)
                ON CONFLICT(user_id, lesson_id) DO UPDATE SET
                    status = excluded.status,
                    score = excluded.score,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (user_id, lesson_id, status, score),
            )
            con.commit()

    def list_progress(self, user_id: str, limit: int = 200) -> List[Dict[str, Any]]:
        rows = self._query(
            """
            SELECT l.course_id AS course_id, s.lesson_id AS lesson_id, s.status AS status,
                   s.score AS score, s.updated_at AS updated_at
            FROM learning_sessions s
            JOIN lessons l ON l.id = s.lesson_id
            WHERE s.user_id = ?
            ORDER BY s.updated_at DESC, s.lesson_id
            LIMIT ?
            """,
            (user_id, int(limit)),
        )
        return [dict(row) for row in rows]


def ensure_seed_courses(store: SQLiteStore, courses: Iterable[Mapping[str, Any]]) -> int:
    """Insert demo courses with placeholder lessons; returns the number of courses."""
    count = 0
    for order, course in enumerate(courses, start=1):
        course_id = str(course["id"])
        store.upsert_course(
            course_id,
            str(course["title"]),
            description=course.get("description"),
            category=course.get("category"),
            difficulty=course.get("difficulty"),
            sort_order=order,
        )
        for index in range(1, int(course.get("total_lessons") or 0) + 1):
            store.upsert_lesson(f"{course_id}-lesson-{index}", course_id, f"Lesson {index}", index)
        count += 1
    logger.info("Seeded %d courses", count)
    return count
