import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import uuid4

from filestore.errors import Conflict
from filestore.models import FileRecord, RefreshCredential, User


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()


class FileRepository(SQLiteRepository):
    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS files (
                    file_id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    uploaded_at TEXT NOT NULL,
                    UNIQUE(owner_id, filename)
                );
                """
            )

    def upsert_file(self, *, owner_id: str, filename: str, content_type: str, size: int) -> FileRecord:
        """Insert a record, or refresh the existing one for the same owner and filename.

        The ``file_id`` of an existing record is kept, so a re-upload replaces
        content under one stable identity.
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO files(file_id, owner_id, filename, content_type, size, uploaded_at)
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id, filename) DO UPDATE SET
                    content_type = excluded.content_type,
                    size = excluded.size,
                    uploaded_at = excluded.uploaded_at
                """,
                (str(uuid4()), owner_id, filename, content_type, size, utc_now_iso()),
            )
            row = conn.execute(
                "SELECT * FROM files WHERE owner_id = ? AND filename = ?",
                (owner_id, filename),
            ).fetchone()
        return FileRecord(**dict(row))

    def get_file(self, file_id: str) -> FileRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM files WHERE file_id = ?", (file_id,)).fetchone()
        return FileRecord(**dict(row)) if row else None

    def list_files_for_owner(self, owner_id: str) -> list[FileRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM files
                WHERE owner_id = ?
                ORDER BY uploaded_at DESC, file_id
                """,
                (owner_id,),
            ).fetchall()
        return [FileRecord(**dict(row)) for row in rows]

    def total_size_for_owner(self, owner_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(size), 0) AS total FROM files WHERE owner_id = ?",
                (owner_id,),
            ).fetchone()
        return int(row["total"])

    def delete_file(self, file_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM files WHERE file_id = ?", (file_id,))
        return cursor.rowcount > 0

    def delete_files_for_owner(self, owner_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM files WHERE owner_id = ?", (owner_id,))
        return cursor.rowcount


class RefreshTokenRepository(SQLiteRepository):
    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS refresh_tokens (
                    token_id TEXT PRIMARY KEY,
                    token TEXT NOT NULL UNIQUE,
                    username TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                );
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_refresh_tokens_username ON refresh_tokens(username)"
            )

    def create(self, *, token: str, username: str, expires_at: datetime) -> RefreshCredential:
        token_id = str(uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO refresh_tokens(token_id, token, username, expires_at)
                VALUES(?, ?, ?, ?)
                """,
                (token_id, token, username, expires_at.isoformat()),
            )
        return RefreshCredential(token_id=token_id, token=token, username=username, expires_at=expires_at)

    def get_by_token(self, token: str) -> RefreshCredential | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM refresh_tokens WHERE token = ?", (token,)).fetchone()
        return RefreshCredential(**dict(row)) if row else None

    def delete(self, token_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM refresh_tokens WHERE token_id = ?", (token_id,))

    def delete_by_username(self, username: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM refresh_tokens WHERE username = ?", (username,))
        return cursor.rowcount


class UserRepository(SQLiteRepository):
    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    roles TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

    @staticmethod
    def _to_user(row: sqlite3.Row) -> User:
        data = dict(row)
        data["roles"] = [role for role in data["roles"].split(",") if role]
        return User(**data)

    def create(self, *, username: str, password_hash: str, roles: list[str]) -> User:
        user_id = uuid4().hex
        created_at = utc_now_iso()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users(user_id, username, password_hash, roles, created_at)
                    VALUES(?, ?, ?, ?, ?)
                    """,
                    (user_id, username, password_hash, ",".join(roles), created_at),
                )
        except sqlite3.IntegrityError as exc:
            raise Conflict("username already exists") from exc
        return User(
            user_id=user_id,
            username=username,
            password_hash=password_hash,
            roles=roles,
            created_at=created_at,
        )

    def get_by_username(self, username: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return self._to_user(row) if row else None

    def get_by_id(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return self._to_user(row) if row else None

    def update_password_hash(self, user_id: str, password_hash: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ? WHERE user_id = ?",
                (password_hash, user_id),
            )

    def delete(self, user_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM users WHERE user_id = ?", (user_id,))
