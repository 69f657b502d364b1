"""Repository pattern for all iterforge database operations.

Single interface for: projects, versions, conversation messages, and file
embeddings (cosine search through sqlite-vec's ``vec_distance_cosine``).
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from iterforge.db.models import FileEmbedding, Message, Project, Version, VersionStatus

_VERSION_COLUMNS = (
    "id, project_id, version_number, name, description, files, command_type, "
    "prompt, parent_version_id, status, metadata, created_at, updated_at"
)

# Columns update_version() may touch; everything else is fixed at insert.
UPDATABLE_VERSION_COLUMNS = frozenset(
    ["name", "description", "files", "status", "metadata"]
)


class Repository:
    """Data access layer for all iterforge database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller and
    must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see iterforge.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def add_project(self, project: Project) -> None:
        self._conn.execute(
            "INSERT INTO projects (id, name, is_foreign) VALUES (?, ?, ?)",
            (project.id, project.name, int(project.is_foreign)),
        )
        self._conn.commit()

    def get_project(self, project_id: str) -> Project | None:
        row = self._conn.execute(
            "SELECT id, name, is_foreign, created_at FROM projects WHERE id = ?",
            (project_id,),
        ).fetchone()
        return _row_to_project(row) if row else None

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def add_version(self, version: Version) -> None:
        """Insert a version row.

        Raises:
            sqlite3.IntegrityError: If (project_id, version_number) is taken or
                the project / parent does not exist.
        """
        self._conn.execute(
            f"""
            INSERT INTO versions ({_VERSION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, datetime('now'), datetime('now'))
            """,
            (
                version.id,
                version.project_id,
                version.version_number,
                version.name,
                version.description,
                json.dumps(version.files),
                version.command_type,
                version.prompt,
                version.parent_version_id,
                VersionStatus(version.status).value,
                json.dumps(version.metadata),
            ),
        )
        self._conn.commit()

    def get_version(self, version_id: str) -> Version | None:
        row = self._conn.execute(
            f"SELECT {_VERSION_COLUMNS} FROM versions WHERE id = ?", (version_id,)
        ).fetchone()
        return _row_to_version(row) if row else None

    def get_latest_complete_version(self, project_id: str) -> Version | None:
        row = self._conn.execute(
            f"""
            SELECT {_VERSION_COLUMNS} FROM versions
            WHERE project_id = ? AND status = 'complete'
            ORDER BY version_number DESC LIMIT 1
            """,
            (project_id,),
        ).fetchone()
        return _row_to_version(row) if row else None

    def max_version_number(self, project_id: str) -> int | None:
        """Highest version_number for *project_id* across all statuses, or None."""
        row = self._conn.execute(
            "SELECT MAX(version_number) FROM versions WHERE project_id = ?",
            (project_id,),
        ).fetchone()
        return row[0]

    def list_versions(
        self, project_id: str, limit: int = 50, offset: int = 0
    ) -> list[Version]:
        rows = self._conn.execute(
            f"""
            SELECT {_VERSION_COLUMNS} FROM versions
            WHERE project_id = ?
            ORDER BY version_number ASC
            LIMIT ? OFFSET ?
            """,
            (project_id, limit, offset),
        ).fetchall()
        return [_row_to_version(r) for r in rows]

    def count_versions(self, project_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM versions WHERE project_id = ?", (project_id,)
        ).fetchone()[0]

    def update_version(self, version_id: str, changes: dict[str, Any]) -> None:
        """Write *changes* to a version row and bump updated_at.

        Only name, description, files, status and metadata may change.
        """
        unknown = set(changes) - UPDATABLE_VERSION_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update version column(s): {sorted(unknown)}")
        if not changes:
            return

        encoded: dict[str, Any] = {}
        for column, value in changes.items():
            if column in ("files", "metadata"):
                encoded[column] = json.dumps(value)
            elif column == "status":
                encoded[column] = VersionStatus(value).value
            else:
                encoded[column] = value

        assignments = ", ".join(f"{c} = ?" for c in encoded)
        self._conn.execute(
            f"UPDATE versions SET {assignments}, updated_at = datetime('now') WHERE id = ?",
            (*encoded.values(), version_id),
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Conversation messages
    # ------------------------------------------------------------------

    def add_message(self, message: Message) -> int:
        cur = self._conn.execute(
            "INSERT INTO messages (project_id, role, content) VALUES (?, ?, ?)",
            (message.project_id, message.role, message.content),
        )
        self._conn.commit()
        return cur.lastrowid

    def list_recent_messages(self, project_id: str, limit: int) -> list[Message]:
        """Return the newest *limit* messages for *project_id*, oldest first."""
        rows = self._conn.execute(
            """
            SELECT id, project_id, role, content, created_at FROM messages
            WHERE project_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (project_id, limit),
        ).fetchall()
        return [_row_to_message(r) for r in reversed(rows)]

    # ------------------------------------------------------------------
    # File embeddings
    # ------------------------------------------------------------------

    def add_file_embedding(self, record: FileEmbedding) -> None:
        self._conn.execute(
            """
            INSERT OR REPLACE INTO file_embeddings
                (project_id, version_id, file_path, content_hash, file_type,
                 language, imports, embedding_model, embedding)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.project_id,
                record.version_id,
                record.file_path,
                record.content_hash,
                record.file_type,
                record.language,
                json.dumps(record.imports),
                record.embedding_model,
                record.embedding_json,
            ),
        )
        self._conn.commit()

    def find_embedding(
        self, project_id: str, file_path: str, content_hash: str, model: str
    ) -> list[float] | None:
        """Return a stored embedding for identical content, from any version."""
        row = self._conn.execute(
            """
            SELECT embedding FROM file_embeddings
            WHERE project_id = ? AND file_path = ? AND content_hash = ?
                AND embedding_model = ?
            LIMIT 1
            """,
            (project_id, file_path, content_hash, model),
        ).fetchone()
        return json.loads(row["embedding"]) if row else None

    def count_file_embeddings(self, version_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM file_embeddings WHERE version_id = ?", (version_id,)
        ).fetchone()[0]

    def search_file_embeddings(
        self,
        project_id: str,
        version_id: str,
        embedding: list[float],
        model: str,
        limit: int = 15,
        file_types: list[str] | None = None,
    ) -> list[tuple[str, float, str, list[str]]]:
        """Cosine search over one version's files.

        Returns [(file_path, similarity, file_type, imports)] best-first, where
        similarity = 1 - cosine distance.
        """
        sql = """
            SELECT file_path, file_type, imports,
                   vec_distance_cosine(embedding, ?) AS distance
            FROM file_embeddings
            WHERE project_id = ? AND version_id = ? AND embedding_model = ?
        """
        params: list[Any] = [json.dumps(embedding), project_id, version_id, model]
        if file_types:
            sql += f" AND file_type IN ({','.join('?' * len(file_types))})"
            params.extend(file_types)
        sql += " ORDER BY distance ASC LIMIT ?"
        params.append(limit)

        return [
            (r["file_path"], 1.0 - r["distance"], r["file_type"], json.loads(r["imports"]))
            for r in self._conn.execute(sql, params).fetchall()
        ]


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        is_foreign=bool(row["is_foreign"]),
        created_at=row["created_at"],
    )


def _row_to_version(row: sqlite3.Row) -> Version:
    return Version(
        id=row["id"],
        project_id=row["project_id"],
        version_number=row["version_number"],
        name=row["name"],
        description=row["description"],
        files=json.loads(row["files"]),
        command_type=row["command_type"],
        prompt=row["prompt"],
        parent_version_id=row["parent_version_id"],
        status=VersionStatus(row["status"]),
        metadata=json.loads(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        project_id=row["project_id"],
        role=row["role"],
        content=row["content"],
        created_at=row["created_at"],
    )
