"""SQLite-backed lineage repository with JSON support for lineage records"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

import aiosqlite
from loguru import logger

from insight_engine.core.models import RecommendationLineage, SynthesisLineage


class SQLiteLineageRepository:
    """
    Durable store for recommendation and synthesis lineage.

    Features:
    - Whole records stored as JSON (records are immutable once written)
    - Denormalized columns for lookups and history paging
    - Index on (user_id, created_at) for synthesis history
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Establish database connection"""
        # Create parent directory if needed
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row

        await self._setup_schema()
        logger.info(f"Connected to lineage database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Lineage database connection closed")

    async def _setup_schema(self) -> None:
        if not self._conn:
            raise RuntimeError("Database not connected")

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS recommendation_lineage (
                recommendation_id TEXT PRIMARY KEY,
                target_id TEXT NOT NULL,
                confidence REAL NOT NULL,
                created_at TEXT NOT NULL,

                -- Full record as JSON
                record TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS synthesis_lineage (
                synthesis_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                created_at TEXT NOT NULL,
                record TEXT NOT NULL
            )
        """)

        await self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_synthesis_user_created
            ON synthesis_lineage(user_id, created_at DESC)
        """)

        await self._conn.commit()
        logger.debug("Lineage schema initialized")

    async def save_recommendation(self, lineage: RecommendationLineage) -> None:
        """Insert or replace one recommendation lineage"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        await self._conn.execute(
            """
            INSERT OR REPLACE INTO recommendation_lineage
            (recommendation_id, target_id, confidence, created_at, record)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                lineage.recommendation_id,
                lineage.target_id,
                lineage.confidence_score,
                lineage.created_at.isoformat(timespec="microseconds"),
                json.dumps(lineage.model_dump(mode="json")),
            ),
        )
        await self._conn.commit()

    async def get_recommendation(self, recommendation_id: str) -> Optional[RecommendationLineage]:
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute(
            "SELECT record FROM recommendation_lineage WHERE recommendation_id = ?",
            (recommendation_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return RecommendationLineage.model_validate(json.loads(row["record"]))

    async def save_synthesis(self, lineage: SynthesisLineage) -> None:
        """Insert or replace one synthesis lineage (recommendations embedded)"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        await self._conn.execute(
            """
            INSERT OR REPLACE INTO synthesis_lineage
            (synthesis_id, user_id, trigger_type, created_at, record)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                lineage.synthesis_id,
                lineage.user_id,
                lineage.trigger.type.value,
                lineage.created_at.isoformat(timespec="microseconds"),
                json.dumps(lineage.model_dump(mode="json")),
            ),
        )
        await self._conn.commit()

    async def get_synthesis(self, synthesis_id: str) -> Optional[SynthesisLineage]:
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute(
            "SELECT record FROM synthesis_lineage WHERE synthesis_id = ?",
            (synthesis_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return SynthesisLineage.model_validate(json.loads(row["record"]))

    async def list_syntheses(self, user_id: str, limit: int, offset: int) -> List[SynthesisLineage]:
        """User's syntheses, most recent first"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute(
            """
            SELECT record FROM synthesis_lineage
            WHERE user_id = ?
            ORDER BY created_at DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, offset),
        )
        rows = await cursor.fetchall()
        return [SynthesisLineage.model_validate(json.loads(row["record"])) for row in rows]

    async def count_syntheses(self, user_id: str) -> int:
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM synthesis_lineage WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def all_syntheses(self) -> List[SynthesisLineage]:
        """Every synthesis, most recent first"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute(
            "SELECT record FROM synthesis_lineage ORDER BY created_at DESC"
        )
        rows = await cursor.fetchall()
        return [SynthesisLineage.model_validate(json.loads(row["record"])) for row in rows]

    async def all_recommendations(self) -> Dict[str, RecommendationLineage]:
        """Recommendation index keyed by recommendation id"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute("SELECT recommendation_id, record FROM recommendation_lineage")
        rows = await cursor.fetchall()
        return {
            row["recommendation_id"]: RecommendationLineage.model_validate(json.loads(row["record"]))
            for row in rows
        }

    async def clear(self) -> None:
        """Delete every lineage record"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        await self._conn.execute("DELETE FROM recommendation_lineage")
        await self._conn.execute("DELETE FROM synthesis_lineage")
        await self._conn.commit()
        logger.info("Lineage tables cleared")

    async def get_stats(self) -> dict[str, int]:
        """Row counts per table"""
        if not self._conn:
            raise RuntimeError("Database not connected")

        stats = {}
        for table in ("recommendation_lineage", "synthesis_lineage"):
            cursor = await self._conn.execute(f"SELECT COUNT(*) FROM {table}")
            row = await cursor.fetchone()
            stats[table] = row[0]
        return stats
