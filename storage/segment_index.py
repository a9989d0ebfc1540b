import sqlite3
from typing import Iterable, List, Sequence

from pipeline.errors import IndexQueryError


SegmentRow = tuple[int, int, str, str]


class SegmentIndex:
    def __init__(self, db_path: str = "segments.db"):
        self.db_path = db_path

    # ---------- DB INIT ----------
    def init_db(self) -> None:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()

        cur.execute("""
            CREATE TABLE IF NOT EXISTS audio_segments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id TEXT NOT NULL,
                met_start INTEGER NOT NULL,
                met_end INTEGER NOT NULL,
                url TEXT NOT NULL,
                CHECK (met_end > met_start)
            )
        """)

        # Older databases may carry duplicate (channel_id, met_start) rows.
        # Keep the first one so the unique index can be created.
        cur.execute(
            """
            DELETE FROM audio_segments
            WHERE id NOT IN (
                SELECT MIN(id)
                FROM audio_segments
                GROUP BY channel_id, met_start
            )
            """
        )

        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_audio_segments_channel_start
            ON audio_segments(channel_id, met_start)
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_audio_segments_start
            ON audio_segments(met_start)
            """
        )

        conn.commit()
        conn.close()

    # ---------- WRITE ----------
    def add_segment(
        self,
        channel_id: str,
        start: int,
        end: int,
        url: str,
    ) -> int:
        """
        Inserts a segment row (idempotent per channel+start) and returns its row id.
        """
        return self.add_segments([(int(start), int(end), url, str(channel_id))])[0]

    def add_segments(self, rows: Iterable[SegmentRow]) -> List[int]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()

        ids: List[int] = []
        try:
            for start, end, url, channel_id in rows:
                if int(end) <= int(start):
                    raise ValueError(f"Segment end must be after start: {start}..{end}")

                cur.execute(
                    """
                    INSERT OR IGNORE INTO audio_segments (channel_id, met_start, met_end, url)
                    VALUES (?, ?, ?, ?)
                    """,
                    (str(channel_id), int(start), int(end), str(url)),
                )

                if cur.rowcount == 1:
                    ids.append(int(cur.lastrowid))
                    continue

                cur.execute(
                    "SELECT id FROM audio_segments WHERE channel_id = ? AND met_start = ?",
                    (str(channel_id), int(start)),
                )
                existing = cur.fetchone()
                if existing is None:
                    raise RuntimeError("Failed to resolve segment id after idempotent insert")
                ids.append(int(existing[0]))

            conn.commit()
        finally:
            conn.close()

        return ids

    # ---------- READ HELPERS ----------
    def query_overlapping(
        self,
        channels: Sequence[str],
        window_start: int,
        window_end: int,
    ) -> List[SegmentRow]:
        """
        Rows of (start, end, url, channel_id) for the given channels whose
        interval intersects [window_start, window_end), ordered by start.
        """
        if not channels:
            return []

        unique_channels = [str(c) for c in dict.fromkeys(channels)]
        placeholders = ",".join("?" for _ in unique_channels)
        sql = (
            "SELECT met_start, met_end, url, channel_id "
            f"FROM audio_segments WHERE channel_id IN ({placeholders}) "
            "AND met_end > ? AND met_start < ? "
            "ORDER BY met_start, id"
        )

        try:
            conn = sqlite3.connect(self.db_path)
            try:
                cur = conn.cursor()
                cur.execute(sql, [*unique_channels, int(window_start), int(window_end)])
                rows = cur.fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise IndexQueryError(f"Segment index query failed: {exc}") from exc

        return [(int(r[0]), int(r[1]), str(r[2]), str(r[3])) for r in rows]

    def list_channel_segments(
        self,
        channel_id: str,
        limit: int,
        offset: int,
    ) -> List[SegmentRow]:
        conn = sqlite3.connect(self.db_path)
        cur = conn.cursor()
        cur.execute(
            """
            SELECT met_start, met_end, url, channel_id
            FROM audio_segments
            WHERE channel_id = ?
            ORDER BY met_start
            LIMIT ? OFFSET ?
            """,
            (str(channel_id), int(limit), int(offset)),
        )
        rows = cur.fetchall()
        conn.close()

        return [(int(r[0]), int(r[1]), str(r[2]), str(r[3])) for r in rows]
