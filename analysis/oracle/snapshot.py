"""
ORACLE - Snapshot Sink

Builds the per-cycle AnalysisSnapshot and writes it to disk as JSON.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from shared import (
    AgentLogger,
    AnalysisSnapshot,
    ArbitrageOpportunity,
    DetectionConfig,
    NormalizedPrice,
    OpportunitySummary,
    SinkError,
)


def build_snapshot(
    detection: DetectionConfig,
    oracle_prices: list[NormalizedPrice],
    pool_prices: list[NormalizedPrice],
    opportunities: list[ArbitrageOpportunity],
    summary: OpportunitySummary,
    tokens_analyzed: list[str],
    analysis_time: str,
    version: str = "1.0.0",
) -> AnalysisSnapshot:
    """Assemble one cycle's output; lists are copied so the snapshot owns them."""
    return AnalysisSnapshot(
        detection=detection,
        oracle_prices=list(oracle_prices),
        pool_prices=list(pool_prices),
        opportunities=list(opportunities),
        summary=summary,
        analysis_time=analysis_time,
        tokens_analyzed=list(tokens_analyzed),
        version=version,
    )


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Replace ``path`` with ``payload`` so readers never see a partial file.

    The JSON is written to a temp file in the same directory, flushed to
    disk, then moved over the target with ``os.replace``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class JsonSnapshotSink:
    """File-backed snapshot store; each write fully replaces the last."""

    def __init__(self, path: str | Path):
        self.logger = AgentLogger("ORACLE-SINK")
        self.path = Path(path)

    def persist(self, snapshot: AnalysisSnapshot) -> None:
        """Write the snapshot. Raises SinkError on any I/O or encoding failure."""
        try:
            write_json_atomic(self.path, snapshot.to_dict())
        except (OSError, TypeError, ValueError) as e:
            raise SinkError(str(self.path), str(e)) from e

        self.logger.info(
            "Snapshot saved",
            path=str(self.path),
            opportunities=snapshot.summary.total_opportunities,
            best_spread=round(snapshot.summary.best_spread, 2),
        )

    def load(self) -> dict[str, Any] | None:
        """Read the last snapshot back; None if nothing has been written."""
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise SinkError(str(self.path), f"unreadable snapshot: {e}") from e
