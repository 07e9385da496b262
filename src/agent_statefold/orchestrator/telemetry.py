"""Turn telemetry for context orchestration."""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from statistics import mean
from typing import Any, Dict, List, Optional


@dataclass
class TurnMetrics:
    """Metrics for a single turn."""
    timestamp: str
    session_id: str
    turn_number: int
    state_key: str

    # Concepts
    concepts_extracted: int
    concepts_tracked: int
    related_concepts_added: int

    # Candidates
    candidates_scored: int
    contexts_selected: int
    contexts_dropped: int
    contexts_filtered: int
    contexts_clustered: int

    # Knowledge base
    knowledge_results: int
    knowledge_failures: int

    # Budget
    strategy: str
    tokens_used: int
    budget: int
    total_relevance: float

    # Performance
    latency_ms: float

    # Debug info
    top_contexts: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SessionMetrics:
    """Aggregated metrics for a session."""
    session_id: str
    start_time: str
    end_time: str
    total_turns: int

    total_tokens_used: int
    avg_budget_utilization: float
    strategies: Dict[str, int]
    states_visited: List[str]

    unique_contexts_used: int
    most_used_contexts: List[Dict[str, Any]]
    knowledge_failures: int

    avg_latency_ms: float
    p95_latency_ms: float
    max_latency_ms: float


class TelemetryLogger:
    """
    Logs structured telemetry for analysis.

    Writes JSONL (one JSON object per line) for easy parsing
    by agents, scripts, or data tools.
    """

    def __init__(
        self,
        log_path: str = "./statefold-telemetry.jsonl",
        max_file_size_mb: int = 50
    ):
        """
        Initialize telemetry logger.

        Args:
            log_path: Path to JSONL log file
            max_file_size_mb: Rotate file when it exceeds this size
        """
        self.log_path = Path(log_path)
        self.max_file_size = max_file_size_mb * 1024 * 1024
        self._session_turns: Dict[str, List[TurnMetrics]] = {}

    def log_turn(self, metrics: TurnMetrics):
        """Append one turn record."""
        self._maybe_rotate()
        self._write({"type": "turn", **asdict(metrics)})
        self._session_turns.setdefault(metrics.session_id, []).append(metrics)

    def log_session_end(self, session_id: str) -> Optional[SessionMetrics]:
        """
        Log session summary when session ends.

        Args:
            session_id: Session to summarize

        Returns:
            SessionMetrics if session had data
        """
        turns = self._session_turns.pop(session_id, [])
        if not turns:
            return None

        strategies: Dict[str, int] = {}
        for t in turns:
            strategies[t.strategy] = strategies.get(t.strategy, 0) + 1

        latencies = [t.latency_ms for t in turns]
        metrics = SessionMetrics(
            session_id=session_id,
            start_time=turns[0].timestamp,
            end_time=turns[-1].timestamp,
            total_turns=len(turns),
            total_tokens_used=sum(t.tokens_used for t in turns),
            avg_budget_utilization=mean(
                t.tokens_used / t.budget if t.budget else 0.0 for t in turns
            ),
            strategies=strategies,
            states_visited=sorted(set(t.state_key for t in turns)),
            unique_contexts_used=len(self._context_counts(turns)),
            most_used_contexts=self._get_most_used(turns),
            knowledge_failures=sum(t.knowledge_failures for t in turns),
            avg_latency_ms=mean(latencies),
            p95_latency_ms=self._percentile(latencies, 95),
            max_latency_ms=max(latencies),
        )

        self._write({"type": "session_summary", **asdict(metrics)})
        return metrics

    def get_summary(
        self,
        since: Optional[str] = None,
        session_id: Optional[str] = None,
        last_n_turns: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Get summary statistics.

        Args:
            since: ISO timestamp to filter from
            session_id: Filter to specific session
            last_n_turns: Only include last N turns

        Returns:
            Summary dict suitable for an agent to read and report
        """
        entries = self._read_entries(since, session_id)
        turns = [e for e in entries if e.get("type") == "turn"]

        if last_n_turns:
            turns = turns[-last_n_turns:]

        if not turns:
            return {
                "status": "no_data",
                "message": "No telemetry data found for the specified filters"
            }

        latencies = [t["latency_ms"] for t in turns]
        strategies: Dict[str, int] = {}
        for t in turns:
            strategies[t["strategy"]] = strategies.get(t["strategy"], 0) + 1

        return {
            "status": "ok",
            "period": {
                "start": turns[0]["timestamp"],
                "end": turns[-1]["timestamp"],
                "total_turns": len(turns)
            },
            "budget": {
                "total_tokens_used": sum(t["tokens_used"] for t in turns),
                "avg_tokens_per_turn": mean(t["tokens_used"] for t in turns),
                "avg_utilization": mean(
                    t["tokens_used"] / t["budget"] if t["budget"] else 0.0 for t in turns
                ),
                "strategies": strategies
            },
            "contexts": {
                "total_scored": sum(t["candidates_scored"] for t in turns),
                "total_selected": sum(t["contexts_selected"] for t in turns),
                "total_dropped": sum(t["contexts_dropped"] for t in turns),
                "total_filtered": sum(t["contexts_filtered"] for t in turns),
                "total_clustered": sum(t["contexts_clustered"] for t in turns),
                "avg_selected_per_turn": mean(t["contexts_selected"] for t in turns)
            },
            "knowledge": {
                "total_results": sum(t["knowledge_results"] for t in turns),
                "failures": sum(t["knowledge_failures"] for t in turns)
            },
            "concepts": {
                "avg_extracted": mean(t["concepts_extracted"] for t in turns),
                "avg_tracked": mean(t["concepts_tracked"] for t in turns)
            },
            "performance": {
                "avg_latency_ms": mean(latencies),
                "p50_latency_ms": self._percentile(latencies, 50),
                "p95_latency_ms": self._percentile(latencies, 95),
                "max_latency_ms": max(latencies)
            }
        }

    def format_summary(
        self,
        summary: Optional[Dict] = None,
        **kwargs
    ) -> str:
        """
        Format summary as human-readable text.

        Args:
            summary: Pre-computed summary, or compute with kwargs

        Returns:
            Formatted string for display
        """
        if summary is None:
            summary = self.get_summary(**kwargs)

        if summary.get("status") == "no_data":
            return "📊 No telemetry data found."

        b = summary["budget"]
        c = summary["contexts"]
        k = summary["knowledge"]
        p = summary["performance"]

        strategies = ", ".join(f"{name}={count}" for name, count in sorted(b["strategies"].items()))

        return f"""📊 Statefold Orchestration Summary
{'═' * 40}

Period: {summary['period']['start'][:10]} to {summary['period']['end'][:10]}
Turns:  {summary['period']['total_turns']}

Budget:
  Tokens used:      {b['total_tokens_used']:,} ({b['avg_tokens_per_turn']:.1f}/turn)
  Utilization:      {b['avg_utilization'] * 100:.1f}%
  Strategies:       {strategies}

Contexts:
  Scored:           {c['total_scored']:,}
  Selected:         {c['total_selected']:,} ({c['avg_selected_per_turn']:.1f}/turn)
  Dropped:          {c['total_dropped']:,}
  Below threshold:  {c['total_filtered']:,}
  Clustered:        {c['total_clustered']:,}

Knowledge base:
  Results:          {k['total_results']:,}
  Failures:         {k['failures']:,}

Latency:
  Average:          {p['avg_latency_ms']:.1f}ms
  P95:              {p['p95_latency_ms']:.1f}ms
  Max:              {p['max_latency_ms']:.1f}ms
"""

    def _write(self, entry: Dict[str, Any]):
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "a") as f:
            f.write(json.dumps(entry) + "\n")

    def _read_entries(
        self,
        since: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> List[Dict]:
        """Read and filter log entries."""
        if not self.log_path.exists():
            return []

        entries = []
        with open(self.log_path, "r") as f:
            for line in f:
                try:
                    entry = json.loads(line.strip())
                except json.JSONDecodeError:
                    continue

                if since and entry.get("timestamp", "") < since:
                    continue
                if session_id and entry.get("session_id") != session_id:
                    continue

                entries.append(entry)

        return entries

    def _maybe_rotate(self):
        """Rotate log file if too large."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size > self.max_file_size:
            old_path = self.log_path.with_suffix(".old.jsonl")
            if old_path.exists():
                old_path.unlink()
            self.log_path.rename(old_path)

    def _context_counts(self, turns: List[TurnMetrics]) -> Dict[str, Dict]:
        counts: Dict[str, Dict] = {}
        for turn in turns:
            for ctx in turn.top_contexts:
                key = ctx.get("key", "")
                if not key:
                    continue
                if key not in counts:
                    counts[key] = {"key": key, "source": ctx.get("source", ""), "count": 0}
                counts[key]["count"] += 1
        return counts

    def _get_most_used(self, turns: List[TurnMetrics], top_n: int = 5) -> List[Dict]:
        """Get most frequently selected contexts."""
        ranked = sorted(
            self._context_counts(turns).values(),
            key=lambda x: (-x["count"], x["key"])
        )
        return ranked[:top_n]

    def _percentile(self, data: List[float], p: float) -> float:
        """Calculate percentile."""
        if not data:
            return 0.0
        sorted_data = sorted(data)
        k = (len(sorted_data) - 1) * (p / 100)
        f = int(k)
        c = f + 1 if f + 1 < len(sorted_data) else f
        return sorted_data[f] + (k - f) * (sorted_data[c] - sorted_data[f])

    def clear(self):
        """Clear telemetry log."""
        if self.log_path.exists():
            self.log_path.unlink()
        self._session_turns.clear()
