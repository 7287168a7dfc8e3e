from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any


def compute_performance(events: list[dict[str, Any]]) -> dict[str, Any]:
    requests = [e for e in events if e["type"] == "recommendation"]
    interactions = [e for e in events if e["type"] == "interaction"]
    total = len(requests)

    # Average response time
    times = [r["response_time_ms"] for r in requests if "response_time_ms" in r]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    # Per-algorithm figures
    grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
    for r in requests:
        grouped[r.get("algorithm", "unknown")].append(r)
    by_algorithm = {}
    for algorithm, rows in sorted(grouped.items()):
        served = sum(r.get("results_returned", 0) for r in rows)
        scores = [r["avg_score"] for r in rows if r.get("avg_score") is not None]
        alg_times = [r["response_time_ms"] for r in rows if "response_time_ms" in r]
        by_algorithm[algorithm] = {
            "requests": len(rows),
            "itemsServed": served,
            "emptyResults": sum(1 for r in rows if not r.get("results_returned")),
            "avgScore": round(sum(scores) / len(scores), 4) if scores else 0.0,
            "avgResponseTimeMs": round(sum(alg_times) / len(alg_times), 1) if alg_times else 0.0,
            "experimentRequests": sum(1 for r in rows if r.get("experiment_id")),
        }

    # Interaction counters
    type_counter: Counter[str] = Counter(i.get("interaction_type", "unknown") for i in interactions)
    source_counter: Counter[str] = Counter(i.get("source", "unknown") for i in interactions)
    positioned = [i["position"] for i in interactions if i.get("position") is not None]

    served_total = sum(r.get("results_returned", 0) for r in requests)
    clicks = type_counter.get("click", 0)

    return {
        "totalRequests": total,
        "avgResponseTimeMs": avg_time,
        "byAlgorithm": by_algorithm,
        "interactions": {
            "total": len(interactions),
            "byType": dict(type_counter),
            "bySource": dict(source_counter),
            "avgPosition": round(sum(positioned) / len(positioned), 2) if positioned else None,
        },
        "clickThroughRate": round(clicks / served_total, 4) if served_total else 0.0,
    }
