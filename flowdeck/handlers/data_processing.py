"""``data_processing`` steps: pure transforms over step results.

The ``processing_type`` config key selects the transform:

* ``filter``: keep records matching ``criteria``, either ``{field: value}``
  equality or a list of ``{field, op, value}`` clauses.
* ``sort``: order by ``criteria.field``; ``criteria.descending`` reverses.
* ``transform``: project with ``criteria.select`` and rename with
  ``criteria.rename``.
* ``aggregate``: count/sum/min/max/avg over ``criteria.field``.
* ``ranking``: weighted score over ``criteria`` fields, highest first.
* ``compilation``: assemble a report over everything gathered so far.

Any other value passes the data through unchanged.
"""

from __future__ import annotations

import logging
import math
import operator
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping

from ..constants import DEFAULT_RANKING_RESULTS
from ..models import Step
from .base import StepContext, StepHandler, config_value, get_path

logger = logging.getLogger(__name__)

_FILTER_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "in": lambda left, right: left in right,
    "contains": lambda left, right: right in left,
}


def _records(data: Any) -> List[Any]:
    if data is None:
        return []
    if isinstance(data, Mapping):
        return list(data.values())
    if isinstance(data, (list, tuple)):
        return list(data)
    return [data]


def _field(record: Any, field: str) -> Any:
    return get_path(record, field) if isinstance(record, Mapping) else None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def filter_records(data: Any, criteria: Any) -> List[Any]:
    if isinstance(criteria, Mapping):
        clauses = [{"field": k, "op": "==", "value": v} for k, v in criteria.items()]
    else:
        clauses = list(criteria or [])

    def matches(record: Any) -> bool:
        for clause in clauses:
            compare = _FILTER_OPS.get(clause.get("op", "=="))
            if compare is None:
                return False
            try:
                if not compare(_field(record, clause["field"]), clause.get("value")):
                    return False
            except TypeError:
                return False
        return True

    return [record for record in _records(data) if matches(record)]


def sort_records(data: Any, criteria: Mapping[str, Any]) -> List[Any]:
    records = _records(data)
    field = criteria.get("field")
    if not field:
        return records
    descending = bool(criteria.get("descending", False))
    present = [r for r in records if _field(r, field) is not None]
    missing = [r for r in records if _field(r, field) is None]
    try:
        present.sort(key=lambda r: _field(r, field), reverse=descending)
    except TypeError:
        present.sort(key=lambda r: str(_field(r, field)), reverse=descending)
    return present + missing


def transform_records(data: Any, criteria: Mapping[str, Any]) -> List[Any]:
    select = criteria.get("select")
    rename = criteria.get("rename") or {}
    transformed = []
    for record in _records(data):
        if not isinstance(record, Mapping):
            transformed.append(record)
            continue
        item = {k: v for k, v in record.items() if not select or k in select}
        transformed.append({rename.get(k, k): v for k, v in item.items()})
    return transformed


def aggregate_records(data: Any, criteria: Mapping[str, Any]) -> Dict[str, Any]:
    records = _records(data)
    field = criteria.get("field")
    if not field:
        return {"count": len(records)}
    values = [v for v in (_field(r, field) for r in records) if _is_number(v)]
    if not values:
        return {"count": 0, "sum": 0, "min": None, "max": None, "avg": None}
    total = sum(values)
    return {
        "count": len(values),
        "sum": total,
        "min": min(values),
        "max": max(values),
        "avg": total / len(values),
    }


def score_record(record: Any, weights: Mapping[str, float]) -> float:
    score = 0.0
    for field, weight in weights.items():
        value = _field(record, field)
        if isinstance(value, bool):
            score += weight * 20 if value else 0
        elif field == "followers" and _is_number(value):
            score += weight * math.log10(max(value, 0) + 1) * 20
        elif _is_number(value):
            score += weight * value
    return score


def rank_records(data: Any, criteria: Any, max_results: int) -> List[Dict[str, Any]]:
    if isinstance(criteria, Mapping):
        weights = {str(k): float(v) for k, v in criteria.items()}
    else:
        weights = {str(field): 1.0 for field in criteria or []}
    ranked = []
    for record in _records(data):
        entry = dict(record) if isinstance(record, Mapping) else {"value": record}
        entry["score"] = score_record(record, weights)
        ranked.append(entry)
    ranked.sort(key=lambda r: r["score"], reverse=True)
    return ranked[:max_results]


def compile_report(data: Any, results: Mapping[str, Any], include_metrics: bool) -> Dict[str, Any]:
    sections = ["Metrics", "Analysis", "Recommendations"] if include_metrics else ["Analysis"]
    keys = sorted(data.keys()) if isinstance(data, Mapping) else []
    return {
        "summary": {"steps": len(results), "keys": keys},
        "sections": sections,
        "data": data,
    }


class DataProcessingHandler(StepHandler):
    def source_data(self, step: Step, context: StepContext) -> Any:
        """Items to process: explicit inputs, a named source step, or all results."""
        inputs = context.inputs
        if "data" in inputs:
            return inputs["data"]
        source = config_value(step.config, "source")
        if source:
            return get_path(context.results.get(source), config_value(step.config, "path"))
        return dict(context.results)

    async def execute(self, step: Step, context: StepContext) -> Dict[str, Any]:
        config = step.config
        processing_type = config_value(config, "processing_type", "processingType")
        criteria = config.get("criteria") or {}
        data = self.source_data(step, context)
        logger.debug(f"Data processing {step.id}: {processing_type}")

        output: Dict[str, Any]
        if processing_type == "filter":
            items = filter_records(data, criteria)
            output = {"filtered_data": items, "total_processed": len(_records(data))}
        elif processing_type == "sort":
            items = sort_records(data, criteria)
            output = {"sorted_data": items, "total_processed": len(items)}
        elif processing_type == "transform":
            items = transform_records(data, criteria)
            output = {"transformed_data": items, "total_processed": len(items)}
        elif processing_type == "aggregate":
            output = {
                "aggregates": aggregate_records(data, criteria),
                "total_processed": len(_records(data)),
            }
        elif processing_type == "ranking":
            max_results = int(
                config_value(config, "max_results", "maxResults", default=DEFAULT_RANKING_RESULTS)
            )
            output = {
                "ranked_data": rank_records(data, criteria, max_results),
                "total_processed": len(_records(data)),
            }
        elif processing_type == "compilation":
            include_metrics = bool(
                config_value(config, "include_metrics", "includeMetrics", default=False)
            )
            output = {"report": compile_report(data, context.results, include_metrics)}
        else:
            return {"processed_data": data}

        output["processing_type"] = processing_type
        output["timestamp"] = datetime.now(timezone.utc).isoformat()
        return output


__all__ = [
    "DataProcessingHandler",
    "filter_records",
    "sort_records",
    "transform_records",
    "aggregate_records",
    "rank_records",
    "score_record",
    "compile_report",
]
