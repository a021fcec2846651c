"""
aggregator.py

count / sum / avg / min / max over a list of records.

Numeric fields go through the codec's numeric rules. Values that are not
numbers are skipped and counted in `skipped`, never turned into zero.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from data.errors import QueryError
from data.row_codec import to_number

logger = logging.getLogger(__name__)

OPERATIONS = ("count", "sum", "avg", "min", "max")


@dataclass(frozen=True)
class AggregateResult:
    operation: str
    field: Optional[str]
    value: Optional[float]
    count: int
    skipped: int = 0


def aggregate(records: Sequence[Dict[str, Any]], operation: str, field: Optional[str] = None) -> AggregateResult:
    if operation not in OPERATIONS:
        raise QueryError(f"Unknown aggregation operation: {operation}")

    if operation == "count":
        return AggregateResult("count", field, len(records), len(records))

    if not field:
        raise QueryError(f"Field is required for {operation} operation")

    numbers = []
    skipped = 0
    for record in records:
        number = to_number(record.get(field))
        if number is None:
            skipped += 1
        else:
            numbers.append(number)

    if skipped:
        logger.debug("%s(%s): skipped %d non-numeric values", operation, field, skipped)

    if operation == "sum":
        value = sum(numbers)
    elif not numbers:
        value = None
    elif operation == "avg":
        value = sum(numbers) / len(numbers)
    elif operation == "min":
        value = min(numbers)
    else:
        value = max(numbers)

    return AggregateResult(operation, field, value, len(numbers), skipped)
