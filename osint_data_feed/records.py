from __future__ import annotations

import json
from typing import Any, Dict, List, Union


Scalar = Union[str, int, float, bool, None]
Record = Dict[str, Scalar]
RecordBatch = List[Record]


def to_scalar(value: Any) -> Scalar:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    # Nested arrays/objects are kept as JSON text
    return json.dumps(value, sort_keys=True)
