from __future__ import annotations

from typing import Any


def fetch_dicts(result: Any) -> list[dict[str, Any]]:
    """Return query results as dictionaries keyed by column name."""

    columns = [col[0] for col in result.description]
    return [dict(zip(columns, row)) for row in result.fetchall()]
