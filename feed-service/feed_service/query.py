"""
Fluent filter builder over the backend's REST collections
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .backend_client import BackendClient

RESERVED_CHARS = set(',.:()"')


def format_value(value: Any) -> str:
    """Render a scalar the way the REST filter grammar expects"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def quote_value(value: Any) -> str:
    """Render a value for use inside lists and logic groups"""
    text = format_value(value)
    if any(ch in RESERVED_CHARS for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def in_list(values: Iterable[Any]) -> str:
    return "(" + ",".join(quote_value(v) for v in values) + ")"


class Query:
    """
    Request against one collection.

    Filters accumulate; ``execute()`` sends the request. Several ``or_``
    groups are combined into a single ``and=(or(...),or(...))`` parameter.
    """

    def __init__(self, client: "BackendClient", table: str):
        self.client = client
        self.table = table
        self.method = "GET"
        self.columns = "*"
        self.filters: List[Tuple[str, str]] = []
        self.or_groups: List[str] = []
        self.ordering: List[str] = []
        self.row_limit: Optional[int] = None
        self.is_single = False
        self.body: Any = None
        self.prefer: List[str] = []
        self.on_conflict: Optional[str] = None

    # Projection
    def select(self, columns: str = "*") -> "Query":
        self.columns = columns
        return self

    # Filters
    def _add(self, column: str, op: str, rendered: str) -> "Query":
        self.filters.append((column, f"{op}.{rendered}"))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self._add(column, "eq", format_value(value))

    def neq(self, column: str, value: Any) -> "Query":
        return self._add(column, "neq", format_value(value))

    def lt(self, column: str, value: Any) -> "Query":
        return self._add(column, "lt", format_value(value))

    def lte(self, column: str, value: Any) -> "Query":
        return self._add(column, "lte", format_value(value))

    def gt(self, column: str, value: Any) -> "Query":
        return self._add(column, "gt", format_value(value))

    def gte(self, column: str, value: Any) -> "Query":
        return self._add(column, "gte", format_value(value))

    def is_(self, column: str, value: Optional[bool]) -> "Query":
        return self._add(column, "is", format_value(value))

    def in_(self, column: str, values: Iterable[Any]) -> "Query":
        return self._add(column, "in", in_list(values))

    def contains(self, column: str, values: Iterable[Any]) -> "Query":
        rendered = "{" + ",".join(quote_value(v) for v in values) + "}"
        return self._add(column, "cs", rendered)

    def or_(self, expression: str) -> "Query":
        """Add a disjunction, e.g. ``community_id.is.null,community_id.in.(a,b)``"""
        self.or_groups.append(expression)
        return self

    # Shaping
    def order(self, column: str, desc: bool = False) -> "Query":
        self.ordering.append(f"{column}.{'desc' if desc else 'asc'}")
        return self

    def limit(self, count: int) -> "Query":
        self.row_limit = count
        return self

    def single(self) -> "Query":
        self.is_single = True
        return self

    # Mutations
    def insert(self, rows: Any) -> "Query":
        self.method = "POST"
        self.body = rows
        self.prefer.append("return=representation")
        return self

    def upsert(self, rows: Any, on_conflict: Optional[str] = None) -> "Query":
        self.method = "POST"
        self.body = rows
        self.on_conflict = on_conflict
        self.prefer.extend(["return=representation", "resolution=merge-duplicates"])
        return self

    def update(self, values: Dict[str, Any]) -> "Query":
        self.method = "PATCH"
        self.body = values
        self.prefer.append("return=representation")
        return self

    def delete(self) -> "Query":
        self.method = "DELETE"
        self.prefer.append("return=representation")
        return self

    def params(self) -> List[Tuple[str, str]]:
        """Query-string parameters in the order they were added"""
        params: List[Tuple[str, str]] = []
        if self.method == "GET" or self.columns != "*":
            params.append(("select", self.columns))
        params.extend(self.filters)
        if len(self.or_groups) == 1:
            params.append(("or", f"({self.or_groups[0]})"))
        elif self.or_groups:
            joined = ",".join(f"or({group})" for group in self.or_groups)
            params.append(("and", f"({joined})"))
        if self.ordering:
            params.append(("order", ",".join(self.ordering)))
        if self.row_limit is not None:
            params.append(("limit", str(self.row_limit)))
        if self.on_conflict:
            params.append(("on_conflict", self.on_conflict))
        return params

    def headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.prefer:
            headers["Prefer"] = ",".join(self.prefer)
        if self.is_single:
            headers["Accept"] = "application/vnd.pgrst.object+json"
        return headers

    async def execute(self) -> Any:
        """Send the request; returns a list of rows, or one row for ``single()``"""
        return await self.client.request(
            self.method,
            f"/rest/v1/{self.table}",
            params=self.params(),
            json=self.body,
            headers=self.headers(),
        )
