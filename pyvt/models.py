"""Typed records for API responses."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import VtInvalidResponseError
from .utils import format_size, parse_iso_timestamp, val_web_url


def _require(data: Any, key: str, kind: str) -> Any:
    """Return ``data[key]`` or raise if the response lacks it."""
    if not isinstance(data, dict):
        raise VtInvalidResponseError(
            f"Expected a JSON object for {kind}, got {type(data).__name__}"
        )
    if data.get(key) is None:
        raise VtInvalidResponseError(f"Missing required field '{key}' in {kind}")
    return data[key]


@dataclass
class User:
    """The owner of a set of vals."""

    id: str
    username: str

    @classmethod
    def from_api_response(cls, data: Any) -> "User":
        return cls(
            id=str(_require(data, "id", "user")),
            username=str(_require(data, "username", "user")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "username": self.username}


@dataclass
class Val:
    """A named, versioned script stored on the platform."""

    id: str
    name: str
    code: str = ""
    version: Optional[int] = None
    privacy: Optional[str] = None
    readme: Optional[str] = None
    author: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api_response(cls, data: Any, require_code: bool = False) -> "Val":
        """Create a Val from an API object.

        Args:
            data: JSON object returned by the API
            require_code: Fail if the object has no ``code`` field

        Raises:
            VtInvalidResponseError: If ``id`` or ``name`` (or ``code`` when
                required) is missing
        """
        val_id = _require(data, "id", "val")
        name = _require(data, "name", "val")
        code = _require(data, "code", "val") if require_code else data.get("code")
        author = data.get("author") or {}
        return cls(
            id=str(val_id),
            name=str(name),
            code=code or "",
            version=data.get("version"),
            privacy=data.get("privacy"),
            readme=data.get("readme"),
            author=author.get("username") if isinstance(author, dict) else None,
            raw=data,
        )

    @property
    def slug(self) -> str:
        return f"{self.author}/{self.name}" if self.author else self.name

    @property
    def web_url(self) -> Optional[str]:
        if not self.author:
            return None
        return val_web_url(self.author, self.name)

    def to_row(self) -> dict[str, str]:
        """Row used by the list and search tables."""
        return {
            "slug": self.slug,
            "version": f"v{self.version}" if self.version is not None else "",
            "link": self.web_url or "",
        }


@dataclass
class Blob:
    key: str
    size: int = 0
    last_modified: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: Any) -> "Blob":
        return cls(
            key=str(_require(data, "key", "blob")),
            size=int(data.get("size") or 0),
            last_modified=data.get("lastModified"),
        )

    def to_row(self, human: bool = False) -> dict[str, str]:
        if human:
            modified = parse_iso_timestamp(self.last_modified)
            return {
                "key": self.key,
                "size": format_size(self.size),
                "lastModified": (
                    modified.strftime("%Y-%m-%d %H:%M:%S") if modified else ""
                ),
            }
        return {
            "key": self.key,
            "size": str(self.size),
            "lastModified": self.last_modified or "",
        }


@dataclass
class QueryResult:
    """Result of a SQL statement."""

    columns: list[str]
    rows: list[list[Any]]

    @classmethod
    def from_api_response(cls, data: Any) -> "QueryResult":
        columns = _require(data, "columns", "query result")
        rows = _require(data, "rows", "query result")
        if not isinstance(columns, list) or not isinstance(rows, list):
            raise VtInvalidResponseError("Query result columns/rows must be lists")
        return cls(columns=[str(c) for c in columns], rows=rows)

    def to_dict(self) -> dict[str, Any]:
        return {"columns": self.columns, "rows": self.rows}
