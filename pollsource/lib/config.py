"""Source operator configuration.

Recognized options:
    store_url   (storeUrl)          connection string / DSN, required
    driver      (driverIdentifier)  DB-API module name, required
    table_name  (tableName)         required unless ``query`` is set or
                                    ``multi_table`` mapping is supplied
    batch_size  (batchSize)         default 1000, advisory only

Example:
    config = SourceConfig(
        store_url="DRIVER={ODBC Driver 18 for SQL Server};SERVER=db;DATABASE=Sales",
        driver="pyodbc",
        table_name="dbo.Orders",
        user="${DB_USER}",
        password="${DB_PASSWORD}",
    )
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from pollsource.lib.errors import ConfigurationError

__all__ = ["DEFAULT_BATCH_SIZE", "SourceConfig"]

DEFAULT_BATCH_SIZE = 1000


def _format_issue(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    if error.get("type") == "extra_forbidden":
        return f"unrecognized option: {location}"

    message = str(error.get("msg", "invalid value"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return f"{location}: {message}" if location else message


class SourceConfig(BaseModel):
    """Validated settings for one polling source.

    Accepts snake_case field names and the camelCase option names used in
    YAML files. Any validation failure is raised as ``ConfigurationError``
    listing every issue pydantic found.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    store_url: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("store_url", "storeUrl", "dbUrl", "url"),
        description="Connection string or DSN",
    )
    driver: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("driver", "driverIdentifier", "dbDriver"),
        description="DB-API module name or alias",
    )
    table_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("table_name", "tableName", "table"),
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        ge=1,
        validation_alias=AliasChoices("batch_size", "batchSize"),
        description="Rows fetched per driver round trip",
    )

    query: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    cursor_column: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("cursor_column", "cursorColumn")
    )
    name: Optional[str] = None
    multi_table: bool = Field(
        default=False, validation_alias=AliasChoices("multi_table", "multiTable")
    )
    connect_options: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("connect_options", "connectOptions"),
    )

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as exc:
            label = data.get("name") or data.get("table_name") or data.get("tableName")
            raise ConfigurationError(
                f"Invalid source configuration for {label or 'source'}",
                issues=[_format_issue(error) for error in exc.errors()],
            ) from exc

    @field_validator("batch_size", mode="before")
    @classmethod
    def reject_bool_batch_size(cls, v: Any) -> Any:
        """Booleans are ints to Python but never a meaningful batch size."""
        if isinstance(v, bool):
            raise ValueError(f"batch_size must be an integer, got {v!r}")
        return v

    @model_validator(mode="after")
    def require_table_or_query(self) -> "SourceConfig":
        if not self.table_name and not self.query and not self.multi_table:
            raise ValueError(
                "table_name (tableName) is required unless a query or "
                "multi-table mapping is supplied"
            )
        return self

    @property
    def display_name(self) -> str:
        return self.name or self.table_name or "source"

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> "SourceConfig":
        """Build a config from a flat options dict, accepting camelCase aliases.

        Raises:
            ConfigurationError: On unknown options or invalid values
        """
        return cls(**options)
