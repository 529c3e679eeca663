"""Import job payloads: the column mapping and job status views."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

REQUIRED_ROLES = ("date", "amount")
OPTIONAL_ROLES = ("description", "type", "category", "account")


class ImportMapping(BaseModel):
    """Assignment of semantic roles to CSV header names."""

    date: str = Field(..., description="Header of the transaction date column")
    amount: str = Field(..., description="Header of the signed amount column")
    description: str | None = None
    type: str | None = Field(None, description="Header of an income/expense text column")
    category: str | None = None
    account: str | None = None

    model_config = {"extra": "ignore"}

    @field_validator("date", "amount", mode="before")
    @classmethod
    def require_column(cls, v: str | None) -> str:
        if v is None or not str(v).strip():
            raise ValueError("column must be mapped")
        return str(v).strip()

    @field_validator("description", "type", "category", "account", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        # Form UIs submit "" for unmapped roles
        if v is None or not str(v).strip():
            return None
        return str(v).strip()

    def columns(self) -> dict[str, str]:
        """Return role -> header for every mapped role."""
        return {
            role: getattr(self, role)
            for role in REQUIRED_ROLES + OPTIONAL_ROLES
            if getattr(self, role)
        }


class ErrorDetail(BaseModel):
    row: int = Field(..., description="1-based file row number (header is row 1)")
    error: str


class ImportJobRead(BaseModel):
    id: str
    filename: str
    status: str = Field(..., description="PENDING|PROCESSING|COMPLETED|FAILED")
    progress: int = Field(0, description="0-100 percentage for UI progress bars")
    message: str | None = None
    mapping: dict | None = None
    total_rows: int = 0
    processed_rows: int = 0
    success_rows: int = 0
    error_rows: int = 0
    error_details: list[ErrorDetail] = Field(default_factory=list)
    omitted_errors: int = Field(0, description="Row errors not listed in error_details")
    error_message: str | None = None
    queue_state: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
