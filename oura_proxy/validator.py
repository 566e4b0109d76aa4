from datetime import date, datetime, timezone
from typing import Optional
import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from oura_proxy.errors import MalformedBodyError, MissingTokenError
from oura_proxy.resolver import Mode


class FetchRequest(BaseModel):
    """Request body for fetching check-in metrics."""
    model_config = ConfigDict(extra="ignore")

    token: str = Field(alias="ouraToken")
    requested_date: Optional[date] = Field(default=None, alias="date")
    mode: Mode = Mode.SINGLE_DATE

    @field_validator("requested_date", mode="before")
    @classmethod
    def parse_iso_date(cls, value):
        """Accept only YYYY-MM-DD strings (or null)."""
        if value is None or isinstance(value, date):
            return value
        if not isinstance(value, str):
            raise ValueError("date must be a YYYY-MM-DD string")
        if len(value) != 10 or value[4] != "-" or value[7] != "-":
            raise ValueError("date must be a YYYY-MM-DD string")
        return date.fromisoformat(value)

    @field_validator("mode", mode="before")
    @classmethod
    def default_mode(cls, value):
        # An explicit null means the same as leaving mode out
        return Mode.SINGLE_DATE if value is None else value


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def validate_request(body: bytes, today: Optional[date] = None) -> FetchRequest:
    """
    Parse and validate a raw fetch request body.

    Args:
        body: Raw request body
        today: Date to use when the body has none (defaults to the UTC date)

    Returns:
        FetchRequest with requested_date always filled in

    Raises:
        MalformedBodyError: If the body is not a JSON object or a field is invalid
        MissingTokenError: If ouraToken is absent or empty
    """
    try:
        payload = json.loads(body) if body else None
    except (ValueError, RecursionError):
        raise MalformedBodyError("body is not valid JSON")

    if not isinstance(payload, dict):
        raise MalformedBodyError("expected a JSON object")

    token = payload.get("ouraToken")
    if token is None or (isinstance(token, str) and not token.strip()):
        raise MissingTokenError()

    try:
        request = FetchRequest.model_validate(payload)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "body"
        raise MalformedBodyError(f"{field}: {error['msg']}")

    if request.requested_date is None:
        request = request.model_copy(update={"requested_date": today or _utc_today()})
    return request
