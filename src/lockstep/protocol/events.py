from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt


class ProgressEvent(BaseModel):
    """Base for everything a tracker's subscribers can hear."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def is_terminal(self) -> bool:
        return False


class Sending(ProgressEvent):
    """
    Upload progress for the request body.
    """

    kind: Literal["sending"] = "sending"
    sent: NonNegativeInt
    size: NonNegativeInt

    @property
    def fraction(self) -> float:
        if self.size == 0:
            return 1.0
        return min(1.0, self.sent / self.size)


class Receiving(ProgressEvent):
    """
    Download progress for the response body.
    """

    kind: Literal["receiving"] = "receiving"
    received: NonNegativeInt
    size: NonNegativeInt | None = None
    """
    Total body size, when the server announced one.
    """

    @property
    def fraction(self) -> float | None:
        if self.size is None:
            return None
        if self.size == 0:
            return 1.0
        return min(1.0, self.received / self.size)


class Waiting(ProgressEvent):
    """
    A queued follow-up request was replaced by a newer one before it ran.
    """

    kind: Literal["waiting"] = "waiting"


class Outcome(ProgressEvent):
    """
    Terminal result of one exchange. Nothing follows it.
    """

    kind: Literal["outcome"] = "outcome"
    result: Any = Field(description="Ok(value) or Err(HttpError)")

    @property
    def is_terminal(self) -> bool:
        return True
