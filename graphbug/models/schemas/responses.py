from typing import Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    errorMessage: str
    status: str = "error"
    detail: Optional[str] = None
