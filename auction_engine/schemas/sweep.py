from pydantic import BaseModel


class SweepResponse(BaseModel):
    activated: int
    expired: int
    resolved: int
    failed: int
