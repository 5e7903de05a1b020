"""Result of one external-program execution attempt."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ExecutionOutcome(BaseModel):
    """Success flag, output text and exit code of a single attempt."""

    model_config = ConfigDict(frozen=True)

    success: bool
    output: str
    exit_code: int

    @classmethod
    def ok(cls, output: str) -> ExecutionOutcome:
        return cls(success=True, output=output, exit_code=0)

    @classmethod
    def failed(cls, output: str, exit_code: int = 1) -> ExecutionOutcome:
        return cls(success=False, output=output, exit_code=exit_code)
