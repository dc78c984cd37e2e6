from typing import Optional


class HarnessError(Exception):
    """Base class for errors raised by the comparison harness."""


class CaseNotFoundError(HarnessError, KeyError):
    def __init__(self, case_id: str) -> None:
        super().__init__(case_id)
        self.case_id = case_id

    def __str__(self) -> str:
        return "Unknown case id: %s" % self.case_id


class CaseFileError(HarnessError):
    pass


class QueryError(HarnessError):
    """
    The engine rejected the SQL or failed while running it.
    """

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class QueryTimeoutError(QueryError, TimeoutError):
    def __init__(self, timeout_seconds: float, message: Optional[str] = None) -> None:
        super().__init__(
            message or "Query cancelled after %.1f s" % timeout_seconds,
            hint="Raise runner.timeout_seconds or check the plan for full scans.",
        )
        self.timeout_seconds = timeout_seconds


class MismatchError(HarnessError):
    """
    Normalized result sets of the two variants differ. Carries the diff summary.
    """

    def __init__(self, case_id: str, diff) -> None:
        super().__init__(
            "Result sets differ for %s: %s" % (case_id, diff.summary())
        )
        self.case_id = case_id
        self.diff = diff
