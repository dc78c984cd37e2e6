from typing import List, Optional

from .db_client import DatabaseClient
from .models import VARIANTS, PreflightResult, QueryCase


def check_case(client: DatabaseClient, case: QueryCase) -> List[PreflightResult]:
    """
    EXPLAIN both variants of a case without executing them, so SQL the
    engine rejects is reported before any timing run.
    """
    return [check_variant(client, case, variant) for variant in VARIANTS]


def check_variant(client: DatabaseClient, case: QueryCase, variant: str) -> PreflightResult:
    try:
        plan = client.explain(case.sql_for(variant))
    except ImportError:
        raise
    except Exception as exc:  # pylint: disable=broad-except
        message = str(exc).strip()
        return PreflightResult(
            case_id=case.id,
            variant=variant,
            ok=False,
            error_message=message,
            hint=hint_from_error(message),
        )
    return PreflightResult(case_id=case.id, variant=variant, ok=True, plan=plan)


def hint_from_error(message: Optional[str]) -> Optional[str]:
    if not message:
        return None
    msg = message.lower()
    if "group by" in msg or "must appear in the group" in msg or "ora-00979" in msg:
        return "Every selected column must be aggregated or listed in GROUP BY."
    if "syntax error" in msg or "ora-00933" in msg or "ora-00936" in msg:
        return "Check the statement syntax; the engine could not parse it."
    if "no such column" in msg or ("column" in msg and "does not exist" in msg) or "ora-00904" in msg:
        return "A referenced column does not exist; check aliases and table prefixes."
    if "no such table" in msg or "does not exist" in msg or "ora-00942" in msg:
        return "A referenced table or view does not exist in the target schema."
    if "permission" in msg or "privilege" in msg:
        return "Check the read grants of the configured database user."
    if "cancel" in msg or "interrupt" in msg or "timeout" in msg:
        return "The query was cancelled; raise runner.timeout_seconds or simplify the query."
    return None
