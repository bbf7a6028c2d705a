"""Intent dispatcher — executes intent calls from the voice session.

Receives an IntentCall, validates its arguments against the intent's
argument model, derives any missing fields (project id, ordering position)
and performs exactly one database mutation. Every call yields exactly one
IntentOutcome; failures are reported in the outcome, never raised.
"""

import logging

from pydantic import ValidationError

from atelier.errors import (
    AmbiguousProject,
    IntentError,
    InvalidIntentArguments,
    ProjectNotFound,
    UnknownIntent,
)
from atelier.integrations.supabase import SupabaseClient, contains, eq
from atelier.schemas.intents import (
    INTENT_ARGS,
    CreateProjectArgs,
    CreateSkillArgs,
    CreateTaskArgs,
    CreateTodoArgs,
    CreateTransactionArgs,
    Intent,
    IntentArgs,
    IntentCall,
    IntentOutcome,
)
from atelier.schemas.records import NEW_PROJECT_STATUS, NEW_SUBTASK_STATUS, Table

logger = logging.getLogger(__name__)


async def dispatch(
    call: IntentCall,
    *,
    store: SupabaseClient,
    strict_project_match: bool = False,
) -> IntentOutcome:
    """Execute one intent call against the store.

    Args:
        call: The call emitted by the remote model.
        store: Database client exposing insert/select/select_max.
        strict_project_match: Reject project names matching several projects
            instead of taking the first match.

    Returns:
        IntentOutcome with a human-readable message for both success and failure.
    """
    logger.info("Executing intent %s(%s) call_id=%s", call.name, call.args, call.call_id)

    try:
        intent, args = parse_call(call)

        if intent == Intent.CREATE_PROJECT:
            message, record = await _create_project(args, store=store)
        elif intent == Intent.CREATE_SKILL:
            message, record = await _create_skill(args, store=store)
        elif intent == Intent.CREATE_TRANSACTION:
            message, record = await _create_transaction(args, store=store)
        elif intent == Intent.CREATE_TASK:
            message, record = await _create_task(
                args, store=store, strict_project_match=strict_project_match,
            )
        elif intent == Intent.CREATE_TODO:
            message, record = await _create_todo(args, store=store)
        else:
            raise UnknownIntent(call.name)

    except UnknownIntent as exc:
        logger.warning("Unknown intent %r", call.name)
        return IntentOutcome(call_id=call.call_id, name=call.name, success=False, message=str(exc))
    except Exception as exc:
        if not isinstance(exc, IntentError):
            logger.exception("Unexpected error executing %s", call.name)
        else:
            logger.warning("Intent %s failed: %s", call.name, exc)
        return IntentOutcome(
            call_id=call.call_id,
            name=call.name,
            success=False,
            message=f"Error executing {call.name}: {exc}",
        )

    logger.info("Intent %s succeeded: %s", call.name, message)
    return IntentOutcome(
        call_id=call.call_id, name=call.name, success=True, message=message, record=record,
    )


def parse_call(call: IntentCall) -> tuple[Intent, IntentArgs]:
    """Resolve the intent name and validate its arguments.

    Raises:
        UnknownIntent: The name is not in the enumerated set.
        InvalidIntentArguments: Arguments are missing or malformed.
    """
    try:
        intent = Intent(call.name)
    except ValueError:
        raise UnknownIntent(call.name) from None

    try:
        args = INTENT_ARGS[intent].model_validate(call.args)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidIntentArguments(f"invalid arguments ({problems})") from exc

    return intent, args


# ------------------------------------------------------------------
# Recipes
# ------------------------------------------------------------------


async def _create_project(args: CreateProjectArgs, *, store: SupabaseClient) -> tuple[str, dict]:
    record = {
        "name": args.name,
        "client": args.client,
        "deadline": args.deadline.isoformat(),
        "category": args.category.value,
        "status": NEW_PROJECT_STATUS,
    }
    row = await store.insert(Table.PROJECTS, record)
    return f"Successfully added project: {args.name}", {**record, **(row or {})}


async def _create_skill(args: CreateSkillArgs, *, store: SupabaseClient) -> tuple[str, dict]:
    record = {
        "name": args.name,
        "deadline": args.deadline.isoformat(),
        "category": args.category.value,
        "status": args.status.value,
    }
    row = await store.insert(Table.SKILLS, record)
    return f"Successfully added skill: {args.name}", {**record, **(row or {})}


async def _create_transaction(
    args: CreateTransactionArgs, *, store: SupabaseClient
) -> tuple[str, dict]:
    record = {
        "description": args.description,
        "amount": args.amount,
        "date": args.date.isoformat(),
        "type": args.type.value,
    }
    row = await store.insert(Table.TRANSACTIONS, record)
    return f"Successfully logged transaction: {args.description}", {**record, **(row or {})}


async def _create_task(
    args: CreateTaskArgs,
    *,
    store: SupabaseClient,
    strict_project_match: bool,
) -> tuple[str, dict]:
    project = await resolve_project(
        args.project_name, store=store, strict=strict_project_match,
    )
    position = await _next_position(store, Table.SUBTASKS, {"project_id": eq(project["id"])})
    record = {
        "name": args.text,
        "project_id": project["id"],
        "position": position,
        "status": NEW_SUBTASK_STATUS,
    }
    row = await store.insert(Table.SUBTASKS, record)
    message = f"Successfully added task '{args.text}' to project {project['name']}"
    return message, {**record, **(row or {})}


async def _create_todo(args: CreateTodoArgs, *, store: SupabaseClient) -> tuple[str, dict]:
    position = await _next_position(store, Table.TODOS, None)
    record = {"text": args.text, "completed": False, "position": position}
    row = await store.insert(Table.TODOS, record)
    return f"Successfully added to-do: {args.text}", {**record, **(row or {})}


# ------------------------------------------------------------------
# Derived fields
# ------------------------------------------------------------------


async def resolve_project(query: str, *, store: SupabaseClient, strict: bool = False) -> dict:
    """Find a project by case-insensitive partial name match.

    The first match wins unless ``strict`` is set, in which case several
    matches raise AmbiguousProject (an exact, case-insensitive name match
    among them still resolves).

    Raises:
        ProjectNotFound: Nothing matches.
        AmbiguousProject: ``strict`` and more than one project matches.
    """
    rows = await store.select(
        Table.PROJECTS,
        {"name": contains(query)},
        columns="id,name",
        limit=None if strict else 1,
    )
    if not rows:
        raise ProjectNotFound(query)

    if strict and len(rows) > 1:
        exact = [r for r in rows if r["name"].strip().lower() == query.strip().lower()]
        if len(exact) == 1:
            return exact[0]
        raise AmbiguousProject(query, [r["name"] for r in rows])

    if len(rows) > 1:
        logger.info("Project %r matched %d projects, using %r", query, len(rows), rows[0]["name"])
    return rows[0]


async def _next_position(store: SupabaseClient, table: str, filters) -> int:
    """Max existing position in scope + 1, or 0 when the scope is empty."""
    current = await store.select_max(table, filters, "position")
    return 0 if current is None else int(current) + 1
