"""System instruction and intent schema sent when a voice session opens.

The function declarations are derived from the pydantic argument models in
``atelier.schemas.intents`` so that what the model is told to send and what
the dispatcher validates can never drift apart.
"""

import datetime as dt
import logging
from typing import Any

from atelier.schemas.intents import INTENT_ARGS, Intent, IntentArgs

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a helpful assistant for a freelancer's dashboard. Your goal is to \
help the user manage their projects, skills, finances, and tasks. Be concise \
and clear. When a date is mentioned like 'next Friday' or 'end of the month', \
convert it to a YYYY-MM-DD format based on the current date. \
When the user asks to add a task to a project, pass the project name as they \
said it; it does not need to be exact. \
Today's date is {today}.\
"""

# JSON-schema keys the Live API function declarations understand.
_KEPT_KEYS = ("type", "description", "enum", "items", "properties", "required")


def build_system_prompt(today: dt.date | None = None) -> str:
    """Return the system instruction with the current date embedded."""
    today = today or dt.date.today()
    return SYSTEM_PROMPT.format(today=today.isoformat())


def _inline(schema: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    """Resolve ``$ref``/``allOf`` and strip keys the Live API rejects."""
    if "$ref" in schema:
        target = defs[schema["$ref"].rsplit("/", 1)[-1]]
        merged = {**target, **{k: v for k, v in schema.items() if k != "$ref"}}
        return _inline(merged, defs)
    if "allOf" in schema and len(schema["allOf"]) == 1:
        merged = {**schema["allOf"][0], **{k: v for k, v in schema.items() if k != "allOf"}}
        return _inline(merged, defs)

    cleaned: dict[str, Any] = {k: schema[k] for k in _KEPT_KEYS if k in schema}
    if "properties" in cleaned:
        cleaned["properties"] = {
            name: _inline(prop, defs) for name, prop in cleaned["properties"].items()
        }
    if "items" in cleaned:
        cleaned["items"] = _inline(cleaned["items"], defs)
    return cleaned


def function_declaration(intent: Intent, args_model: type[IntentArgs]) -> dict[str, Any]:
    """Build one Live API function declaration from an argument model."""
    schema = args_model.model_json_schema(by_alias=True)
    defs = schema.get("$defs", {})
    parameters = _inline(
        {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        },
        defs,
    )
    return {
        "name": intent.value,
        "description": (args_model.__doc__ or "").strip(),
        "parameters": parameters,
    }


def build_function_declarations() -> list[dict[str, Any]]:
    """Return declarations for every intent, in enum order."""
    declarations = [function_declaration(intent, INTENT_ARGS[intent]) for intent in Intent]
    logger.debug("Built %d function declarations", len(declarations))
    return declarations
