"""Schemas for voice intents.

Covers: the enumerated intent set, one argument model per intent (validated
before any mutation), the call received from the model and the outcome
produced by the dispatcher.
"""

import datetime as dt
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from atelier.schemas.records import (
    ProjectCategory,
    SkillCategory,
    SkillStatus,
    TransactionType,
)


class Intent(StrEnum):
    """Intents the remote model may call."""

    CREATE_PROJECT = "create-project"
    CREATE_SKILL = "create-skill"
    CREATE_TRANSACTION = "create-transaction"
    CREATE_TASK = "create-task"
    CREATE_TODO = "create-todo"


# --- Per-intent arguments ---


class IntentArgs(BaseModel):
    """Base for intent arguments.

    Field aliases are the argument names advertised to the model, so
    ``populate_by_name`` lets tests build instances with Python names.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateProjectArgs(IntentArgs):
    """Adds a new client project. Status is set to "not started"."""

    name: str = Field(min_length=1, description="The name of the project.")
    client: str = Field(min_length=1, description="The name of the client.")
    deadline: dt.date = Field(
        description=(
            'The project deadline in YYYY-MM-DD format. Infer from spoken dates '
            'like "next Friday".'
        ),
    )
    category: ProjectCategory = Field(description="The category of the project.")


class CreateSkillArgs(IntentArgs):
    """Adds a new skill to track. Infer status as "Learning" unless specified."""

    name: str = Field(min_length=1, description="The name of the skill.")
    deadline: dt.date = Field(
        description="The target date for the skill in YYYY-MM-DD format.",
    )
    category: SkillCategory = Field(description="The category of the skill.")
    status: SkillStatus = Field(description="The current status of the skill.")


class CreateTransactionArgs(IntentArgs):
    """Adds a new financial transaction (income or expense)."""

    description: str = Field(min_length=1, description="A description of the transaction.")
    amount: float = Field(description="The amount of the transaction.")
    date: dt.date = Field(description="The date of the transaction in YYYY-MM-DD format.")
    type: TransactionType = Field(description="The type of transaction.")


class CreateTaskArgs(IntentArgs):
    """Adds a subtask to an existing project, found by (part of) its name."""

    text: str = Field(min_length=1, description="The content of the task.")
    project_name: str = Field(
        min_length=1,
        alias="project-name",
        description="The name, or part of the name, of the project the task belongs to.",
    )


class CreateTodoArgs(IntentArgs):
    """Adds a new task to the to-do list."""

    text: str = Field(min_length=1, description="The content of the to-do task.")


INTENT_ARGS: dict[Intent, type[IntentArgs]] = {
    Intent.CREATE_PROJECT: CreateProjectArgs,
    Intent.CREATE_SKILL: CreateSkillArgs,
    Intent.CREATE_TRANSACTION: CreateTransactionArgs,
    Intent.CREATE_TASK: CreateTaskArgs,
    Intent.CREATE_TODO: CreateTodoArgs,
}


# --- Calls and outcomes ---


class IntentCall(BaseModel):
    """One structured action request emitted by the remote model."""

    call_id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class IntentOutcome(BaseModel):
    """Result of executing exactly one IntentCall."""

    call_id: str
    name: str
    success: bool
    message: str
    record: dict[str, Any] | None = None
