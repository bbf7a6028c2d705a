"""Enumerations for the dashboard's external record types.

Values match what the dashboard stores in its tables, so they are sent to
the database verbatim.
"""

from enum import StrEnum


class Table(StrEnum):
    """Tables the voice assistant writes to."""

    PROJECTS = "projects"
    SUBTASKS = "subtasks"
    SKILLS = "skills"
    TRANSACTIONS = "transactions"
    TODOS = "todos"


class ProjectCategory(StrEnum):
    APP_DEV = "App Development"
    AI = "AI Automation"
    ACADEMIC = "Academic Writing"
    MARKETING = "Digital Marketing"
    CHEM = "CADD/Computational Chemistry"
    OTHERS = "Others"


class SkillCategory(StrEnum):
    AI = "AI Automation"
    APP_DEV = "App Development & System Design"
    ACADEMIC = "Academic Publishing"
    MARKETING = "Digital Marketing"
    CHEM = "CADD/Computational Chemistry"
    OTHERS = "Others"


class SkillStatus(StrEnum):
    LEARNING = "Learning"
    PRACTICING = "Practicing"
    MASTERED = "Mastered"


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


# Status written on records created by voice
NEW_PROJECT_STATUS = "not started"
NEW_SUBTASK_STATUS = "not started"
