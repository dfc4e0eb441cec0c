"""Project templates used to seed new memory projects.

Each template is an ordered set of table schemas. Schemas follow the
Revisium table rules:
- Root is type "object" with additionalProperties false
- Every field is listed in "required"
- string/number/boolean fields carry a default; arrays and objects do not
"""

from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_TEMPLATE = "agent-memory"


def _string(description: str = "", **extra: Any) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string", "default": ""}
    if description:
        schema["description"] = description
    schema.update(extra)
    return schema


def _number(description: str = "", default: float = 0) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "number", "default": default}
    if description:
        schema["description"] = description
    return schema


def _boolean(description: str = "") -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "boolean", "default": False}
    if description:
        schema["description"] = description
    return schema


def _tags() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string", "default": ""}}


def _table(**properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "additionalProperties": False,
        "required": list(properties),
    }


@dataclass
class Template:
    """A named set of table schemas for seeding a project.

    Attributes:
        name: Template name (e.g. "agent-memory")
        description: Human-readable summary
        version: Template version string
        tables: Table id -> JSON Schema, created in this order
    """

    name: str
    description: str
    version: str = "1.0.0"
    tables: dict[str, dict[str, Any]] = field(default_factory=dict)


AGENT_MEMORY = Template(
    name="agent-memory",
    description="Long-term memory for AI agents: facts, episodes and configuration",
    tables={
        "facts": _table(
            topic=_string("Short topic or category"),
            content=_string("The fact itself"),
            confidence=_number("Confidence from 0 to 1", default=1),
            source=_string("Where the fact came from"),
            tags=_tags(),
        ),
        "episodes": _table(
            summary=_string("What happened"),
            details=_string("Longer description", contentMediaType="text/markdown"),
            outcome=_string("Result or lesson learned"),
            timestamp=_string("When it happened", format="date-time"),
            tags=_tags(),
        ),
        "config": _table(
            key=_string("Configuration key"),
            value=_string("Configuration value"),
            description=_string("What the setting controls"),
        ),
    },
)

BOOKMARKS = Template(
    name="bookmarks",
    description="Saved links with notes and tags",
    tables={
        "bookmarks": _table(
            url=_string("Link target"),
            title=_string(),
            notes=_string(contentMediaType="text/markdown"),
            read=_boolean("Already read"),
            tags=_tags(),
        ),
    },
)

CONTACTS = Template(
    name="contacts",
    description="People and organizations",
    tables={
        "companies": _table(
            name=_string(),
            website=_string(),
            notes=_string(),
        ),
        "contacts": _table(
            name=_string(),
            email=_string(),
            phone=_string(),
            company=_string("Company row id", foreignKey="companies"),
            notes=_string(),
            tags=_tags(),
        ),
    },
)

EXPENSES = Template(
    name="expenses",
    description="Spending tracked by category",
    tables={
        "categories": _table(
            name=_string(),
            budget=_number("Monthly budget"),
        ),
        "expenses": _table(
            date=_string(format="date"),
            amount=_number(),
            currency=_string(),
            category=_string("Category row id", foreignKey="categories"),
            description=_string(),
        ),
    },
)

JOB_SEARCH = Template(
    name="job-search",
    description="Companies, applications and interviews",
    tables={
        "companies": _table(
            name=_string(),
            website=_string(),
            notes=_string(),
        ),
        "applications": _table(
            company=_string("Company row id", foreignKey="companies"),
            position=_string(),
            status=_string(
                enum=["wishlist", "applied", "interviewing", "offer", "rejected", ""]
            ),
            applied_at=_string(format="date"),
            notes=_string(contentMediaType="text/markdown"),
        ),
        "interviews": _table(
            application=_string("Application row id", foreignKey="applications"),
            date=_string(format="date-time"),
            interviewer=_string(),
            notes=_string(contentMediaType="text/markdown"),
        ),
    },
)

RESEARCH = Template(
    name="research",
    description="Sources and notes for a research topic",
    tables={
        "sources": _table(
            title=_string(),
            url=_string(),
            authors=_string(),
            summary=_string(contentMediaType="text/markdown"),
        ),
        "notes": _table(
            source=_string("Source row id", foreignKey="sources"),
            content=_string(contentMediaType="text/markdown"),
            tags=_tags(),
        ),
    },
)

TASKS = Template(
    name="tasks",
    description="Projects and to-do items",
    tables={
        "projects": _table(
            name=_string(),
            description=_string(),
        ),
        "tasks": _table(
            title=_string(),
            project=_string("Project row id", foreignKey="projects"),
            status=_string(enum=["todo", "in-progress", "done", ""]),
            priority=_number("1 (highest) to 5"),
            due=_string(format="date"),
            notes=_string(contentMediaType="text/markdown"),
        ),
    },
)

TEMPLATES: dict[str, Template] = {
    template.name: template
    for template in (AGENT_MEMORY, BOOKMARKS, CONTACTS, EXPENSES, JOB_SEARCH, RESEARCH, TASKS)
}

TEMPLATE_NAMES = list(TEMPLATES)


def get_template(name: str) -> Optional[Template]:
    """Look up a built-in template by name."""
    return TEMPLATES.get(name)
