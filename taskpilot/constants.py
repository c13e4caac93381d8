"""
Shared constants for TaskPilot.

Centralizes the tool vocabulary exposed to the remote assistant, so the
router, the dispatcher and ``configure_assistant`` agree on names and
argument shapes.
"""

from typing import Any, Dict, List, Tuple

# ── Tool names ──
CREATE_TASK = "create_task"
UPDATE_TASK = "update_task"
DELETE_TASK = "delete_task"
GET_TASKS = "get_tasks"
ANALYZE_PRODUCTIVITY = "analyze_productivity"

TOOL_NAMES: Tuple[str, ...] = (
    CREATE_TASK, UPDATE_TASK, DELETE_TASK, GET_TASKS, ANALYZE_PRODUCTIVITY,
)

# ── Priorities ──
PRIORITY_LOW = "low"
PRIORITY_MEDIUM = "medium"
PRIORITY_HIGH = "high"
PRIORITIES: Tuple[str, ...] = (PRIORITY_HIGH, PRIORITY_MEDIUM, PRIORITY_LOW)
DEFAULT_PRIORITY = PRIORITY_MEDIUM

_PRIORITY_PROPERTY = {
    "type": "string",
    "enum": [PRIORITY_LOW, PRIORITY_MEDIUM, PRIORITY_HIGH],
}

TOOL_SCHEMAS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": CREATE_TASK,
            "description": "Create a new task for the user",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "The title of the task"},
                    "description": {
                        "type": "string",
                        "description": "Optional detailed description of the task",
                    },
                    "priority": {**_PRIORITY_PROPERTY, "description": "Priority level of the task"},
                    "dueDate": {
                        "type": "string",
                        "description": "Due date in ISO format (YYYY-MM-DD)",
                    },
                },
                "required": ["title"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": UPDATE_TASK,
            "description": "Update an existing task",
            "parameters": {
                "type": "object",
                "properties": {
                    "taskId": {"type": "string", "description": "ID of the task to update"},
                    "title": {"type": "string", "description": "New title for the task"},
                    "description": {"type": "string", "description": "New description for the task"},
                    "priority": {**_PRIORITY_PROPERTY, "description": "New priority level"},
                    "dueDate": {
                        "type": "string",
                        "description": "New due date in ISO format (YYYY-MM-DD)",
                    },
                    "completed": {"type": "boolean", "description": "Mark task as completed or not"},
                },
                "required": ["taskId"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": DELETE_TASK,
            "description": "Delete a task",
            "parameters": {
                "type": "object",
                "properties": {
                    "taskId": {"type": "string", "description": "ID of the task to delete"},
                },
                "required": ["taskId"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": GET_TASKS,
            "description": "Get tasks with optional filtering",
            "parameters": {
                "type": "object",
                "properties": {
                    "priority": {**_PRIORITY_PROPERTY, "description": "Filter by priority"},
                    "completed": {"type": "boolean", "description": "Filter by completion status"},
                    "dueBefore": {
                        "type": "string",
                        "description": "Filter by due date before this date (YYYY-MM-DD)",
                    },
                    "dueAfter": {
                        "type": "string",
                        "description": "Filter by due date after this date (YYYY-MM-DD)",
                    },
                },
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": ANALYZE_PRODUCTIVITY,
            "description": "Analyze user productivity",
            "parameters": {
                "type": "object",
                "properties": {
                    "startDate": {
                        "type": "string",
                        "description": "Start date for the analysis period (YYYY-MM-DD)",
                    },
                    "endDate": {
                        "type": "string",
                        "description": "End date for the analysis period (YYYY-MM-DD)",
                    },
                },
            },
        },
    },
]

ASSISTANT_INSTRUCTIONS = """You are a helpful task management assistant.
You can help users manage their tasks and analyze their productivity.

IMPORTANT: When users ask you to create tasks, ALWAYS use the create_task function. This is essential as users need to see the tasks in their task list.
Examples of when to create tasks:
- User asks "Create a task to buy groceries"
- User says "I need to finish my report by Friday"
- User mentions "Remind me to call mom tomorrow"

For task creation requests that are clear and specific, directly create the task without asking for confirmation.
For vague requests, ask clarifying questions to get necessary details.

When you create a task, tell the user that it has been added to their task list and they can view it there.

Some actions (such as deleting a task) need the user's confirmation. When a tool returns a pending_approval status, tell the user the action is waiting for their confirmation.

Always prioritize helping users stay organized and productive."""

PENDING_APPROVAL_MESSAGE = (
    "This action requires user confirmation before it can be performed. "
    "It has been queued for the user's approval."
)
