"""Agentic handoff footers appended to generated task text.

Every task but the last in a stage points at the next one through a
``prompt://<id>`` pointer so an autonomous consumer can chain through the
plan without polling. The last task gets a sequence-complete instruction.
"""

import json

HANDOFF_MARKER = "**AUTOMATED HANDOFF**"
SEQUENCE_COMPLETE_MARKER = "**SEQUENCE COMPLETE**"

_SEPARATOR = "\n\n---\n\n"


def handoff_pointer(task_id: str) -> str:
    """Machine-readable pointer to a task."""
    return json.dumps({"name": f"prompt://{task_id}"}, indent=2)


def handoff_footer(next_task_id: str, next_title: str) -> str:
    """Footer pointing at the next task of the sequence."""
    return (
        f"{_SEPARATOR}{HANDOFF_MARKER}:\n"
        "Great job! Your next task is ready.\n\n"
        "**INSTRUCTION**: Call the `mcp.prompts.get` tool (or equivalent) "
        "with the following argument to get your next instructions:\n\n"
        f"```json\n{handoff_pointer(next_task_id)}\n```\n\n"
        f'(Task Title: "{next_title}")'
    )


def sequence_complete_footer() -> str:
    """Footer for the final task of a stage."""
    return (
        f"{_SEPARATOR}{SEQUENCE_COMPLETE_MARKER}:\n"
        "All generated coding tasks for this stage are finished.\n\n"
        "**INSTRUCTION**: Now run the project (e.g. `npm run dev`), verify the "
        "functionality, and **debug** any issues that arise. "
        "You have full autonomy to fix bugs now."
    )


def has_footer(text: str) -> bool:
    """True if ``text`` already ends a chain link."""
    return HANDOFF_MARKER in text or SEQUENCE_COMPLETE_MARKER in text
