"""
Tool definitions and implementations for the orchestration core.
Each tool has a neutral schema and an implementation returning a ToolResult.
Tools use a Backend abstraction for file and command operations.
"""

from tools._common import ToolResult  # noqa: F401
from tools.gitignore import invalidate_gitignore_cache  # noqa: F401
from tools.file_ops import read_file, peek_file, write_file, list_files  # noqa: F401
from tools.search_ops import search_code  # noqa: F401
from tools.external_ops import (  # noqa: F401
    execute_command,
    run_tests,
    web_search,
    create_plan,
    task_complete,
)
from tools.schemas import (  # noqa: F401
    TOOL_DEFINITIONS,
    TOOL_IMPLEMENTATIONS,
    TOOL_NAMES,
    DEPENDENT_TOOLS,
    to_gemini_tools,
    to_openai_tools,
    to_anthropic_tools,
    describe_tools,
)
from tools.approval import ApprovalGate, InMemoryApprovalGate, AutoApproveGate, PendingChange  # noqa: F401
from tools.dispatch import ToolDispatcher, APPROVAL_WAIT_MESSAGE  # noqa: F401
