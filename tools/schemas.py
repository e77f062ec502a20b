"""Tool schema definitions, per-backend schema translation, and dispatch maps."""

import json
from typing import Any, Dict, List

from tools.file_ops import read_file, peek_file, write_file, list_files
from tools.search_ops import search_code
from tools.external_ops import execute_command, run_tests, web_search, create_plan, task_complete


# Neutral definitions in Anthropic Messages format; translated per backend below
TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "read_file",
        "description": "Read FULL file content. Use this when you need to EDIT a file. Always returns complete content - no truncation. For browsing/context without editing, use peek_file instead.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to read"},
                "start_line": {"type": "integer", "description": "Optional: Start line number (1-based). Use with end_line to read a specific range of a very large file."},
                "end_line": {"type": "integer", "description": "Optional: End line number (1-based). Use with start_line to read a specific range."},
            },
            "required": ["path"],
        },
    },
    {
        "name": "peek_file",
        "description": "Quick peek at file - returns summary with first/last lines. Use this for browsing/exploring files to understand structure. When you need to edit a file, use read_file to get full content.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to peek at"},
                "preview_lines": {"type": "integer", "description": "Optional: Number of lines to show from start/end (default: 50)"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "write_file",
        "description": "Write content to a file. The change becomes a pending diff that the user approves. For large files (>10K chars), use chunked writes: call multiple times with finalize=false, then once with finalize=true for the last chunk.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path to write"},
                "content": {"type": "string", "description": "File content (or chunk for large files)"},
                "mode": {"type": "string", "description": "Write mode: 'overwrite' (default) or 'append' to append to existing file"},
                "finalize": {"type": "boolean", "description": "If false, accumulate chunks. Set true on last chunk to write file. Default: true"},
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "list_files",
        "description": "List files and directories in a path",
        "input_schema": {
            "type": "object",
            "properties": {
                "directory_path": {"type": "string", "description": "Directory to list"},
            },
            "required": ["directory_path"],
        },
    },
    {
        "name": "search_code",
        "description": "Search for a literal pattern in the codebase",
        "input_schema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Search pattern"},
                "searchPath": {"type": "string", "description": "Optional: directory to search (default: project root)"},
            },
            "required": ["pattern"],
        },
    },
    {
        "name": "execute_command",
        "description": "Execute a shell command. Safe commands run automatically. Elevated commands need approval. Waits for pending file approvals first.",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command to execute"},
                "needs_elevation": {"type": "boolean", "description": "Whether the command requires elevated privileges (sudo, etc.)"},
            },
            "required": ["command"],
        },
    },
    {
        "name": "run_tests",
        "description": "Run the project's tests. Waits for pending file approvals first.",
        "input_schema": {
            "type": "object",
            "properties": {
                "framework": {"type": "string", "description": "npm (default), pytest, cargo or go"},
            },
        },
    },
    {
        "name": "create_plan",
        "description": "Create or update a task plan/to-do list. Use at start of complex tasks AND mid-task when you discover additional work needed.",
        "input_schema": {
            "type": "object",
            "properties": {
                "title": {"type": "string", "description": "Title of the plan"},
                "steps": {
                    "type": "array",
                    "description": "Array of task steps. Each step should have description, status, and order.",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string", "description": "Unique step ID (e.g., '1', '2', 'step_1')"},
                            "description": {"type": "string", "description": "Description of the task step"},
                            "status": {"type": "string", "enum": ["pending", "in-progress", "completed", "skipped"], "description": "Current status of the step"},
                            "order": {"type": "number", "description": "Order/sequence number (1, 2, 3, etc.)"},
                        },
                        "required": ["id", "description", "status", "order"],
                    },
                },
                "after_id": {"type": "string", "description": "Optional: Insert new steps after this step ID (for mid-workflow additions)"},
            },
            "required": ["title", "steps"],
        },
    },
    {
        "name": "task_complete",
        "description": "Call this when you have finished ALL requested tasks. This signals completion.",
        "input_schema": {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": "Brief summary of what was accomplished"},
            },
            "required": ["summary"],
        },
    },
    {
        "name": "web_search",
        "description": "Search the web for information, documentation, or solutions.",
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "max_results": {"type": "integer", "description": "Number of results to return (default: 5, max: 10)"},
            },
            "required": ["query"],
        },
    },
]


TOOL_IMPLEMENTATIONS = {
    "read_file": read_file,
    "peek_file": peek_file,
    "write_file": write_file,
    "list_files": list_files,
    "search_code": search_code,
    "create_plan": create_plan,
    "task_complete": task_complete,
    "execute_command": execute_command,
    "run_tests": run_tests,
    "web_search": web_search,
}

# Operations that observe files on disk; they wait for pending approvals first
DEPENDENT_TOOLS = frozenset({"run_tests", "execute_command"})

TOOL_NAMES = [t["name"] for t in TOOL_DEFINITIONS]


def to_gemini_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{
        "functionDeclarations": [
            {"name": t["name"], "description": t.get("description", ""), "parameters": t["input_schema"]}
            for t in tools
        ]
    }]


def to_openai_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t["input_schema"],
            },
        }
        for t in tools
    ]


def to_anthropic_tools(tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"name": t["name"], "description": t.get("description", ""), "input_schema": t["input_schema"]}
        for t in tools
    ]


def describe_tools(tools: List[Dict[str, Any]]) -> str:
    """Plain-text catalog for backends that receive tools through the system prompt."""
    lines = []
    for t in tools:
        props = t["input_schema"].get("properties", {})
        required = set(t["input_schema"].get("required", []))
        params = ", ".join(f"{name}{'' if name in required else '?'}" for name in props)
        lines.append(f"- {t['name']}({params}): {t.get('description', '')}")
        if props:
            lines.append(f"  parameters: {json.dumps(props)}")
    return "\n".join(lines)
