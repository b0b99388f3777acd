from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from .errors import InvalidArguments, UnknownTool
from .models import ChatMessage


MESSAGES_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "messages": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "role": {
                        "type": "string",
                        "description": "Role of the message (e.g., system, user, assistant)",
                    },
                    "content": {
                        "type": "string",
                        "description": "The content of the message",
                    },
                },
                "required": ["role", "content"],
            },
            "description": "Array of conversation messages",
        },
    },
    "required": ["messages"],
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    model: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": MESSAGES_SCHEMA,
        }


TOOLS: Tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="perplexity_ask",
        description=(
            "Engages in a conversation using the Sonar API. "
            "Accepts an array of messages (each with a role and content) "
            "and returns a ask completion response from the Perplexity model."
        ),
        model="sonar-pro",
    ),
    ToolDefinition(
        name="perplexity_research",
        description=(
            "Performs deep research using the Perplexity API. "
            "Accepts an array of messages (each with a role and content) "
            "and returns a comprehensive research response with citations."
        ),
        model="sonar-deep-research",
    ),
    ToolDefinition(
        name="perplexity_reason",
        description=(
            "Performs reasoning tasks using the Perplexity API. "
            "Accepts an array of messages (each with a role and content) "
            "and returns a well-reasoned response using the sonar-reasoning-pro model."
        ),
        model="sonar-reasoning-pro",
    ),
)

TOOLS_BY_NAME: Dict[str, ToolDefinition] = {tool.name: tool for tool in TOOLS}


def tool_names() -> List[str]:
    return [tool.name for tool in TOOLS]


def list_tools() -> List[Dict[str, Any]]:
    """Describe the available tools for tools/list."""
    return [tool.to_dict() for tool in TOOLS]


def _describe_error(err: Dict[str, Any]) -> str:
    loc = err.get("loc") or ()
    field_name = str(loc[0]) if loc else "item"
    if err.get("type") == "missing":
        return f"'{field_name}' is required"
    return f"'{field_name}' {err.get('msg', 'is invalid').lower()}"


def validate(tool_name: str, arguments: Any) -> Tuple[ToolDefinition, List[Dict[str, Any]]]:
    """Resolve a tool and check its arguments.

    Returns the tool and the validated messages in the order given. Raises
    UnknownTool for an unregistered name and InvalidArguments naming the tool
    and the violated constraint otherwise.
    """
    tool = TOOLS_BY_NAME.get(tool_name)
    if tool is None:
        raise UnknownTool(f"Unknown tool: {tool_name}", tool_name=tool_name)

    if arguments is None:
        raise InvalidArguments(
            f"Invalid arguments for {tool.name}: 'messages' is required (no arguments provided)",
            tool_name=tool.name,
        )
    if not isinstance(arguments, dict):
        raise InvalidArguments(
            f"Invalid arguments for {tool.name}: arguments must be an object containing 'messages'",
            tool_name=tool.name,
        )
    if "messages" not in arguments:
        raise InvalidArguments(
            f"Invalid arguments for {tool.name}: 'messages' is required",
            tool_name=tool.name,
        )

    raw_messages = arguments["messages"]
    if not isinstance(raw_messages, list):
        raise InvalidArguments(
            f"Invalid arguments for {tool.name}: 'messages' must be an array",
            tool_name=tool.name,
        )

    messages: List[Dict[str, Any]] = []
    for index, item in enumerate(raw_messages):
        if not isinstance(item, dict):
            raise InvalidArguments(
                f"Invalid arguments for {tool.name}: 'messages[{index}]' must be an object with 'role' and 'content'",
                tool_name=tool.name,
            )
        try:
            message = ChatMessage.model_validate(item)
        except ValidationError as exc:
            problems = "; ".join(_describe_error(err) for err in exc.errors())
            raise InvalidArguments(
                f"Invalid arguments for {tool.name}: 'messages[{index}]' {problems}",
                tool_name=tool.name,
            ) from exc
        messages.append(message.model_dump())

    return tool, messages
