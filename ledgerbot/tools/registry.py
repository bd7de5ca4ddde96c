from typing import Any

from loguru import logger

from ledgerbot.errors import LedgerError, PersistenceFailure, ToolNotFound
from ledgerbot.llm.parser import TransactionParser
from ledgerbot.models.schemas import ToolExecutionResult
from ledgerbot.tools.base import Tool, ToolContext, ToolDefinition
from ledgerbot.tools.delete import DeleteTool
from ledgerbot.tools.modify import build_modify_tools
from ledgerbot.tools.query import QueryTool
from ledgerbot.tools.record import RecordTool
from ledgerbot.tools.resolver import TransactionResolver


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name!r} is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_all(self) -> list[Tool]:
        return list(self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        """What the decision engine is told about each tool."""
        return [tool.definition() for tool in self._tools.values()]

    async def execute(
        self, name: str, arguments: dict[str, Any], context: ToolContext
    ) -> ToolExecutionResult:
        """Validate ``arguments`` against the tool's schema and run it.

        Raises ToolNotFound and InvalidArguments; anything unexpected escaping
        the tool is re-raised as PersistenceFailure.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFound(name)

        args = tool.validate(arguments)
        logger.info("Tool {} args={}", name, args.model_dump(exclude_none=True))

        try:
            return await tool.execute(args, context)
        except LedgerError:
            raise
        except Exception as e:
            logger.exception("Tool {} failed", name)
            raise PersistenceFailure(f"{name} failed: {e}") from e


def build_registry(
    resolver: TransactionResolver,
    parser: TransactionParser,
    clarification_threshold: float = 0.7,
) -> ToolRegistry:
    """The fixed set of built-in tools, registered once at startup."""
    registry = ToolRegistry()
    registry.register(
        RecordTool(resolver.transactions, resolver.memory, parser, clarification_threshold)
    )
    registry.register(QueryTool(resolver.transactions))
    for tool in build_modify_tools(resolver):
        registry.register(tool)
    registry.register(DeleteTool(resolver))
    return registry
