from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ledgerbot.errors import InvalidArguments
from ledgerbot.models.schemas import ToolExecutionResult


@dataclass(frozen=True)
class ToolContext:
    """Execution environment supplied by the orchestrator, never by the tool."""

    user_id: int
    chat_id: int
    project_id: str
    project_name: str = ""
    payer_name: str = "User"
    participants: tuple[str, ...] = ()
    default_currency: str = "USD"
    message: str = ""


class ToolDefinition(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]


class ToolParams(BaseModel):
    """Arguments arrive camelCased from the decision engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TargetParams(ToolParams):
    target: Literal["last", "specific"] = Field(
        description='Target transaction: "last" for most recent, "specific" for by ID'
    )
    transaction_id: str | None = Field(
        default=None, description='Transaction ID (required if target is "specific")'
    )


class Tool(ABC):
    name: str
    description: str
    parameters: type[ToolParams]

    def validate(self, arguments: dict[str, Any]) -> ToolParams:
        try:
            return self.parameters.model_validate(arguments)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidArguments(f"{self.name}: {problems}") from e

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters.model_json_schema(),
        )

    @abstractmethod
    async def execute(self, args: Any, context: ToolContext) -> ToolExecutionResult: ...


def not_found(content: str) -> ToolExecutionResult:
    return ToolExecutionResult(success=False, content=content, error="Transaction not found")
