"""Decision engine: one message + working memory -> one Decision.

The engine keeps no conversation state of its own; everything it needs is
passed in on each call. Failures degrade to a fixed text reply.
"""

import json

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from ledgerbot.llm.prompts import DECISION_SYSTEM_PROMPT
from ledgerbot.models.conversation import Decision, TextReply, ToolCall, WorkingMemory
from ledgerbot.models.schemas import CATEGORIES, utcnow
from ledgerbot.tools.base import ToolDefinition

FALLBACK_MESSAGE = "Sorry, something went wrong on my side. Please try again in a moment."
UNCLEAR_MESSAGE = "I couldn't understand that. Could you rephrase?"


def format_working_memory(memory: WorkingMemory) -> str:
    last = memory.last_transaction
    if last is None:
        sections = ["### Last Transaction\nNone (no recent transaction to reference)"]
    else:
        sections = [
            "### Last Transaction (can be modified/deleted)\n"
            f"- ID: {last.id}\n"
            f"- Merchant: {last.merchant}\n"
            f"- Amount: {last.amount} {last.currency}\n"
            f"- Category: {last.category}\n"
            f"- Created: {last.created_at.isoformat()}"
        ]

    pending = memory.pending_clarification
    if pending is not None:
        sections.append(
            "### Pending Clarification\n"
            f"- Transaction: {pending.transaction_id}\n"
            f"- Field: {pending.field}\n"
            f"- Original: {pending.original_value}"
        )
    return "\n\n".join(sections)


class DecisionEngine:
    def __init__(self, api_key: str, model: str, base_url: str = "https://openrouter.ai/api/v1"):
        self.client = AsyncOpenAI(base_url=base_url, api_key=api_key)
        self.model = model

    def build_messages(self, text: str, memory: WorkingMemory) -> list[dict]:
        today = utcnow().date()
        system = DECISION_SYSTEM_PROMPT.format(
            working_memory=format_working_memory(memory),
            today=today.isoformat(),
            year=today.year,
            categories=", ".join(CATEGORIES),
        )
        messages = [{"role": "system", "content": system}]
        messages.extend({"role": m.role, "content": m.content} for m in memory.recent_messages)
        messages.append({"role": "user", "content": text})
        return messages

    async def decide(
        self, text: str, memory: WorkingMemory, tools: list[ToolDefinition]
    ) -> Decision:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(text, memory),
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": tool.parameters,
                        },
                    }
                    for tool in tools
                ],
                tool_choice="auto",
                temperature=0,
            )
        except OpenAIError as e:
            logger.error("Decision request failed: {}", e)
            return TextReply(message=FALLBACK_MESSAGE)

        if not response.choices:
            logger.error("Decision response had no choices")
            return TextReply(message=FALLBACK_MESSAGE)

        message = response.choices[0].message
        if message.tool_calls:
            call = message.tool_calls[0]
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError as e:
                logger.error("Tool call {} had unreadable arguments: {}", call.function.name, e)
                return TextReply(message=UNCLEAR_MESSAGE)
            if not isinstance(arguments, dict):
                logger.error("Tool call {} arguments are not an object", call.function.name)
                return TextReply(message=UNCLEAR_MESSAGE)
            logger.info("Decision: tool {} {}", call.function.name, arguments)
            return ToolCall(name=call.function.name, arguments=arguments)

        return TextReply(message=message.content or UNCLEAR_MESSAGE)
