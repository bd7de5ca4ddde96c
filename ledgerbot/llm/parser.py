import json

from loguru import logger
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from ledgerbot.errors import ExternalServiceFailure
from ledgerbot.llm.prompts import EXTRACTION_SYSTEM_PROMPT
from ledgerbot.models.schemas import CATEGORIES, ParseResult


class ParseContext(BaseModel):
    participants: list[str] = []
    default_currency: str = "USD"


def strip_code_fences(raw: str) -> str:
    if raw.startswith("```"):
        lines = [line for line in raw.split("\n") if not line.startswith("```")]
        raw = "\n".join(lines)
    return raw


class TransactionParser:
    """Field extraction: free text -> merchant, amount, currency, category."""

    def __init__(self, api_key: str, model: str, base_url: str = "https://openrouter.ai/api/v1"):
        self.client = AsyncOpenAI(base_url=base_url, api_key=api_key)
        self.model = model

    async def parse(self, text: str, context: ParseContext) -> ParseResult:
        system = EXTRACTION_SYSTEM_PROMPT.replace("{categories}", ", ".join(CATEGORIES))
        context_text = (
            f"Default currency: {context.default_currency}\n"
            f"Participants: {', '.join(context.participants) or 'none'}"
        )
        messages = [
            {"role": "system", "content": system},
            {"role": "system", "content": context_text},
            {"role": "user", "content": text},
        ]

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.1,
            )
        except OpenAIError as e:
            logger.error("Field extraction request failed: {}", e)
            raise ExternalServiceFailure("Field extraction unavailable") from e

        raw = strip_code_fences((response.choices[0].message.content or "").strip())
        logger.debug("Extraction raw response: {}", raw)

        try:
            return ParseResult.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to parse extraction response: {}", e)
            raise ExternalServiceFailure("Could not read the extracted fields") from e
