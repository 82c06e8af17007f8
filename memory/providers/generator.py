"""Reply generators.

A generator receives the assembled context plus the new user text and returns
the assistant reply. The ChatOpenAI implementation renders the context with
:func:`memory.prompts.context_prompt.build_context_prompt`.
"""
from __future__ import annotations

import time
from abc import ABC, abstractmethod

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from api.shared.exceptions import ExternalServiceError
from memory.models import AssembledContext
from memory.prompts.context_prompt import SYSTEM_PROMPT, build_context_prompt

logger = structlog.get_logger("memory.generator")


class Generator(ABC):
    @abstractmethod
    async def generate(self, context: AssembledContext, question: str) -> str:
        ...


class ChatOpenAIGenerator(Generator):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.model = model
        self.system_prompt = system_prompt
        self.llm = ChatOpenAI(
            model=model,
            temperature=temperature,
            openai_api_key=api_key or None,
        )

    async def generate(self, context: AssembledContext, question: str) -> str:
        prompt = build_context_prompt(context=context, question=question)
        start = time.time()
        try:
            message = await self.llm.ainvoke(
                [SystemMessage(content=self.system_prompt), HumanMessage(content=prompt)]
            )
        except Exception as e:
            raise ExternalServiceError("openai", str(e), {"model": self.model}) from e
        latency_ms = int((time.time() - start) * 1000)
        logger.info(
            "reply_generated",
            model=self.model,
            latency_ms=latency_ms,
            similar=len(context.similar),
            recent=len(context.recent),
        )
        return str(message.content)
