"""
generation.py
-------------

Answer generation on top of retrieved recipe chunks.

:class:`RecipeAnswerGenerator` builds prompts and interprets the
model's replies; the model itself is a ``complete(prompt) -> text``
callable.  :class:`ChatCompletion` is the OpenAI-backed implementation
of that callable.  A question is first routed (``list``, ``detail`` or
``general``); list questions are answered straight from the chunk
metadata, the others are rewritten into a sharper search query and
answered from the recipe context.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Sequence

import openai
from openai import OpenAI

from .embedding import create_openai_client
from .errors import GenerationFailure
from .utils import Document

logger = logging.getLogger(__name__)

CompleteFn = Callable[[str], str]

ROUTES = ("list", "detail", "general")

EMPTY_CONTEXT = "暂无相关食谱信息。"
NO_RESULTS_ANSWER = "抱歉，没有找到相关的菜品信息。"
CONTEXT_SEPARATOR = "\n" + "=" * 50 + "\n"

ROUTER_PROMPT = """根据用户的问题，将其分类为以下三种类型之一：

1. 'list' - 用户想要获取菜品列表或推荐
   例如：推荐几个素菜、有什么川菜、给我3个简单的菜

2. 'detail' - 用户想要具体的制作方法或详细信息
   例如：宫保鸡丁怎么做、制作步骤、需要什么食材

3. 'general' - 其他一般性问题
   例如：什么是川菜、制作技巧、营养价值

请只返回一个词：list、detail 或 general

用户问题: {query}"""

REWRITE_PROMPT = """你是一个查询优化助手。分析用户的查询，如果查询已经足够明确（包含具体菜名或明确意图），直接返回原查询。如果查询模糊，重写为更适合食谱搜索的查询。

原始查询: {query}

只输出最终查询，不要解释："""

BASIC_ANSWER_PROMPT = """你是一位专业的烹饪助手。请根据以下食谱信息回答用户的问题。

用户问题: {query}

相关食谱信息:
{context}

请提供详细、实用的回答。如果信息不足，请诚实说明。"""

STEP_BY_STEP_PROMPT = """你是一位专业的烹饪导师。请根据食谱信息，为用户提供详细的分步骤指导。

用户问题: {query}

相关食谱信息:
{context}

请按以下结构组织回答：
## 菜品介绍
## 所需食材
## 制作步骤
## 制作技巧（如有）

重点突出实用性和可操作性。"""


class ChatCompletion:
    """``complete(prompt) -> text`` backed by OpenAI's chat completion API.

    Parameters
    ----------
    model : str
        Which OpenAI chat model to use.
    temperature : float
        Sampling temperature for the language model.
    max_tokens : int
        Maximum number of tokens to generate.
    client : openai.OpenAI, optional
        A preconfigured client; created from the environment otherwise.
    """

    def __init__(self, model: str = "gpt-4o-mini", temperature: float = 0.1,
                 max_tokens: int = 2048, *, client: Optional[OpenAI] = None) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    self._client = create_openai_client()
        return self._client

    def __call__(self, prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as exc:
            logger.error("OpenAI chat completion failed: %s", exc)
            raise GenerationFailure(f"Chat completion failed: {exc}") from exc
        choice = response.choices[0]
        if getattr(choice, "finish_reason", None) == "length":
            logger.warning(
                "OpenAI completion stopped because of max_tokens limit; consider increasing max_tokens."
            )
        return choice.message.content or ""


class RecipeAnswerGenerator:
    """Turn a question and retrieved recipe chunks into an answer."""

    def __init__(self, complete: CompleteFn, *, context_max_length: int = 4000) -> None:
        self.complete = complete
        self.context_max_length = context_max_length

    def build_context(self, docs: Sequence[Document]) -> str:
        """Render documents as numbered recipe blocks.

        Blocks are added in order until the next one would exceed
        ``context_max_length`` characters.
        """
        if not docs:
            return EMPTY_CONTEXT
        parts: List[str] = []
        current_length = 0
        for number, doc in enumerate(docs, start=1):
            header = (
                f"【食谱 {number}】{doc.attributes.get('dishName', '')}"
                f" | 分类: {doc.attributes.get('category') or '未知'}"
                f" | 难度: {doc.attributes.get('difficulty') or '未知'}"
            )
            text = f"{header}\n{doc.text}\n"
            if current_length + len(text) > self.context_max_length:
                break
            parts.append(text)
            current_length += len(text)
        return CONTEXT_SEPARATOR.join(parts)

    def route_query(self, query: str) -> str:
        result = self.complete(ROUTER_PROMPT.format(query=query)).strip().lower()
        return result if result in ROUTES else "general"

    def rewrite_query(self, query: str) -> str:
        rewritten = self.complete(REWRITE_PROMPT.format(query=query)).strip()
        return rewritten or query

    def generate_list_answer(self, docs: Sequence[Document]) -> str:
        # Answered from metadata alone; no model call.
        if not docs:
            return NO_RESULTS_ANSWER
        names: List[str] = []
        for doc in docs:
            name = doc.attributes.get("dishName") or "未知菜品"
            if name not in names:
                names.append(name)
        lines = [f"{number}. {name}" for number, name in enumerate(names, start=1)]
        return "为您推荐以下菜品：\n" + "\n".join(lines)

    def generate_basic_answer(self, query: str, docs: Sequence[Document]) -> str:
        prompt = BASIC_ANSWER_PROMPT.format(query=query, context=self.build_context(docs))
        return self.complete(prompt)

    def generate_step_by_step_answer(self, query: str, docs: Sequence[Document]) -> str:
        prompt = STEP_BY_STEP_PROMPT.format(query=query, context=self.build_context(docs))
        return self.complete(prompt)

    def answer(self, query: str, docs: Sequence[Document]) -> str:
        """Answer ``query`` from ``docs``: route, then rewrite and generate.

        With no documents at all the "nothing found" answer is returned
        without consulting the model.
        """
        start = time.perf_counter()
        if not docs:
            logger.info("No recipe chunks retrieved for %r", query)
            return NO_RESULTS_ANSWER
        route = self.route_query(query)
        logger.info("Routed %r as %s", query, route)
        if route == "list":
            result = self.generate_list_answer(docs)
        else:
            rewritten = self.rewrite_query(query)
            if rewritten != query:
                logger.info("Rewrote query %r -> %r", query, rewritten)
            if route == "detail":
                result = self.generate_step_by_step_answer(rewritten, docs)
            else:
                result = self.generate_basic_answer(rewritten, docs)
        logger.info(
            "Answer [%s] generated in %.0fms (%d chars)",
            route,
            (time.perf_counter() - start) * 1000,
            len(result),
        )
        return result
