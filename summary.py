"""WhatsApp summary of a festival year, written by an external text generator."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Protocol, Sequence
from urllib.parse import quote

import requests
from fastapi.concurrency import run_in_threadpool

from errors import GenerationFailed
from schemas import SummaryRequest, TotalsSnapshot

logger = logging.getLogger(__name__)

WHATSAPP_SHARE_URL = "https://wa.me/?text="

PROMPT_TEMPLATE = """You are an expert in creating concise and informative summaries for sharing on WhatsApp.

Based on the following information about the village festival, create a summary that includes key details about collections, expenses, and upcoming events.
The summary should be engaging and easy to understand for all villagers. Present the financial details in a neat tabular format.

Total Collection: {totalCollection}
Total Expenses: {totalExpenses}
Remaining Balance: {remainingBalance}
Event List:
{events}

Reply with a JSON object of the form {{"summary": "<the summary text>"}}."""


class SummaryGenerator(Protocol):
    async def generate(self, request: Dict[str, Any]) -> Mapping[str, Any]:
        ...


def _plain(value: float):
    return int(value) if float(value).is_integer() else value


def render_prompt(request: Mapping[str, Any]) -> str:
    events = "\n".join(f"- {name}" for name in request["eventList"])
    return PROMPT_TEMPLATE.format(
        totalCollection=_plain(request["totalCollection"]),
        totalExpenses=_plain(request["totalExpenses"]),
        remainingBalance=_plain(request["remainingBalance"]),
        events=events,
    )


class OllamaSummaryGenerator:
    """Asks an Ollama-compatible ``/api/generate`` endpoint for ``{"summary": ...}``."""

    def __init__(self, base_url: str, model: str, timeout: float = 30.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._session = session or requests.Session()

    def _post(self, request: Dict[str, Any]) -> Mapping[str, Any]:
        resp = self._session.post(
            f"{self.base_url}/api/generate",
            json={
                "model": self.model,
                "prompt": render_prompt(request),
                "format": "json",
                "stream": False,
                "options": {"temperature": 0.3},
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        text = resp.json().get("response") or ""
        return json.loads(text)

    async def generate(self, request: Dict[str, Any]) -> Mapping[str, Any]:
        logger.debug("Calling Ollama model=%s events=%d", self.model, len(request["eventList"]))
        return await run_in_threadpool(self._post, request)


class SummaryComposer:
    def __init__(self, generator: SummaryGenerator):
        self._generator = generator

    @staticmethod
    def build_request(totals: TotalsSnapshot, program_names: Sequence[str]) -> Dict[str, Any]:
        request = SummaryRequest(
            total_collection=totals.total_collection,
            total_expenses=totals.total_expenses,
            remaining_balance=totals.remaining_balance,
            event_list=list(program_names),
        )
        return request.model_dump(by_alias=True)

    async def compose(self, totals: TotalsSnapshot, program_names: Sequence[str]) -> str:
        request = self.build_request(totals, program_names)
        try:
            response = await self._generator.generate(request)
        except Exception as exc:
            logger.error("Summary generation failed: %s (type: %s)", exc, type(exc).__name__)
            raise GenerationFailed("Could not generate the summary, please try again") from exc
        summary = response.get("summary") if isinstance(response, Mapping) else None
        if not isinstance(summary, str) or not summary.strip():
            logger.warning("Summary generator returned an unexpected response: %r", response)
            raise GenerationFailed("The summary service returned an unexpected response")
        return summary


def whatsapp_share_url(text: str) -> str:
    return WHATSAPP_SHARE_URL + quote(text, safe="")
