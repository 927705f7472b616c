"""OpenAI chat-completions client for narration scripts.

Architecture Pattern:
    Simple HTTP client wrapper - no retry logic (handled by the orchestrator)
    Async-only interface using httpx.AsyncClient

Usage:
    from shortforge.clients.openai_script import OpenAIScriptClient

    client = OpenAIScriptClient(api_key="sk-...")
    script = await client.generate_script("Daisy care", target_words=300)
    await client.close()
"""

import httpx

from shortforge.utils.logging import get_logger

log = get_logger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"

SYSTEM_PROMPT = (
    "You are an expert content creator who specializes in creating engaging, "
    "educational YouTube video scripts. Write in a conversational tone that "
    "keeps viewers watching until the end."
)


def build_prompt(topic: str, target_words: int) -> str:
    return (
        f"Write a narration script about: {topic}\n\n"
        f"Requirements:\n"
        f"- About {target_words} words\n"
        f"- Open with a hook, then explain the topic in clear steps, then conclude\n"
        f"- Plain spoken text only: no headings, stage directions or speaker labels"
    )


class OpenAIScriptClient:
    """Generates narration scripts with the OpenAI chat completions API.

    Attributes:
        model: Chat model name (e.g., "gpt-4")
        temperature: Sampling temperature
        client: Async HTTP client for making requests
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4",
        temperature: float = 0.7,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.client = client or httpx.AsyncClient(base_url=OPENAI_BASE_URL, timeout=60.0)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    async def generate_script(self, topic: str, target_words: int) -> str:
        """Request a script of roughly target_words words.

        Raises:
            httpx.HTTPStatusError: If the API returns an HTTP error
            ValueError: If the response has no message content
        """
        response = await self.client.post(
            "/chat/completions",
            headers=self._headers,
            json={
                "model": self.model,
                "temperature": self.temperature,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(topic, target_words)},
                ],
            },
        )
        response.raise_for_status()

        choices = response.json().get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content or not content.strip():
            raise ValueError("OpenAI response contained no script content")

        script = content.strip()
        log.info("openai_script_received", model=self.model, words=len(script.split()))
        return script

    async def close(self) -> None:
        await self.client.aclose()
