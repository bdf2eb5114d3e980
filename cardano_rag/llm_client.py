"""Ollama HTTP client used for embeddings and answer generation."""
from typing import Any, Dict, List

import httpx
import structlog

from cardano_rag import config

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the two Ollama endpoints the pipeline needs."""

    def __init__(self, base_url: str = None, timeout: float = None):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.OLLAMA_TIMEOUT

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a JSON payload and return the decoded body.

        Raises:
            httpx.HTTPError: On transport or HTTP status errors
        """
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "ollama_http_error",
                endpoint=endpoint,
                model=payload.get("model"),
                status_code=e.response.status_code,
            )
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_connection_error",
                endpoint=endpoint,
                base_url=self.base_url,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def embeddings(self, prompt: str, model: str = None) -> Dict:
        """Embed one text.

        Returns:
            Response dict with an 'embedding' list
        """
        model = model or config.EMBEDDING_MODEL
        logger.debug("ollama_embedding_request", model=model, prompt_length=len(prompt))
        return await self._post("/api/embeddings", {"model": model, "prompt": prompt})

    async def generate(self, prompt: str, model: str = None) -> str:
        """Answer a single prompt with the chat model.

        Args:
            prompt: Complete prompt, context included
            model: Model to use (defaults to config.CHAT_MODEL)

        Returns:
            Generated text, empty if the model returned no message
        """
        model = model or config.CHAT_MODEL
        logger.info("ollama_generate_request", model=model, prompt_length=len(prompt))

        data = await self._post(
            "/api/chat",
            {
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
            },
        )
        answer = data.get("message", {}).get("content", "")

        logger.info("ollama_generate_response", model=model, answer_length=len(answer))
        return answer

    async def list_models(self) -> List[str]:
        """Names of the models the Ollama server has pulled.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
        return [m["name"] for m in response.json().get("models", [])]


# Global client instance
ollama_client = OllamaClient()
