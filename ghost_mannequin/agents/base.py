"""Shared plumbing for the Azure OpenAI vision agents."""

import logging

import httpx
from agent_framework import ChatMessage, Content
from agent_framework.azure import AzureOpenAIResponsesClient
from azure.identity import AzureCliCredential

from ..errors import SchemaError
from ..utils.images import load_image_bytes
from ..utils.json_extract import extract_json_object

logger = logging.getLogger(__name__)


def response_text(response) -> str:
    """Concatenate the text parts of an agent response."""
    text = ""
    for msg in response.messages:
        for content in msg.contents:
            if getattr(content, "text", None):
                text += content.text
    return text


class VisionAgent:
    """Base for single-turn agents that read images and answer in JSON.

    Subclasses set ``agent_name`` and ``instructions``. The Azure client and
    the agent are created lazily so constructing a pipeline never touches
    the network or the credential chain.
    """

    agent_name = "VisionAgent"
    instructions = ""

    def __init__(
        self,
        endpoint: str | None = None,
        deployment_name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self.deployment_name = deployment_name
        self._client: AzureOpenAIResponsesClient | None = None
        self._agent = None
        self._http = http_client

    @property
    def client(self) -> AzureOpenAIResponsesClient:
        if self._client is None:
            kwargs = {}
            if self.endpoint:
                kwargs["endpoint"] = self.endpoint
            if self.deployment_name:
                kwargs["deployment_name"] = self.deployment_name
            self._client = AzureOpenAIResponsesClient(credential=AzureCliCredential(), **kwargs)
        return self._client

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=60.0)
        return self._http

    def _get_agent(self):
        """Lazy init for the agent."""
        if self._agent is None:
            self._agent = self.client.as_agent(
                name=self.agent_name,
                instructions=self.instructions,
            )
        return self._agent

    async def _ask(self, text: str, image_refs: list[str] | None = None) -> str:
        contents = [Content.from_text(text)]
        for ref in image_refs or []:
            image_bytes, mime_type = await load_image_bytes(ref, self.http)
            contents.append(Content.from_data(data=image_bytes, media_type=mime_type))

        message = ChatMessage(role="user", contents=contents)
        response = await self._get_agent().run(message)
        return response_text(response)

    async def _ask_json(self, text: str, image_refs: list[str] | None = None) -> dict:
        raw = await self._ask(text, image_refs)
        data = extract_json_object(raw)
        if data is None:
            logger.warning("%s returned no JSON object (%d chars)", self.agent_name, len(raw))
            raise SchemaError(f"{self.agent_name} returned no JSON object")
        return data

    async def close(self):
        if self._http:
            await self._http.aclose()
            self._http = None
