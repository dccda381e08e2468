"""
Voice sessions with the concierge (ElevenLabs conversational AI).

A short-lived agent is created per session with the voice persona, then a
signed WebSocket URL is fetched for it. If the URL cannot be obtained the
agent is deleted again.
"""

import logging
from typing import Any

import httpx
from fastapi import HTTPException, status

from aurelia.core.config import settings
from aurelia.services.persona import VOICE_FIRST_MESSAGE, VOICE_SYSTEM_PROMPT

logger = logging.getLogger("aurelia.voice")


class VoiceService:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    async def create_session(self, user_id: str) -> dict[str, Any]:
        """
        Returns:
            ``{"signed_url": ..., "agent_id": ...}``

        Raises:
            HTTPException: 503 without an API key, 502 when ElevenLabs fails.
        """
        if not settings.ELEVENLABS_API_KEY:
            logger.error("ELEVENLABS_API_KEY is not configured")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Voice service not configured")

        headers = {"xi-api-key": settings.ELEVENLABS_API_KEY}
        agent_config = {
            "name": f"Orla Session {user_id[:8]}",
            "conversation_config": {
                "agent": {
                    "prompt": {"prompt": VOICE_SYSTEM_PROMPT},
                    "first_message": VOICE_FIRST_MESSAGE,
                    "language": "en",
                },
                "tts": {"voice_id": settings.ELEVENLABS_VOICE_ID},
            },
        }

        async with httpx.AsyncClient(
            base_url=settings.ELEVENLABS_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=self.transport,
            headers=headers,
        ) as client:
            try:
                created = await client.post("/v1/convai/agents/create", json=agent_config)
            except httpx.HTTPError as e:
                logger.error("Failed to create voice agent: %s", e)
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create voice agent")
            if created.is_error:
                logger.error("Failed to create voice agent: %s %s", created.status_code, created.text)
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to create voice agent")

            agent_id = created.json()["agent_id"]
            logger.info("Created voice agent %s for %s", agent_id, user_id)

            try:
                signed = await client.get("/v1/convai/conversation/get-signed-url", params={"agent_id": agent_id})
                signed.raise_for_status()
                signed_url = signed.json()["signed_url"]
            except (httpx.HTTPError, KeyError, ValueError) as e:
                logger.error("Failed to get signed URL for agent %s: %s", agent_id, e)
                await self._delete_agent(client, agent_id)
                raise HTTPException(
                    status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to initialize voice session"
                )

        return {"signed_url": signed_url, "agent_id": agent_id}

    async def _delete_agent(self, client: httpx.AsyncClient, agent_id: str) -> None:
        try:
            await client.delete(f"/v1/convai/agents/{agent_id}")
        except httpx.HTTPError as e:
            logger.warning("Failed to delete voice agent %s: %s", agent_id, e)


# Global instance
voice_service = VoiceService()
