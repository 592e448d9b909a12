"""
Assistant directory - resolve an assistant to its template, owner and category.

The directory tables belong to the assistant management service; this module
only reads them. Lookups accept either the platform assistant id or the voice
provider's assistant id, since provider webhooks only carry the latter.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from asyncpg import Pool

from call_analytics.models.schemas import AssistantProfile
from call_analytics.sql.aggregate_queries import SELECT_ASSISTANT_PROFILE_QUERY


logger = logging.getLogger(__name__)


class AssistantDirectory(ABC):

    @abstractmethod
    async def lookup(self, assistant_id: str) -> Optional[AssistantProfile]:
        """Return the assistant's profile, or None when unknown."""


class PostgresAssistantDirectory(AssistantDirectory):
    """Directory backed by the user_assistant and prompt_template tables."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def lookup(self, assistant_id: str) -> Optional[AssistantProfile]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(SELECT_ASSISTANT_PROFILE_QUERY, assistant_id)

        if row is None:
            logger.info(f"Assistant {assistant_id} not found in directory")
            return None

        return AssistantProfile(
            assistantId=row['assistant_id'],
            userId=row['user_id'],
            templateId=row['template_id'],
            providerAssistantId=row['vapi_assistant_id'],
            templateCategory=row['template_category'],
        )
