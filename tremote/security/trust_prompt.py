"""Serializes interactive trust decisions into one active prompt.

Policy when a second challenge arrives while one is pending: the newer
challenge wins and the earlier one is answered ``rejected`` immediately.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from tremote.security.trust_models import (
    TrustChallenge,
    TrustDecision,
    TrustDecisionHandler,
)
from tremote.utils.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrustPrompt:
    """A challenge waiting for the user."""

    challenge: TrustChallenge
    prompt_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)


@dataclass
class _PendingPrompt:
    prompt: TrustPrompt
    future: asyncio.Future[TrustDecision]


class TrustPromptCoordinator:
    """Holds at most one outstanding trust prompt."""

    def __init__(self, history_size: int = 100):
        self._active: _PendingPrompt | None = None
        self._subscribers: set[asyncio.Queue[TrustPrompt]] = set()
        self.history: deque[tuple[TrustPrompt, TrustDecision]] = deque(
            maxlen=history_size
        )

    @property
    def current_prompt(self) -> TrustPrompt | None:
        if self._active is None:
            return None
        return self._active.prompt

    def make_handler(self) -> TrustDecisionHandler:
        """Decision handler that routes challenges through this coordinator."""

        async def handler(challenge: TrustChallenge) -> TrustDecision:
            return await self.request(challenge)

        return handler

    async def request(self, challenge: TrustChallenge) -> TrustDecision:
        """Publish ``challenge`` and wait for its decision.

        A cancelled wait releases the slot and counts as ``rejected``.
        """
        future: asyncio.Future[TrustDecision] = asyncio.get_running_loop().create_future()
        pending = _PendingPrompt(TrustPrompt(challenge), future)

        previous = self._active
        self._active = pending
        if previous is not None and not previous.future.done():
            logger.info(
                "Trust prompt for %s superseded by %s",
                previous.prompt.challenge.identity,
                challenge.identity,
            )
            previous.future.set_result(TrustDecision.REJECTED)

        self._publish(pending.prompt)

        decision = TrustDecision.REJECTED
        try:
            decision = await future
            return decision
        finally:
            if not future.done():
                future.cancel()
            if self._active is pending:
                self._active = None
            self.history.append((pending.prompt, decision))

    def resolve(self, decision: TrustDecision, prompt_id: str | None = None) -> bool:
        """Answer the active prompt.

        Args:
            decision: The user's answer
            prompt_id: When given, only the prompt with this id is answered

        Returns:
            True if a waiting challenge received the decision

        """
        pending = self._active
        if pending is None or pending.future.done():
            return False
        if prompt_id is not None and prompt_id != pending.prompt.prompt_id:
            logger.debug("Ignoring decision for stale prompt %s", prompt_id)
            return False
        pending.future.set_result(decision)
        return True

    def reject_pending(self) -> bool:
        """Reject whatever prompt is outstanding."""
        return self.resolve(TrustDecision.REJECTED)

    def _publish(self, prompt: TrustPrompt) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(prompt)

    async def prompts(self) -> AsyncIterator[TrustPrompt]:
        """Yield prompts as they are raised, starting with the current one."""
        queue: asyncio.Queue[TrustPrompt] = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            if self._active is not None and not self._active.future.done():
                yield self._active.prompt
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)
