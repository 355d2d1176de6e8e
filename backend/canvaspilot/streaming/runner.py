"""Session runner — drives one editing request from scene snapshot to executed actions.

snapshot -> context budget -> prompt -> gateway stream -> parser -> executor,
with the parser and executor invoked once per received fragment so actions
land on the scene while the model is still talking. When the gateway
restarts on another candidate mid-stream, parsing starts over and actions
that were already executed are not executed again. Every emitted event,
action and state change is also handed to the persistence hooks.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import AsyncIterator, Callable
from typing import Any

from canvaspilot.llm.context_budget import build_context
from canvaspilot.llm.gateway import ALL_FAILED_MESSAGE, ModelGateway, ProvidersExhaustedError, StreamRestart
from canvaspilot.llm.prompts import build_prompt
from canvaspilot.models.actions import ActionDescriptor, ActionResult
from canvaspilot.models.context import BudgetConfig, ConversationMessage
from canvaspilot.models.events import EventType, SessionState, StreamEvent
from canvaspilot.scene.engine import SceneEngine, SceneNode
from canvaspilot.scene.executor import ActionExecutor
from canvaspilot.scene.images import ImageLoader, ImageSearch
from canvaspilot.scene.indexer import index_scene
from canvaspilot.storage.persistence import PersistenceHooks
from canvaspilot.streaming.parser import IncrementalActionParser
from canvaspilot.streaming.session import StreamingSession

logger = logging.getLogger(__name__)

SceneDescriber = Callable[[], dict[str, Any]]


class SessionRunner:
    def __init__(
        self,
        gateway: ModelGateway,
        persistence: PersistenceHooks,
        budget_config: BudgetConfig,
        *,
        image_loader: ImageLoader | None = None,
        image_search: ImageSearch | None = None,
    ) -> None:
        self.gateway = gateway
        self.persistence = persistence
        self.budget_config = budget_config
        self.image_loader = image_loader
        self.image_search = image_search

    def executor_for(self, scene: SceneEngine) -> ActionExecutor:
        return ActionExecutor(scene, image_loader=self.image_loader, image_search=self.image_search)

    # ------------------------------------------------------------------
    # Events, state and persistence
    # ------------------------------------------------------------------

    async def _emit(self, session: StreamingSession, type: EventType, data: dict[str, Any] | None = None) -> StreamEvent:
        event = session.emit(type, data)
        try:
            await self.persistence.append_event(session.id, event)
        except Exception as e:
            logger.warning("Persisting event %s for %s FAILED: %s", event.type.value, session.id, e)
        return event

    async def _record_state(self, session: StreamingSession, **fields: Any) -> None:
        try:
            await self.persistence.update_session_state(session.id, session.state, **fields)
        except Exception as e:
            logger.warning("Persisting state %s for %s FAILED: %s", session.state.value, session.id, e)

    async def _transition(self, session: StreamingSession, state: SessionState, **fields: Any) -> None:
        session.transition(state, error=fields.get("error"))
        await self._record_state(session, **fields)

    async def _dispatch(
        self,
        session: StreamingSession,
        executor: ActionExecutor,
        action: ActionDescriptor,
        initial: list[SceneNode],
        results: list[ActionResult],
    ) -> StreamEvent:
        session.add_action(action)
        result = await executor.execute_in_batch(action, initial)
        results.append(result)
        try:
            await self.persistence.append_action(session.id, action)
        except Exception as e:
            logger.warning("Persisting action %s FAILED: %s", action.id, e)
        logger.info("  %s %s: %s", action.type, "ok" if result.success else "FAILED", result.message)
        data = action.model_dump(mode="json")
        data["result"] = {"success": result.success, "message": result.message}
        return await self._emit(session, EventType.ACTION, data)

    @staticmethod
    def _already_executed(action: ActionDescriptor, carried: Counter[str], attempt: Counter[str]) -> bool:
        """True when ``action`` repeats one executed by an abandoned attempt."""
        signature = action.signature()
        attempt[signature] += 1
        if carried[signature] > 0:
            carried[signature] -= 1
            return True
        return False

    async def _complete(
        self,
        session: StreamingSession,
        results: list[ActionResult],
        describe_scene: SceneDescriber | None,
    ) -> StreamEvent:
        await self._transition(
            session,
            SessionState.COMPLETED,
            provider_model=session.provider_model,
            actions_count=len(results),
        )
        data: dict[str, Any] = {
            "success": True,
            "provider_model": session.provider_model,
            "actions_count": len(results),
            "results": [r.model_dump(mode="json") for r in results],
        }
        if describe_scene is not None:
            data["scene"] = describe_scene()
        return await self._emit(session, EventType.COMPLETE, data)

    async def _fail(self, session: StreamingSession, message: str) -> StreamEvent:
        if not session.is_terminal:
            await self._transition(session, SessionState.ERROR, error=message)
        return await self._emit(session, EventType.ERROR, {"message": message})

    # ------------------------------------------------------------------
    # Model-driven path
    # ------------------------------------------------------------------

    async def run(
        self,
        session: StreamingSession,
        scene: SceneEngine,
        user_message: str,
        history: list[ConversationMessage],
        *,
        executor: ActionExecutor | None = None,
        describe_scene: SceneDescriber | None = None,
    ) -> AsyncIterator[StreamEvent]:
        executor = executor or self.executor_for(scene)
        yield await self._emit(
            session,
            EventType.SESSION_START,
            {"user_id": session.metadata.user_id, "conversation_id": session.metadata.conversation_id},
        )
        await self._record_state(session)

        results: list[ActionResult] = []
        try:
            snapshot = index_scene(scene)
            context = build_context(snapshot, history, self.budget_config)
            prompt = build_prompt(context, user_message)
            logger.info(
                "Session %s: %d elements, %d messages, %d tokens%s",
                session.id, snapshot.count, len(context.messages), context.total_tokens,
                " (pruned)" if context.was_pruned else "",
            )

            await self._transition(session, SessionState.CONNECTING)
            parser = IncrementalActionParser()
            initial = executor.capture_selection()
            streaming_recorded = False
            # signatures executed by abandoned attempts, and by the current one
            carried: Counter[str] = Counter()
            attempt: Counter[str] = Counter()
            try:
                async for fragment in self.gateway.stream(session, prompt):
                    if isinstance(fragment, StreamRestart):
                        logger.warning(
                            "Session %s: %s failed mid-stream (%s), restarting on %s",
                            session.id, fragment.failed, fragment.reason, session.provider_model,
                        )
                        parser = IncrementalActionParser()
                        carried += attempt
                        attempt = Counter()
                        session.current_message = ""
                        streaming_recorded = False
                        continue
                    if not streaming_recorded:
                        await self._record_state(session, provider_model=session.provider_model)
                        streaming_recorded = True
                    yield await self._emit(session, EventType.CHUNK, {"text": fragment})

                    update = parser.feed(fragment)
                    if update.message_delta:
                        session.append_message(update.message_delta)
                        yield await self._emit(
                            session,
                            EventType.MESSAGE,
                            {"content": update.message_delta, "is_partial": True, "role": "assistant"},
                        )
                    for action in update.actions:
                        if self._already_executed(action, carried, attempt):
                            logger.info("  %s already executed, skipping replay", action.type)
                            continue
                        yield await self._dispatch(session, executor, action, initial, results)

                outcome = parser.finalize()
                for action in outcome.late_actions:
                    if self._already_executed(action, carried, attempt):
                        continue
                    yield await self._dispatch(session, executor, action, initial, results)
            finally:
                executor.restore_interactivity()

            session.current_message = outcome.message
            yield await self._emit(
                session,
                EventType.MESSAGE,
                {"content": outcome.message, "is_partial": False, "role": "assistant"},
            )
            yield await self._complete(session, results, describe_scene)
        except ProvidersExhaustedError as e:
            logger.error("Session %s: %s", session.id, e)
            yield await self._fail(session, ALL_FAILED_MESSAGE)
        except Exception as e:
            logger.exception("Session %s failed", session.id)
            yield await self._fail(session, str(e) or type(e).__name__)

    # ------------------------------------------------------------------
    # Pre-parsed actions (heuristic fast path)
    # ------------------------------------------------------------------

    async def run_actions(
        self,
        session: StreamingSession,
        scene: SceneEngine,
        actions: list[ActionDescriptor],
        *,
        source: str = "heuristic",
        message: str = "",
        executor: ActionExecutor | None = None,
        describe_scene: SceneDescriber | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Same event protocol as ``run`` for actions that did not come from a model."""
        executor = executor or self.executor_for(scene)
        yield await self._emit(
            session,
            EventType.SESSION_START,
            {"user_id": session.metadata.user_id, "conversation_id": session.metadata.conversation_id},
        )
        await self._record_state(session)

        results: list[ActionResult] = []
        try:
            session.provider_model = source
            await self._transition(session, SessionState.CONNECTING)
            await self._transition(session, SessionState.STREAMING, provider_model=source)

            initial = executor.capture_selection()
            try:
                for action in actions:
                    yield await self._dispatch(session, executor, action, initial, results)
            finally:
                executor.restore_interactivity()

            if message:
                session.append_message(message)
                yield await self._emit(
                    session,
                    EventType.MESSAGE,
                    {"content": message, "is_partial": False, "role": "assistant"},
                )
            yield await self._complete(session, results, describe_scene)
        except Exception as e:
            logger.exception("Session %s failed", session.id)
            yield await self._fail(session, str(e) or type(e).__name__)
