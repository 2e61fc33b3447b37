"""Per-user conversation sessions: drives the step-by-step workflows.

A user with an open session (a listing draft or the search wizard) has
every inbound message routed here by the router.  One generic routine,
``ConversationEngine.advance``, handles every state of every workflow:

  1. CANCEL / BACK phrases are checked before anything else
  2. The reply is parsed with the state's named parser
  3. On failure the state's error guidance is sent and the step stays put
  4. On success the session moves on (compare-and-swap on the user
     document), the value is written, and the next prompt is sent

An exit transition clears the session and returns a finished StepResult;
the caller runs the terminal action (draft confirmation or search).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from rentbot.formatting import format_suburb_menu
from rentbot.messaging.base import MessagingGateway, SendResult
from rentbot.models import ListingDraftSession, SearchSession, SessionState, User
from rentbot.parsers import PARSERS, ParseContext
from rentbot.repository import Repository
from rentbot.workflows import WORKFLOWS, DraftStepDef, DraftWorkflowDef
from rentbot.workflows.loader import split_target

log = logging.getLogger("rentbot.session")


def redact_pii(value: str) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StepResult:
    """What one reply did to the session."""

    handled: bool = True
    finished: bool = False       # exit transition reached, session cleared
    canceled: bool = False
    stale: bool = False          # another delivery moved the session first
    session: Optional[SessionState] = None
    reply: str = ""


class ConversationEngine:
    """Runs the listing-draft and search-wizard workflows.

    Typical lifecycle::

        engine = ConversationEngine(repo, messenger, suburbs=settings.suburbs)
        await engine.start_listing(phone, draft_id)   # sends the first prompt

        # Each inbound reply while the session is open
        result = await engine.advance(user, body)
        if result.finished:
            ...  # draft confirmation / run the search
    """

    def __init__(
        self,
        repo: Repository,
        messenger: MessagingGateway,
        suburbs: list[str],
        workflows: Optional[dict[str, DraftWorkflowDef]] = None,
        ttl_hours: float = 24.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._messenger = messenger
        self._suburbs = list(suburbs)
        self._workflows = workflows or WORKFLOWS
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock

    # ── Helpers ────────────────────────────────────────────────

    def workflow_for(self, session: SessionState) -> DraftWorkflowDef:
        return self._workflows[session.kind]

    def render_prompt(self, state: DraftStepDef) -> str:
        """Render a state's prompt, replacing ``{{suburb_menu}}``."""
        return state.prompt.replace("{{suburb_menu}}", format_suburb_menu(self._suburbs))

    async def _send(self, phone: str, text: str) -> SendResult:
        result = await self._messenger.send_message(phone, text)
        if not result.ok:
            log.warning("Prompt to %s not delivered: %s", redact_pii(phone), result.error)
        return result

    def _lost_race(self, phone: str, session: SessionState) -> StepResult:
        log.info(
            "Session %s/%s for %s already moved by another delivery; ignoring reply",
            session.kind, session.step, redact_pii(phone),
        )
        return StepResult(stale=True)

    async def _touch(self, phone: str, session: SessionState) -> Optional[SessionState]:
        """Mark the session active without moving it; None if it moved meanwhile."""
        touched = session.model_copy(update={"updated_at": self._clock()})
        if not await self._repo.transition_session(phone, session, touched, now=touched.updated_at):
            return None
        return touched

    # ── Expiry ────────────────────────────────────────────────

    def is_expired(self, session: SessionState) -> bool:
        updated = session.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return self._clock() - updated > self._ttl

    async def expire_if_idle(self, user: User) -> User:
        """Clear a session idle for longer than the TTL; return the current user view."""
        if user.session is None or not self.is_expired(user.session):
            return user
        cleared = await self._repo.transition_session(
            user.phone, user.session, None, now=self._clock()
        )
        if cleared:
            log.info(
                "Session %s/%s for %s expired",
                user.session.kind, user.session.step, redact_pii(user.phone),
            )
        refreshed = await self._repo.get_user(user.phone)
        return refreshed or user.model_copy(update={"session": None})

    # ── Starting sessions ─────────────────────────────────────

    async def start_listing(self, phone: str, draft_id: str) -> ListingDraftSession:
        """Open a listing-draft session (replacing any other) and send the first prompt."""
        workflow = self._workflows["listing"]
        session = ListingDraftSession(step=workflow.initial_state, draft_id=draft_id)
        await self._repo.replace_session(phone, session, now=self._clock())
        log.info("Session start: listing %s for %s", draft_id, redact_pii(phone))
        await self._send(phone, self.render_prompt(workflow.states[workflow.initial_state]))
        return session

    async def start_search(self, phone: str) -> SearchSession:
        """Open a search-wizard session (replacing any other) and send the first prompt."""
        workflow = self._workflows["search"]
        session = SearchSession(step=workflow.initial_state)
        await self._repo.replace_session(phone, session, now=self._clock())
        log.info("Session start: search wizard for %s", redact_pii(phone))
        await self._send(phone, self.render_prompt(workflow.states[workflow.initial_state]))
        return session

    # ── Advancing ─────────────────────────────────────────────

    async def advance(self, user: User, text: str) -> StepResult:
        """Handle one reply for the user's open session."""
        session = user.session
        if session is None:
            return StepResult(handled=False)

        phone = user.phone
        workflow = self.workflow_for(session)
        state = workflow.states.get(session.step)
        if state is None:
            log.warning(
                "Session for %s is in unknown step %r; clearing it", redact_pii(phone), session.step
            )
            await self._repo.transition_session(phone, session, None, now=self._clock())
            return StepResult(handled=False)

        answer = (text or "").strip()
        token = answer.upper()

        if token in {p.upper() for p in workflow.cancel_phrases}:
            return await self._cancel(phone, session, workflow, state)

        if token in {p.upper() for p in workflow.back_phrases}:
            return await self._back(phone, session, workflow, state)

        parsed = PARSERS[state.parser](answer, ParseContext(phone=phone, suburbs=self._suburbs))
        if not parsed.ok:
            guidance = state.error or self.render_prompt(state)
            log.info("Session %s rejected reply from %s", state.id, redact_pii(phone))
            touched = await self._touch(phone, session)
            if touched is None:
                return self._lost_race(phone, session)
            await self._send(phone, guidance)
            return StepResult(session=touched, reply=guidance)

        values = {state.field: parsed.value, **parsed.extra}
        updated = session
        if workflow.writes_to == "session":
            known = type(session).model_fields
            dropped = sorted(k for k in values if k not in known)
            if dropped:
                log.warning(
                    "Session %s has no field(s) %s; values not kept", state.id, ", ".join(dropped)
                )
            updated = session.model_copy(
                update={k: v for k, v in values.items() if k in known}
            )

        next_id, message = split_target(state.transitions["next"])
        new_session = updated.model_copy(update={"step": next_id}) if next_id else None

        if not await self._repo.transition_session(phone, session, new_session, now=self._clock()):
            return self._lost_race(phone, session)

        if workflow.writes_to == "draft" and isinstance(session, ListingDraftSession):
            if not await self._repo.update_listing(session.draft_id, values):
                log.warning("Draft %s vanished while writing %s", session.draft_id, state.field)

        if next_id:
            log.info("Session advance: %s → %s (%s)", state.id, next_id, redact_pii(phone))
            prompt = message or self.render_prompt(workflow.states[next_id])
            await self._send(phone, prompt)
            return StepResult(session=new_session, reply=prompt)

        log.info("Session exit from %s (%s)", state.id, redact_pii(phone))
        reply = message or workflow.exit_message
        if reply:
            await self._send(phone, reply)
        return StepResult(finished=True, session=updated, reply=reply)

    async def _cancel(
        self,
        phone: str,
        session: SessionState,
        workflow: DraftWorkflowDef,
        state: DraftStepDef,
    ) -> StepResult:
        if not await self._repo.transition_session(phone, session, None, now=self._clock()):
            return self._lost_race(phone, session)
        log.info("Session cancel at %s (%s)", state.id, redact_pii(phone))
        if workflow.cancel_message:
            await self._send(phone, workflow.cancel_message)
        return StepResult(canceled=True, reply=workflow.cancel_message)

    async def _back(
        self,
        phone: str,
        session: SessionState,
        workflow: DraftWorkflowDef,
        state: DraftStepDef,
    ) -> StepResult:
        back_id, message = split_target(state.transitions.get("back", ""))
        if not back_id:
            # First step: repeat the question
            touched = await self._touch(phone, session)
            if touched is None:
                return self._lost_race(phone, session)
            prompt = self.render_prompt(state)
            await self._send(phone, prompt)
            return StepResult(session=touched, reply=prompt)

        new_session = session.model_copy(update={"step": back_id})
        if not await self._repo.transition_session(phone, session, new_session, now=self._clock()):
            return self._lost_race(phone, session)
        log.info("Session back: %s → %s (%s)", state.id, back_id, redact_pii(phone))
        prompt = message or self.render_prompt(workflow.states[back_id])
        await self._send(phone, prompt)
        return StepResult(session=new_session, reply=prompt)
