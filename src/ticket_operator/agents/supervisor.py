"""Owns the set of live agents and drives each ticket through its steps.

The ticket files and the tmux session list are authoritative; the agent
set held here is a cache that is persisted to ``state.json`` on every
transition and reconciled against tmux on every ``tick``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import replace
from typing import Callable, Optional

from ..core.config import OperatorConfig
from ..core.exceptions import (
    AlreadyClaimedError,
    ConflictError,
    NotFoundError,
    OperatorError,
    PreconditionError,
)
from ..core.logging_utils import log_event
from ..core.time_utils import now_iso, now_local_history
from ..notifications import NotificationDispatcher, NotificationEvent, NotificationEventType
from ..prompts.composer import StepCarry
from ..tickets.models import Ticket
from ..tickets.store import TicketQueue
from ..tickets.watcher import QueueWatcher
from ..workflow.engine import WorkflowEngine
from .launcher import Launcher, LaunchOptions, PreparedLaunch
from .state import AgentState, AgentStatus, StateStore, SupervisorState
from .status_block import StatusBlock, find_last_status_block, has_status_markers
from .tmux import Tmux, text_hash

logger = logging.getLogger(__name__)

MALFORMED_REASON = "Malformed status block"
MISSING_REASON = "Session exited without a status block"
LOST_REASON = "Session lost"
TIMEOUT_REASON = "Step timed out"


def _carry_from(block: StatusBlock) -> StepCarry:
    return StepCarry(
        summary=block.summary or "", recommendation=block.recommendation or ""
    )


class Supervisor:
    def __init__(
        self,
        config: OperatorConfig,
        queue: TicketQueue,
        engine: WorkflowEngine,
        launcher: Launcher,
        tmux: Tmux,
        dispatcher: NotificationDispatcher,
        state_store: StateStore,
        *,
        clock: Callable[[], float] = time.time,
        cpu_count: Optional[int] = None,
    ) -> None:
        self.config = config
        self.queue = queue
        self.engine = engine
        self.launcher = launcher
        self.tmux = tmux
        self.dispatcher = dispatcher
        self.state_store = state_store
        self._clock = clock
        self._cpu_count = cpu_count
        self._lock = threading.RLock()
        self._state: SupervisorState = state_store.load()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake_event: Optional[asyncio.Event] = None

    # Read-only views

    @property
    def paused(self) -> bool:
        return self._state.paused

    @property
    def max_agents(self) -> int:
        return self.config.effective_max_agents(self._cpu_count)

    def snapshot(self) -> list[AgentState]:
        with self._lock:
            return sorted(self._state.agents.values(), key=lambda a: a.started_at)

    def stalled(self) -> list[AgentState]:
        return [a for a in self.snapshot() if a.status == AgentStatus.AWAITING_INPUT]

    def get_agent(self, agent_id: str) -> AgentState:
        """Look up by agent id, falling back to ticket id."""
        with self._lock:
            agent = self._state.agents.get(agent_id) or self._state.by_ticket(agent_id)
        if agent is None:
            raise NotFoundError("agent", agent_id)
        return agent

    # Persistence and bookkeeping

    def _save(self) -> None:
        self.state_store.save(self._state)

    def _put(self, agent: AgentState) -> AgentState:
        self._state.agents[agent.id] = agent
        self._save()
        return agent

    def _drop(self, agent: AgentState) -> None:
        self._state.agents.pop(agent.id, None)
        self._save()

    def _notify(
        self,
        kind: NotificationEventType,
        agent: AgentState,
        *,
        message: Optional[str] = None,
    ) -> None:
        self.dispatcher.notify(
            NotificationEvent(
                type=kind,
                ticket_id=agent.ticket_id,
                ticket_type=agent.ticket_type,
                project=agent.project,
                step=agent.step,
                message=message,
            )
        )

    def _ticket_for(self, agent: AgentState) -> Ticket:
        ticket = self.queue.find_ticket(agent.ticket_id)
        if ticket is None or ticket.filepath.parent != self.queue.in_progress_dir:
            raise NotFoundError("in-progress ticket", agent.ticket_id)
        return ticket

    def _kill_session(self, name: str) -> None:
        if self.tmux.session_exists(name):
            self.tmux.kill_session(name)

    def _release_worktree(self, ticket: Ticket, *, completed: bool) -> None:
        """Remove the ticket's worktree; the branch is only dropped after completion."""
        try:
            self.launcher.release_worktree(ticket, delete_branch=completed)
        except OperatorError as exc:
            log_event(
                logger,
                logging.WARNING,
                "agent.worktree_cleanup_failed",
                ticket_id=ticket.id,
                exc=exc,
            )

    def _options_for(self, agent: AgentState) -> LaunchOptions:
        return LaunchOptions.from_config(
            self.config,
            provider=agent.provider or None,
            model=agent.model or None,
        )

    def _agent_from_launch(
        self, ticket: Ticket, prepared: PreparedLaunch, *, paired: bool
    ) -> AgentState:
        now = self._clock()
        stamp = now_iso()
        return AgentState(
            id=prepared.agent_id,
            ticket_id=ticket.id,
            ticket_type=ticket.ticket_type,
            project=ticket.project,
            session_name=prepared.session_name,
            step=prepared.step,
            status=AgentStatus.RUNNING,
            started_at=stamp,
            last_status_change=stamp,
            paired=paired,
            session_uuid=prepared.session_uuid,
            provider=prepared.provider,
            model=prepared.model,
            step_started_at=now,
            last_output_at=now,
        )

    # Failure paths

    def _fail(
        self,
        agent: AgentState,
        reason: str,
        *,
        kind: NotificationEventType = NotificationEventType.AGENT_FAILED,
    ) -> None:
        failed = agent.with_status(AgentStatus.FAILED, message=reason)
        log_event(
            logger,
            logging.WARNING,
            "agent.failed",
            agent_id=agent.id,
            ticket_id=agent.ticket_id,
            step=agent.step,
            reason=reason,
        )
        if not agent.paired:
            self._kill_session(agent.session_name)
        ticket = self.queue.find_ticket(agent.ticket_id)
        if ticket is not None and ticket.filepath.parent == self.queue.in_progress_dir:
            self._release_worktree(ticket, completed=False)
            self.queue.return_to_queue(ticket, reason=reason, status="failed")
        self._drop(failed)
        self._notify(kind, failed, message=reason)

    # Launching

    def _start(
        self,
        ticket: Ticket,
        options: LaunchOptions,
        *,
        external: bool = False,
    ) -> PreparedLaunch:
        if external:
            prepared = self.launcher.prepare(ticket, options)
        else:
            prepared = self.launcher.launch(ticket, options)
        agent = self._agent_from_launch(ticket, prepared, paired=external)
        self._put(agent)
        log_event(
            logger,
            logging.INFO,
            "agent.started",
            agent_id=agent.id,
            ticket_id=ticket.id,
            step=agent.step,
            session=agent.session_name,
            paired=external,
        )
        self._notify(NotificationEventType.AGENT_STARTED, agent)
        return prepared

    def _relaunch(
        self, agent: AgentState, ticket: Ticket, carry: Optional[StepCarry]
    ) -> Optional[AgentState]:
        """Start a fresh session for the ticket's current step under the same agent id."""
        if not agent.paired:
            self._kill_session(agent.session_name)
        try:
            if agent.paired:
                prepared = self.launcher.prepare(
                    ticket, self._options_for(agent), carry, agent_id=agent.id
                )
            else:
                prepared = self.launcher.launch(
                    ticket, self._options_for(agent), carry, agent_id=agent.id
                )
        except (OperatorError, OSError) as exc:
            self._fail(agent, f"Launch failed: {exc}")
            return None
        now = self._clock()
        updated = agent.with_status(
            AgentStatus.RUNNING,
            message=None,
            step=prepared.step,
            session_name=prepared.session_name,
            session_uuid=prepared.session_uuid,
            step_started_at=now,
            last_output_at=now,
            pane_hash=None,
            review=None,
        )
        self._put(updated)
        log_event(
            logger,
            logging.INFO,
            "agent.relaunched",
            agent_id=agent.id,
            ticket_id=ticket.id,
            step=updated.step,
        )
        self._notify(NotificationEventType.AGENT_STARTED, updated)
        return updated

    def _can_launch(self) -> bool:
        try:
            self.tmux.check_available(self.config.tmux.min_version)
            self.launcher.tools.require(self.config.launch.default_provider)
        except PreconditionError as exc:
            log_event(logger, logging.ERROR, "supervisor.launch_blocked", exc=exc)
            return False
        return True

    def _notify_ticket_failed(self, ticket: Ticket, reason: str) -> None:
        self.dispatcher.notify(
            NotificationEvent(
                type=NotificationEventType.AGENT_FAILED,
                ticket_id=ticket.id,
                ticket_type=ticket.ticket_type,
                project=ticket.project,
                message=reason,
            )
        )

    def _fail_queued(self, ticket: Ticket, reason: str) -> None:
        """Mark a ticket that could not be claimed as failed where it lies."""
        ticket.update_field("status", "failed")
        ticket.append_history(f"{now_local_history()} - {reason}")
        log_event(
            logger, logging.ERROR, "supervisor.claim_failed", ticket_id=ticket.id, reason=reason
        )
        self._notify_ticket_failed(ticket, reason)

    def _fill_slots(self) -> None:
        if len(self._state.agents) >= self.max_agents or not self._can_launch():
            return
        skipped: set[str] = set()
        while len(self._state.agents) < self.max_agents:
            owned = {agent.ticket_id for agent in self._state.agents.values()}
            ticket = self.queue.next_ticket(exclude_ids=owned | skipped)
            if ticket is None:
                return
            try:
                claimed = self.queue.claim_ticket(ticket)
            except AlreadyClaimedError:
                log_event(logger, logging.INFO, "supervisor.claim_lost", ticket_id=ticket.id)
                skipped.add(ticket.id)
                continue
            except ConflictError as exc:
                skipped.add(ticket.id)
                self._fail_queued(ticket, f"Claim failed: {exc}")
                continue
            try:
                self._start(claimed, LaunchOptions.from_config(self.config))
            except (OperatorError, OSError) as exc:
                reason = f"Launch failed: {exc}"
                self.queue.return_to_queue(claimed, reason=reason, status="failed")
                log_event(
                    logger,
                    logging.ERROR,
                    "supervisor.launch_failed",
                    ticket_id=claimed.id,
                    exc=exc,
                )
                self._notify_ticket_failed(claimed, reason)
                return

    # Step transitions

    def _await_review(self, agent: AgentState, ticket: Ticket, block: StatusBlock) -> None:
        step = self.engine.require_step(ticket)
        review = {
            "step": step.name,
            "summary": block.summary,
            "recommendation": block.recommendation,
            "requested_at": now_iso(),
        }
        updated = agent.with_status(
            AgentStatus.AWAITING_INPUT, message=block.summary, review=review
        )
        ticket.update_field("status", "awaiting")
        ticket.add_awaiting_entry(step.label)
        self._put(updated)
        log_event(
            logger,
            logging.INFO,
            "agent.review_pending",
            agent_id=agent.id,
            ticket_id=ticket.id,
            step=step.name,
        )
        self._notify(NotificationEventType.REVIEW_PENDING, updated, message=block.summary)

    def _advance(self, agent: AgentState, ticket: Ticket, carry: Optional[StepCarry]) -> None:
        next_step = ticket.advance_step(self.engine.issue_type(ticket))
        if next_step is None:
            self._complete(agent, ticket)
            return
        log_event(
            logger,
            logging.INFO,
            "ticket.step_advanced",
            ticket_id=ticket.id,
            step=next_step,
        )
        self._relaunch(agent, ticket, carry)

    def _complete(self, agent: AgentState, ticket: Ticket) -> None:
        completing = agent.with_status(AgentStatus.COMPLETING)
        self._put(completing)
        if not agent.paired:
            self._kill_session(agent.session_name)
        self._release_worktree(ticket, completed=True)
        self.queue.complete_ticket(ticket)
        self._drop(completing)
        log_event(logger, logging.INFO, "agent.completed", agent_id=agent.id, ticket_id=ticket.id)
        self._notify(NotificationEventType.AGENT_COMPLETED, completing, message=agent.last_message)

    def _handle_block(self, agent: AgentState, block: StatusBlock) -> None:
        ticket = self._ticket_for(agent)
        step = self.engine.require_step(ticket)
        agent = replace(agent, last_message=block.summary or agent.last_message)
        log_event(
            logger,
            logging.INFO,
            "agent.status_block",
            agent_id=agent.id,
            ticket_id=ticket.id,
            step=step.name,
            status=block.status,
            exit_signal=block.exit_signal,
        )
        if not block.exit_signal:
            if step.requires_review:
                self._await_review(agent, ticket, block)
            else:
                self._relaunch(agent, ticket, _carry_from(block))
            return
        if not self.engine.can_proceed(ticket):
            self._await_review(agent, ticket, block)
            return
        self._advance(agent, ticket, _carry_from(block))

    # Observation

    def _observe(self, agent: AgentState) -> None:
        if agent.paired or agent.awaiting_review:
            return
        text = self.tmux.capture_pane(agent.session_name)
        block = find_last_status_block(text)
        if block is not None:
            self._handle_block(agent, block)
            return
        if self.tmux.pane_dead(agent.session_name):
            reason = MALFORMED_REASON if has_status_markers(text) else MISSING_REASON
            self._fail(agent, reason)
            return
        now = self._clock()
        if now - agent.step_started_at >= self.config.agents.step_timeout:
            self._fail(agent, TIMEOUT_REASON)
            return
        pane_hash = text_hash(text)
        if pane_hash != agent.pane_hash:
            if agent.status == AgentStatus.AWAITING_INPUT:
                self._resume_from_silence(agent, pane_hash, now)
            else:
                self._state.agents[agent.id] = replace(
                    agent, pane_hash=pane_hash, last_output_at=now
                )
            return
        if agent.status != AgentStatus.RUNNING:
            return
        if now - agent.last_output_at >= self.config.agents.silence_threshold:
            self._enter_silence(agent)

    def _enter_silence(self, agent: AgentState) -> None:
        updated = agent.with_status(AgentStatus.AWAITING_INPUT, message="Waiting for input")
        ticket = self._ticket_for(agent)
        ticket.update_field("status", "awaiting")
        ticket.add_awaiting_entry(self.engine.require_step(ticket).label)
        self._put(updated)
        log_event(logger, logging.INFO, "agent.awaiting_input", agent_id=agent.id)
        self._notify(NotificationEventType.AGENT_AWAITING_INPUT, updated)

    def _resume_from_silence(self, agent: AgentState, pane_hash: str, now: float) -> None:
        updated = agent.with_status(
            AgentStatus.RUNNING, pane_hash=pane_hash, last_output_at=now
        )
        self._ticket_for(agent).update_field("status", "in-progress")
        self._put(updated)
        log_event(logger, logging.INFO, "agent.resumed", agent_id=agent.id)

    def _reconcile(self) -> None:
        live = set(self.tmux.list_sessions(self.config.tmux.session_prefix))
        for agent in list(self._state.agents.values()):
            if agent.paired:
                continue
            ticket = self.queue.find_ticket(agent.ticket_id)
            if ticket is None or ticket.filepath.parent != self.queue.in_progress_dir:
                log_event(
                    logger,
                    logging.WARNING,
                    "agent.orphaned",
                    agent_id=agent.id,
                    ticket_id=agent.ticket_id,
                )
                self._drop(agent)
                continue
            if agent.session_name not in live and not agent.awaiting_review:
                self._fail(agent, LOST_REASON, kind=NotificationEventType.SESSION_LOST)
        owned = {agent.session_name for agent in self._state.agents.values()}
        prefix = self.config.tmux.session_prefix
        for name in sorted(live - owned):
            self._adopt(name[len(prefix):], name)

    def _adopt(self, ticket_id: str, session_name: str) -> None:
        ticket = self.queue.find_ticket(ticket_id)
        if ticket is None or ticket.filepath.parent != self.queue.in_progress_dir:
            return
        now = self._clock()
        stamp = now_iso()
        step = ticket.step or self.engine.require_step(ticket).name
        agent = AgentState(
            id=ticket.id.lower(),
            ticket_id=ticket.id,
            ticket_type=ticket.ticket_type,
            project=ticket.project,
            session_name=session_name,
            step=step,
            started_at=stamp,
            last_status_change=stamp,
            session_uuid=ticket.sessions.get(step, ""),
            provider=self.config.launch.default_provider,
            step_started_at=now,
            last_output_at=now,
        )
        self._put(agent)
        log_event(logger, logging.INFO, "agent.adopted", agent_id=agent.id, session=session_name)

    def tick(self) -> None:
        """One supervisor iteration: reconcile, observe, then fill free slots."""
        with self._lock:
            self._reconcile()
            for agent in list(self._state.agents.values()):
                current = self._state.agents.get(agent.id)
                if current is None:
                    continue
                try:
                    self._observe(current)
                except (OperatorError, OSError) as exc:
                    log_event(
                        logger,
                        logging.ERROR,
                        "agent.observe_failed",
                        agent_id=agent.id,
                        ticket_id=agent.ticket_id,
                        exc=exc,
                    )
            if not self._state.paused:
                self._fill_slots()
            self._save()

    # Operations for the CLI and REST surfaces

    def launch_ticket(
        self,
        ticket_id: str,
        options: Optional[LaunchOptions] = None,
        *,
        external: bool = False,
    ) -> PreparedLaunch:
        """Claim (if queued) and launch one ticket; ``external`` skips tmux."""
        with self._lock:
            if self._state.by_ticket(ticket_id) is not None:
                raise ConflictError(f"Ticket {ticket_id} already has an active agent")
            ticket = self.queue.require_ticket(ticket_id)
            parent = ticket.filepath.parent
            if parent == self.queue.completed_dir:
                raise ConflictError(f"Ticket {ticket_id} is already completed")
            claimed = parent == self.queue.queue_dir
            if claimed:
                ticket = self.queue.claim_ticket(ticket)
            try:
                prepared = self._start(
                    ticket, options or LaunchOptions.from_config(self.config), external=external
                )
            except (OperatorError, OSError) as exc:
                if claimed:
                    self.queue.return_to_queue(ticket, reason=f"Launch failed: {exc}")
                raise
        self.wake()
        return prepared

    def approve(self, agent_id: str) -> AgentState:
        with self._lock:
            agent = self.get_agent(agent_id)
            if not agent.awaiting_review:
                raise ConflictError(f"Agent {agent.id} is not awaiting review")
            ticket = self._ticket_for(agent)
            ticket.update_field("status", "in-progress")
            ticket.append_history(f'**{now_local_history()}** - Approved "{agent.step}" step')
            review = agent.review or {}
            carry = StepCarry(
                summary=review.get("summary") or "",
                recommendation=review.get("recommendation") or "",
            )
            log_event(logger, logging.INFO, "agent.approved", agent_id=agent.id, step=agent.step)
            self._advance(agent, ticket, carry)
            return self._state.agents.get(agent.id, agent)

    def reject(self, agent_id: str, reason: str) -> AgentState:
        with self._lock:
            agent = self.get_agent(agent_id)
            if not agent.awaiting_review:
                raise ConflictError(f"Agent {agent.id} is not awaiting review")
            ticket = self._ticket_for(agent)
            rejection = self.engine.get_rejection_step(ticket)
            if rejection is None:
                raise ConflictError(f"Step {agent.step} has no rejection target")
            goto_step, _ = rejection
            prompt = self.engine.render_rejection_prompt(ticket, reason) or ""
            ticket.update_fields({"step": goto_step, "status": "in-progress"})
            ticket.append_history(
                f'**{now_local_history()}** - Rejected "{agent.step}" step: {reason}'
            )
            log_event(
                logger,
                logging.INFO,
                "agent.rejected",
                agent_id=agent.id,
                step=agent.step,
                goto_step=goto_step,
            )
            updated = self._relaunch(agent, ticket, StepCarry(summary=prompt))
            return updated or agent

    def complete_step(
        self, ticket_id: str, step: str, block: Optional[StatusBlock] = None
    ) -> None:
        """Out-of-band completion signal for a step, e.g. from an editor wrapper."""
        with self._lock:
            agent = self._state.by_ticket(ticket_id)
            if agent is None:
                raise NotFoundError("agent for ticket", ticket_id)
            if agent.step != step:
                raise ConflictError(
                    f"Ticket {ticket_id} is on step {agent.step!r}, not {step!r}"
                )
            self._handle_block(agent, block or StatusBlock(status="complete", exit_signal=True))

    def pause(self) -> None:
        with self._lock:
            self._state.paused = True
            self._save()
        log_event(logger, logging.INFO, "supervisor.paused")

    def resume(self) -> None:
        with self._lock:
            self._state.paused = False
            self._save()
        log_event(logger, logging.INFO, "supervisor.resumed")
        self.wake()

    # Async loop

    def wake(self) -> None:
        loop, event = self._loop, self._wake_event
        if loop is not None and event is not None and loop.is_running():
            loop.call_soon_threadsafe(event.set)

    async def run_forever(
        self, *, stop: Optional[asyncio.Event] = None, watch: bool = True
    ) -> None:
        """Tick every ``poll_interval_secs`` until ``stop`` is set; queue changes wake it early."""
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._wake_event = asyncio.Event()
        self.dispatcher.bind_loop(loop)
        watcher: Optional[QueueWatcher] = None
        if watch:
            watcher = QueueWatcher(self.config.tickets_path, lambda _event: self.wake())
            watcher.start()
        log_event(logger, logging.INFO, "supervisor.started", max_agents=self.max_agents)
        try:
            while stop is None or not stop.is_set():
                try:
                    await asyncio.to_thread(self.tick)
                except (OperatorError, OSError) as exc:
                    log_event(logger, logging.ERROR, "supervisor.tick_failed", exc=exc)
                try:
                    await asyncio.wait_for(
                        self._wake_event.wait(), timeout=self.config.agents.poll_interval_secs
                    )
                except asyncio.TimeoutError:
                    pass
                self._wake_event.clear()
        finally:
            if watcher is not None:
                watcher.stop()
            self._loop = None
            self._wake_event = None
            self.dispatcher.bind_loop(None)
            await self.dispatcher.drain()
            log_event(logger, logging.INFO, "supervisor.stopped")
