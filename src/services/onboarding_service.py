"""Onboarding workflow: the per-actor session state machine.

awaiting_start -> awaiting_email -> invite_submitted -> pending_approval
    -> awaiting_photo -> completed
pending_approval -> rejected

Handlers return the reply text for the interaction that triggered them and
raise OnboardingError subclasses for anything the actor or operator should be
told about. Every write that follows an await goes through the registry's
compare-and-set so a stage change made in the meantime is never overwritten.
"""

import logging
from collections.abc import Awaitable

from src.core import message_templates as templates
from src.core.config import Settings
from src.core.errors import (
    ActorMismatchError,
    AmbiguousMatchError,
    DecisionInProgressError,
    InvalidIdentifierError,
    InvalidStageError,
    OperatorPermissionError,
    RecordNotFoundError,
    SessionNotFoundError,
    StaleSessionError,
    WorkflowAPIError,
)
from src.core.logging import span
from src.domain.events import (
    AdminDecision,
    AttachmentReceived,
    EmailSubmitted,
    InboundEvent,
    MemberJoined,
    StartRequested,
)
from src.domain.notifications import (
    ActionButton,
    ActionStyle,
    ActorNotice,
    OperatorReport,
    decision_action_id,
    start_action_id,
)
from src.domain.records import ApprovalDecision, ApprovedRecord
from src.domain.session import Session, SessionStage
from src.interface.gateway import PlatformGateway, SendResult
from src.services.correlation_store import CorrelationEntry, CorrelationStore
from src.services.role_service import reconcile_roles
from src.services.session_registry import SessionRegistry
from src.services.workflow_client import WorkflowClient, is_valid_email


logger = logging.getLogger(__name__)


class OnboardingService:
    """Drives each actor's session from join to admission."""

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        correlations: CorrelationStore,
        workflow: WorkflowClient,
        gateway: PlatformGateway,
        settings: Settings,
    ) -> None:
        self._registry = registry
        self._correlations = correlations
        self._workflow = workflow
        self._gateway = gateway
        self._settings = settings
        self._decisions_in_flight: set[str] = set()

    async def handle(self, event: InboundEvent) -> str | None:
        """Dispatch an inbound event to its handler.

        Returns:
            Reply text for the originating interaction, or None when there is nothing to say
        """
        if isinstance(event, MemberJoined):
            await self.handle_member_joined(event)
            return None
        if isinstance(event, StartRequested):
            return await self.handle_start(event)
        if isinstance(event, EmailSubmitted):
            return await self.handle_email_submitted(event)
        if isinstance(event, AdminDecision):
            if event.decision == ApprovalDecision.CONFIRM:
                return await self.handle_confirm_match(event)
            return await self.handle_admin_decision(event)
        if isinstance(event, AttachmentReceived):
            return await self.handle_attachment(event)
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    async def _best_effort(self, action: str, call: Awaitable[SendResult], **context: object) -> SendResult | None:
        """Await a gateway call whose failure must not interrupt the workflow."""
        try:
            result = await call
        except Exception as e:
            logger.warning("Gateway call raised", extra={"action": action, "error": str(e), **context})
            return None
        if not result.success:
            logger.warning("Gateway call failed", extra={"action": action, "error": result.error, **context})
        return result

    @staticmethod
    def _require_same_actor(*, actor_id: str, target_actor_id: str) -> None:
        if actor_id != target_actor_id:
            logger.warning(
                "Actor pressed a control issued to someone else",
                extra={"actor_id": actor_id, "target_actor_id": target_actor_id},
            )
            raise ActorMismatchError(f"Control belongs to {target_actor_id}, pressed by {actor_id}")

    def _require_operator(self, event: AdminDecision) -> None:
        if event.can_manage_guild:
            return
        if self._settings.admin_role_id and self._settings.admin_role_id in event.operator_role_ids:
            return
        logger.warning("Non-operator attempted a decision", extra={"operator_id": event.operator_id})
        raise OperatorPermissionError(f"User {event.operator_id} is not an operator")

    async def handle_member_joined(self, event: MemberJoined) -> Session | None:
        """Open a verification surface and start a fresh session for a new member.

        Raises:
            RuntimeError: If the gateway could not create the verification surface
        """
        with span("onboarding_service.handle_member_joined"):
            # Guard: Only onboard into the configured guild
            if self._settings.guild_id and event.guild_id and event.guild_id != self._settings.guild_id:
                logger.debug("Ignoring join for another guild", extra={"guild_id": event.guild_id})
                return None

            if self._settings.pending_role_id:
                await self._best_effort(
                    "add_pending_role",
                    self._gateway.add_role(actor_id=event.actor_id, role_id=self._settings.pending_role_id),
                    actor_id=event.actor_id,
                )

            surface = await self._gateway.create_verification_surface(
                actor_id=event.actor_id, actor_name=event.actor_name
            )
            if not surface.success or not surface.id:
                raise RuntimeError(f"Could not create verification surface for {event.actor_id}: {surface.error}")

            # Rejoining starts over
            session = self._registry.replace(actor_id=event.actor_id, surface_id=surface.id)

            await self._best_effort(
                "welcome_notice",
                self._gateway.send_to_surface(
                    ActorNotice(
                        surface_id=surface.id,
                        title=templates.WELCOME_TITLE,
                        text=templates.WELCOME_TEXT,
                        mention_actor_id=event.actor_id,
                        actions=[ActionButton(custom_id=start_action_id(event.actor_id), label="Get Started")],
                    )
                ),
                actor_id=event.actor_id,
            )
            return session

    async def handle_start(self, event: StartRequested) -> str | None:
        """Move the session to awaiting_email and open the email form.

        Raises:
            ActorMismatchError: If someone else pressed the control
            SessionNotFoundError: If the actor has no live session
            InvalidStageError: If the email step is already behind the actor
        """
        with span("onboarding_service.handle_start"):
            self._require_same_actor(actor_id=event.actor_id, target_actor_id=event.target_actor_id)
            session = self._registry.require(event.target_actor_id)

            if session.stage == SessionStage.AWAITING_START:
                self._registry.transition(
                    session.actor_id,
                    from_stages=[SessionStage.AWAITING_START],
                    to_stage=SessionStage.AWAITING_EMAIL,
                )
            elif session.stage != SessionStage.AWAITING_EMAIL:
                raise InvalidStageError(f"Session for {session.actor_id} is already {session.stage.value}")

            if event.interaction_id:
                await self._best_effort(
                    "open_email_form",
                    self._gateway.open_email_form(interaction_id=event.interaction_id, actor_id=session.actor_id),
                    actor_id=session.actor_id,
                )
            return None

    async def handle_email_submitted(self, event: EmailSubmitted) -> str:
        """Record the email, submit the invitation and post the stage guide.

        The invitation outcome never blocks progress: the session reaches
        pending_approval either way and the reply says whether the invite went out.

        Raises:
            ActorMismatchError: If someone else submitted the form
            SessionNotFoundError: If the actor has no live session
            InvalidStageError: If the session is not awaiting an email
            InvalidIdentifierError: If the email shape is invalid
            CorrelationConflictError: If the email belongs to another actor
        """
        with span("onboarding_service.handle_email_submitted"):
            self._require_same_actor(actor_id=event.actor_id, target_actor_id=event.target_actor_id)
            session = self._registry.require(event.target_actor_id)

            # Guard: Double submissions land here
            if session.stage != SessionStage.AWAITING_EMAIL:
                raise InvalidStageError(f"Session for {session.actor_id} is {session.stage.value}, not awaiting email")

            email = event.email.strip()
            if not is_valid_email(email):
                raise InvalidIdentifierError("Submitted email has an invalid shape")

            self._correlations.link(identifier=email, actor_id=session.actor_id, surface_id=session.surface_id)
            session = self._registry.transition(
                session.actor_id,
                from_stages=[SessionStage.AWAITING_EMAIL],
                to_stage=SessionStage.INVITE_SUBMITTED,
                fields={"email": email},
            )

            try:
                result = await self._workflow.submit_invitation(email)
                if not result.success:
                    logger.warning(
                        "Invitation failed, continuing to pending approval",
                        extra={
                            "actor_id": session.actor_id,
                            "failure_kind": result.failure_kind,
                            "error": result.error,
                        },
                    )

                await self._best_effort(
                    "invite_report",
                    self._gateway.send_operator_report(
                        templates.invite_report(
                            email=email,
                            invitation=result.record,
                            success=result.success,
                            actor_id=session.actor_id,
                            mention_role_id=self._settings.admin_role_id,
                        )
                    ),
                    actor_id=session.actor_id,
                )
            finally:
                await self._finish_invitation(session)
            return templates.INVITE_SENT if result.success else templates.INVITE_FAILED

    async def _finish_invitation(self, session: Session) -> None:
        """Post the stage guide and move the session on to pending approval.

        Raises:
            StaleSessionError: If the session was replaced or removed while the invite was in flight
        """
        live = self._registry.get(session.actor_id)
        # Guard: A rejoin or expiry landed during the invite call
        if live is None or live.stage != SessionStage.INVITE_SUBMITTED:
            raise StaleSessionError(f"Session for {session.actor_id} changed while the invitation was in flight")

        await self._best_effort(
            "stage_guide",
            self._gateway.send_to_surface(
                ActorNotice(
                    surface_id=live.surface_id,
                    title="Next steps",
                    text=templates.step_guide_text(),
                    mention_actor_id=live.actor_id,
                    image_urls=self._settings.step_images,
                )
            ),
            actor_id=live.actor_id,
        )
        self._registry.transition(
            live.actor_id,
            from_stages=[SessionStage.INVITE_SUBMITTED],
            to_stage=SessionStage.PENDING_APPROVAL,
        )

    def _resolve_decision_target(self, event: AdminDecision) -> CorrelationEntry | None:
        """Find the actor a decision applies to and check their session can take it.

        Raises:
            SessionNotFoundError: If the email maps to an actor whose session is gone
            InvalidStageError: If the actor's session is not pending approval
        """
        entry = self._correlations.by_identifier(event.email) if event.email else None
        if entry is None:
            return None

        session = self._registry.get(entry.actor_id)
        if session is None:
            raise SessionNotFoundError(f"No session for actor {entry.actor_id} (roll #{event.record_key})")
        if session.stage != SessionStage.PENDING_APPROVAL:
            raise InvalidStageError(f"Session for {entry.actor_id} is {session.stage.value}, not pending approval")
        return entry

    def _claim_decision(self, record_key: str) -> None:
        if record_key in self._decisions_in_flight:
            raise DecisionInProgressError(f"Decision for roll #{record_key} already in progress")
        self._decisions_in_flight.add(record_key)

    async def handle_admin_decision(self, event: AdminDecision) -> str:
        """Submit an operator's approve/reject decision and apply its outcome.

        Raises:
            OperatorPermissionError: If the presser is not an operator
            SessionNotFoundError: If the email maps to an actor whose session is gone
            InvalidStageError: If the actor's session is not pending approval
            DecisionInProgressError: If the same record is already being decided
        """
        with span("onboarding_service.handle_admin_decision"):
            self._require_operator(event)
            entry = self._resolve_decision_target(event)
            self._claim_decision(event.record_key)
            try:
                result = await self._workflow.submit_approval(event.record_key, event.decision)
                if not result.success:
                    logger.warning(
                        "Decision not accepted by directory",
                        extra={"record_key": event.record_key, "decision": event.decision.value},
                    )
                    return templates.decision_failed(
                        decision=event.decision.value,
                        record_key=event.record_key,
                        diagnostic=result.raw_body or result.error,
                    )

                if event.decision == ApprovalDecision.REJECT:
                    return await self._apply_rejection(record_key=event.record_key, entry=entry)
                return await self._resolve_and_advance(
                    record_key=event.record_key, email=event.email, entry=entry, offer_confirmation=True
                )
            finally:
                self._decisions_in_flight.discard(event.record_key)

    async def handle_confirm_match(self, event: AdminDecision) -> str:
        """Continue an approval once an operator confirmed the suggested profile.

        The directory already holds the approval, so no second PATCH is sent.
        """
        with span("onboarding_service.handle_confirm_match"):
            self._require_operator(event)
            entry = self._resolve_decision_target(event)
            self._claim_decision(event.record_key)
            try:
                return await self._resolve_and_advance(
                    record_key=event.record_key, email=event.email, entry=entry, offer_confirmation=False
                )
            finally:
                self._decisions_in_flight.discard(event.record_key)

    async def _apply_rejection(self, *, record_key: str, entry: CorrelationEntry | None) -> str:
        if entry is None:
            logger.info("Rejected record with no linked actor", extra={"record_key": record_key})
            return templates.rejected(record_key=record_key)

        try:
            self._registry.transition(
                entry.actor_id,
                from_stages=[SessionStage.PENDING_APPROVAL],
                to_stage=SessionStage.REJECTED,
            )
            self._registry.remove(entry.actor_id)
        except (SessionNotFoundError, StaleSessionError) as e:
            logger.warning(
                "Session moved on during rejection, leaving it in place",
                extra={"actor_id": entry.actor_id, "error": str(e)},
            )

        await self._best_effort(
            "rejection_notice",
            self._gateway.send_direct(
                actor_id=entry.actor_id,
                text=templates.rejection_notice(contact_email=self._settings.rejection_contact_email),
            ),
            actor_id=entry.actor_id,
        )
        await self._best_effort(
            "remove_member",
            self._gateway.remove_member(actor_id=entry.actor_id, reason=f"Profile rejected (roll #{record_key})"),
            actor_id=entry.actor_id,
        )
        return templates.rejected(record_key=record_key)

    async def _resolve_and_advance(
        self,
        *,
        record_key: str,
        email: str | None,
        entry: CorrelationEntry | None,
        offer_confirmation: bool,
    ) -> str:
        """Resolve the approved profile, then ask the actor for a photo."""
        try:
            record = await self._workflow.resolve_approved_record(record_key)
        except AmbiguousMatchError as e:
            if not offer_confirmation:
                raise
            return await self._request_confirmation(record_key=record_key, email=email, candidate=e.candidate)
        except (WorkflowAPIError, RecordNotFoundError) as e:
            logger.error("Approved profile lookup failed", extra={"record_key": record_key, "error": str(e)})
            reply = templates.approved_profile_unavailable(record_key=record_key, reason=str(e))
            await self._best_effort(
                "lookup_retry_report",
                self._gateway.send_operator_report(
                    OperatorReport(
                        title="⚠️ Profile lookup failed",
                        text=reply,
                        success=False,
                        actions=[
                            ActionButton(
                                custom_id=decision_action_id(ApprovalDecision.CONFIRM, record_key, email),
                                label="Retry lookup",
                                style=ActionStyle.SECONDARY,
                            )
                        ],
                    )
                ),
                record_key=record_key,
            )
            return reply

        target = entry or (self._correlations.by_identifier(record.email) if record.email else None)
        if target is None:
            logger.info("Approved record has no linked actor", extra={"record_key": record_key})
            return templates.approved_actor_unknown(record_key=record_key)

        session = self._registry.transition(
            target.actor_id,
            from_stages=[SessionStage.PENDING_APPROVAL],
            to_stage=SessionStage.AWAITING_PHOTO,
            fields={"record_key": record.record_key},
            awaiting_upload=True,
            approved_record=record,
        )
        await self._best_effort(
            "photo_request",
            self._gateway.send_to_surface(
                ActorNotice(
                    surface_id=session.surface_id,
                    text=templates.photo_request(actor_id=session.actor_id),
                    mention_actor_id=session.actor_id,
                )
            ),
            actor_id=session.actor_id,
        )
        return templates.approved_photo_requested(record_key=record_key)

    async def _request_confirmation(self, *, record_key: str, email: str | None, candidate: ApprovedRecord) -> str:
        reply = templates.approved_needs_confirmation(record_key=record_key, candidate_key=candidate.record_key)
        await self._best_effort(
            "confirm_match_report",
            self._gateway.send_operator_report(
                OperatorReport(
                    title=f"❓ Confirm profile — {candidate.full_name or candidate.record_key}",
                    text=reply,
                    mention_role_id=self._settings.admin_role_id,
                    actions=[
                        ActionButton(
                            custom_id=decision_action_id(ApprovalDecision.CONFIRM, candidate.record_key, email),
                            label="Confirm ✅",
                            style=ActionStyle.SUCCESS,
                        )
                    ],
                )
            ),
            record_key=record_key,
        )
        return reply

    async def handle_attachment(self, event: AttachmentReceived) -> str | None:
        """Accept the first photo posted by an approved actor and finish onboarding.

        Anything that does not qualify is ignored without a reply.
        """
        with span("onboarding_service.handle_attachment"):
            # Guard: Only the awaited upload, from the actor, in their own surface
            if event.is_bot or not event.attachments:
                return None
            session = self._registry.get(event.actor_id)
            if (
                session is None
                or session.stage != SessionStage.AWAITING_PHOTO
                or not session.awaiting_upload
                or session.surface_id != event.surface_id
            ):
                return None

            photo_url = event.attachments[0].url
            session = self._registry.transition(
                session.actor_id,
                from_stages=[SessionStage.AWAITING_PHOTO],
                to_stage=SessionStage.COMPLETED,
                fields={"photo_url": photo_url},
                awaiting_upload=False,
            )

            record = session.approved_record or ApprovedRecord()
            await self._best_effort(
                "admission_card",
                self._gateway.publish_admission_card(
                    templates.admission_card(
                        actor_id=session.actor_id,
                        fallback_name=event.actor_name or "New Member",
                        record=record,
                        photo_url=photo_url,
                        avatar_url=event.avatar_url,
                    )
                ),
                actor_id=session.actor_id,
            )
            await reconcile_roles(
                gateway=self._gateway,
                settings=self._settings,
                actor_id=session.actor_id,
                record=record,
                current_role_ids=event.member_role_ids,
            )

            current = self._registry.get(session.actor_id)
            if current is not None and current.stage == SessionStage.COMPLETED:
                self._registry.remove(session.actor_id)
            logger.info("Onboarding completed", extra={"actor_id": session.actor_id, "record_key": record.record_key})
            return templates.PHOTO_THANKS

    async def expire_stale_sessions(self) -> int:
        """Expire idle sessions and tell their actors. Returns how many expired."""
        with span("onboarding_service.expire_stale_sessions"):
            expired = self._registry.expire_stale()
            for session in expired:
                await self._best_effort(
                    "expiry_notice",
                    self._gateway.send_to_surface(
                        ActorNotice(
                            surface_id=session.surface_id,
                            text=templates.SESSION_EXPIRED,
                            mention_actor_id=session.actor_id,
                        )
                    ),
                    actor_id=session.actor_id,
                )
            if expired:
                logger.info("Expired idle sessions", extra={"count": len(expired)})
            return len(expired)
