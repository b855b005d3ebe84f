"""
Conversation Engine - guided multi-step data entry

Flows are declarative: an ordered list of FlowStep(field, prompt, validator)
with optional choices and conditions, plus a completion action. The engine
keeps one open flow per account in an explicit keyed store with a bounded
lifetime, validates each input before advancing, and runs the completion
action after the last applicable step.

Architecture:
    FlowDefinition -> FlowState (per account, in FlowStateManager)
                   -> submit_step -> validator -> next prompt | completion action
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from config import Config
from models import AccountRole, FlowKind
from utils.datetime_helpers import Clock
from utils.exception_handler import NotApproved, NotFound, NotOwner, ValidationFailed
from utils.input_validation import InputValidator

logger = logging.getLogger(__name__)

Option = Tuple[str, str]  # (value, label)


# ===== ENGINE TYPES =====

class FlowStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@dataclass(frozen=True)
class StepInput:
    """One inbound message as seen by a step validator"""
    text: Optional[str] = None
    photo_file_id: Optional[str] = None


@dataclass
class FlowServices:
    """Core services a flow's choices and completion action may call"""
    accounts: Any
    catalog: Any
    orders: Any


@dataclass
class FlowContext:
    account_id: int
    data: Dict[str, Any]
    services: FlowServices


Validator = Callable[[StepInput, Sequence[Option]], Any]
ChoiceSource = Union[Sequence[Option], Callable[[FlowContext], Awaitable[List[Option]]]]


@dataclass
class FlowStep:
    """One question in a flow"""
    field: str
    prompt: str
    validator: Validator
    choices: Optional[ChoiceSource] = None
    condition: Optional[Callable[[Dict[str, Any]], bool]] = None
    allow_skip: bool = False
    empty_choices_message: str = "Nothing to choose from right now."

    def applies(self, data: Dict[str, Any]) -> bool:
        if self.field in data:
            return False
        return self.condition is None or self.condition(data)


@dataclass
class FlowDefinition:
    kind: FlowKind
    roles: Set[AccountRole]
    steps: List[FlowStep]
    on_complete: Callable[[FlowContext], Awaitable[Any]]
    requires_approval: bool = False
    completion_message: Callable[[Any], str] = lambda result: "✅ Done."
    description: str = ""


@dataclass
class FlowState:
    """Ephemeral per-account flow progress"""
    account_id: int
    kind: FlowKind
    step_index: int
    status: FlowStatus = FlowStatus.ACTIVE
    data: Dict[str, Any] = field(default_factory=dict)
    options: List[Option] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None


@dataclass
class StepPrompt:
    """What the transport should ask next"""
    kind: FlowKind
    field: str
    text: str
    options: List[Option] = field(default_factory=list)
    allow_skip: bool = False
    step_number: int = 1


@dataclass
class FlowResult:
    """Outcome of submit_step: either the next prompt or the completion result"""
    completed: bool
    prompt: Optional[StepPrompt] = None
    result: Any = None
    message: Optional[str] = None


# ===== PRIMITIVE VALIDATORS =====

class StepValidators:
    """Factories for the primitive step validators"""

    @staticmethod
    def text(field_name: str, max_length: Optional[int] = None) -> Validator:
        return lambda step_input, options: InputValidator.validate_text(step_input.text, field_name, max_length)

    @staticmethod
    def optional_text(field_name: str) -> Validator:
        return lambda step_input, options: InputValidator.validate_optional_text(step_input.text, field_name)

    @staticmethod
    def choice() -> Validator:
        return lambda step_input, options: InputValidator.validate_choice(step_input.text, options)

    @staticmethod
    def amount() -> Validator:
        return lambda step_input, options: InputValidator.validate_amount_cents(step_input.text)

    @staticmethod
    def positive_int(field_name: str, max_value: int = 100000) -> Validator:
        return lambda step_input, options: InputValidator.validate_positive_int(step_input.text, field_name, max_value)

    @staticmethod
    def photo_or_skip() -> Validator:
        def _validate(step_input: StepInput, options: Sequence[Option]) -> Optional[str]:
            if step_input.photo_file_id:
                return step_input.photo_file_id
            if (step_input.text or "").strip() == "-":
                return None
            raise ValidationFailed("Please send a photo, or '-' to keep the current one.")
        return _validate


# ===== STATE MANAGEMENT =====

class FlowStateManager:
    """Explicit keyed store: account id -> open flow, with timeout"""

    def __init__(self, clock: Optional[Clock] = None, timeout_minutes: Optional[int] = None):
        self.clock = clock or Clock()
        self.timeout_minutes = timeout_minutes or Config.CONVERSATION_TIMEOUT_MINUTES
        self._active_flows: Dict[int, FlowState] = {}

    def install(self, account_id: int, kind: FlowKind, data: Optional[Dict[str, Any]] = None) -> FlowState:
        """Replace any open flow for the account with a fresh one at step 0"""
        self.discard(account_id)
        now = self.clock.now()
        state = FlowState(
            account_id=account_id,
            kind=kind,
            step_index=0,
            data=dict(data or {}),
            created_at=now,
            updated_at=now,
            timeout_at=now + timedelta(minutes=self.timeout_minutes),
        )
        self._active_flows[account_id] = state
        return state

    def get_active(self, account_id: int) -> Optional[FlowState]:
        state = self._active_flows.get(account_id)
        if state and state.timeout_at and self.clock.now() > state.timeout_at:
            logger.info(f"⌛ FLOW_TIMEOUT: {state.kind.value} for account {account_id}")
            state.status = FlowStatus.EXPIRED
            del self._active_flows[account_id]
            return None
        return state

    def touch(self, state: FlowState) -> None:
        now = self.clock.now()
        state.updated_at = now
        state.timeout_at = now + timedelta(minutes=self.timeout_minutes)

    def discard(self, account_id: int, status: FlowStatus = FlowStatus.CANCELLED) -> bool:
        state = self._active_flows.pop(account_id, None)
        if state is None:
            return False
        state.status = status
        return True

    def cleanup_expired(self) -> int:
        now = self.clock.now()
        expired = [aid for aid, state in self._active_flows.items() if state.timeout_at and now > state.timeout_at]
        for account_id in expired:
            self.discard(account_id, FlowStatus.EXPIRED)
        return len(expired)

    def __len__(self) -> int:
        return len(self._active_flows)


# ===== ENGINE =====

class ConversationEngine:
    """Drives the registered flows one message at a time"""

    def __init__(self, services: FlowServices, definitions: Optional[Sequence[FlowDefinition]] = None,
                 state_manager: Optional[FlowStateManager] = None, clock: Optional[Clock] = None):
        self.services = services
        self.clock = clock or Clock()
        self.state_manager = state_manager or FlowStateManager(clock=self.clock)
        self._definitions: Dict[FlowKind, FlowDefinition] = {}
        if definitions is None:
            from scenes import ALL_FLOWS
            definitions = ALL_FLOWS
        for definition in definitions:
            self.register_flow(definition)

    def register_flow(self, definition: FlowDefinition) -> None:
        self._definitions[definition.kind] = definition
        logger.debug(f"📋 FLOW_REGISTERED: {definition.kind.value} ({len(definition.steps)} steps)")

    def get_definition(self, kind: FlowKind) -> FlowDefinition:
        definition = self._definitions.get(kind)
        if definition is None:
            raise NotFound(f"Unknown flow: {kind.value}")
        return definition

    def has_active_flow(self, account_id: int) -> bool:
        return self.state_manager.get_active(account_id) is not None

    def _context(self, state: FlowState) -> FlowContext:
        return FlowContext(account_id=state.account_id, data=state.data, services=self.services)

    @staticmethod
    def _next_index(definition: FlowDefinition, start: int, data: Dict[str, Any]) -> int:
        index = start
        while index < len(definition.steps) and not definition.steps[index].applies(data):
            index += 1
        return index

    async def _prompt_for(self, definition: FlowDefinition, state: FlowState) -> StepPrompt:
        step = definition.steps[state.step_index]
        options: List[Option] = []
        if step.choices is not None:
            if callable(step.choices):
                options = list(await step.choices(self._context(state)))
            else:
                options = list(step.choices)
            if not options:
                raise NotFound(step.empty_choices_message)
        state.options = options
        return self._render(definition, state, step)

    @staticmethod
    def _render(definition: FlowDefinition, state: FlowState, step: FlowStep) -> StepPrompt:
        answered = sum(1 for s in definition.steps[:state.step_index] if s.field in state.data)
        return StepPrompt(
            kind=definition.kind,
            field=step.field,
            text=step.prompt,
            options=list(state.options),
            allow_skip=step.allow_skip,
            step_number=answered + 1,
        )

    async def start_flow(self, account_id: int, kind: FlowKind, **initial_data) -> Union[StepPrompt, FlowResult]:
        """
        Install a fresh flow for the account and return the first prompt.
        Raises NotOwner for an ineligible role and NotApproved for providers
        awaiting approval. Any previously open flow is discarded.
        """
        definition = self.get_definition(kind)
        account = await self.services.accounts.get_account(account_id)

        if account.role is None or AccountRole(account.role) not in definition.roles:
            raise NotOwner(f"This option is not available for your account.")
        if definition.requires_approval and account.is_provider and not account.is_approved:
            raise NotApproved()

        state = self.state_manager.install(account_id, kind, initial_data)
        logger.info(f"🎬 FLOW_START: {kind.value} for account {account_id}")
        return await self._advance(definition, state, 0)

    async def _advance(self, definition: FlowDefinition, state: FlowState,
                       from_index: int) -> Union[StepPrompt, FlowResult]:
        state.step_index = self._next_index(definition, from_index, state.data)
        if state.step_index >= len(definition.steps):
            return await self._complete(definition, state)
        try:
            return await self._prompt_for(definition, state)
        except NotFound:
            self.state_manager.discard(state.account_id)
            raise

    async def submit_step(self, account_id: int, text: Optional[str] = None,
                          photo_file_id: Optional[str] = None) -> Optional[FlowResult]:
        """
        Feed one input to the account's open flow.

        Returns None when no flow is open (ordinary input). On invalid input
        raises ValidationFailed carrying the same step's prompt; the flow
        does not advance. Otherwise returns the next prompt or, after the
        last step, the completion result (the flow is then cleared).
        """
        state = self.state_manager.get_active(account_id)
        if state is None:
            return None

        definition = self.get_definition(state.kind)
        step = definition.steps[state.step_index]
        step_input = StepInput(text=text, photo_file_id=photo_file_id)

        try:
            value = step.validator(step_input, state.options)
        except ValidationFailed as e:
            logger.info(f"✋ FLOW_INVALID: {state.kind.value}.{step.field} for account {account_id}: {e.message}")
            raise ValidationFailed(e.message, prompt=self._render(definition, state, step))

        state.data[step.field] = value
        self.state_manager.touch(state)
        logger.debug(f"➡️ FLOW_STEP: {state.kind.value}.{step.field} accepted for account {account_id}")

        outcome = await self._advance(definition, state, state.step_index + 1)
        if isinstance(outcome, StepPrompt):
            return FlowResult(completed=False, prompt=outcome)
        return outcome

    async def _complete(self, definition: FlowDefinition, state: FlowState) -> FlowResult:
        context = self._context(state)
        try:
            result = await definition.on_complete(context)
        finally:
            self.state_manager.discard(state.account_id, FlowStatus.COMPLETED)
        logger.info(f"🏁 FLOW_COMPLETE: {state.kind.value} for account {state.account_id}")
        return FlowResult(completed=True, result=result, message=definition.completion_message(result))

    def cancel_flow(self, account_id: int) -> bool:
        """Clear any open flow; idempotent"""
        cancelled = self.state_manager.discard(account_id)
        if cancelled:
            logger.info(f"🛑 FLOW_CANCELLED: account {account_id}")
        return cancelled
