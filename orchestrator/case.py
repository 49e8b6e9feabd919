"""
ARAG Agent Copilot — Case Orchestrator
Runs one case end to end:
  1. Validate → 2. Read history → 3. Assemble → 4. Generate → 5. Store back

One workspace, one case at a time. The single-flight guard lives here,
not in the presentation layer. History failures are logged and never
decide whether a case succeeded.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from config.workspace import PlaybookConfig
from memory.history import HistoryStore, InteractionRecord, build_history_store, normalize_client_id
from orchestrator.errors import CaseInProgressError, CopilotError
from orchestrator.generation import CaseResult, GenerationClient
from orchestrator.knowledge import EmailInput, KnowledgeAssembler, validate_input

logger = logging.getLogger("copilot.case")


class CaseState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class CaseSnapshot:
    """What the presentation layer sees of the workspace."""
    state: CaseState
    client_id: str = ""
    history: list = field(default_factory=list)
    result: Optional[CaseResult] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    input_mode: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "client_id": self.client_id,
            "history": [r.to_dict() for r in self.history],
            "result": self.result.to_dict() if self.result else None,
            "error": {"kind": self.error_kind, "message": self.error_message} if self.error_kind else None,
            "input_mode": self.input_mode,
        }


class CaseOrchestrator:
    """
    State machine: IDLE → PENDING → {SUCCEEDED | FAILED} → IDLE.
    Back to IDLE only through edit() or reset_workspace().
    """

    def __init__(self, history_store: HistoryStore, generator: GenerationClient,
                 assembler: KnowledgeAssembler = None,
                 playbook_provider: Callable = None, clock: Callable = None):
        self.history_store = history_store
        self.generator = generator
        self.assembler = assembler or KnowledgeAssembler()
        self.playbook_provider = playbook_provider
        self.clock = clock

        self._lock = threading.Lock()
        self._in_flight = False
        self._epoch = 0

        self._state = CaseState.IDLE
        self._client_id = ""
        self._history = []
        self._input: Optional[EmailInput] = None
        self._result: Optional[CaseResult] = None
        self._error: Optional[CopilotError] = None

    # -------------------------------------------------------
    # Introspection
    # -------------------------------------------------------

    @property
    def state(self) -> CaseState:
        return self._state

    @property
    def client_id(self) -> str:
        return self._client_id

    def snapshot(self) -> CaseSnapshot:
        with self._lock:
            return CaseSnapshot(
                state=self._state,
                client_id=self._client_id,
                history=list(self._history),
                result=self._result,
                error_kind=getattr(self._error, "kind", None) if self._error else None,
                error_message=str(self._error) if self._error else None,
                input_mode=self._input.mode if self._input else None,
            )

    # -------------------------------------------------------
    # Collaborator swaps (cloud settings / API key edits)
    # -------------------------------------------------------

    def set_history_store(self, store: HistoryStore):
        with self._lock:
            self.history_store = store
        logger.info(f"History store switched to {store.mode}")

    def set_generator(self, generator: GenerationClient):
        with self._lock:
            self.generator = generator

    # -------------------------------------------------------
    # History helpers (never raise)
    # -------------------------------------------------------

    @staticmethod
    def _read_history(store: HistoryStore, client_id: str) -> list:
        if not normalize_client_id(client_id):
            return []
        try:
            return store.read(client_id)
        except Exception as e:
            logger.error(f"History read failed for '{normalize_client_id(client_id)}': {e}")
            return []

    @staticmethod
    def _store_back(store: HistoryStore, client_id: str, record: InteractionRecord) -> bool:
        if not normalize_client_id(client_id):
            logger.warning("Store-back skipped: no client identifier supplied or extracted")
            return False
        try:
            store.append(client_id, record)
            return True
        except Exception as e:
            logger.warning(f"Store-back: history append failed (non-fatal): {e}")
            return False

    # -------------------------------------------------------
    # Workspace actions
    # -------------------------------------------------------

    def load_client(self, client_id: str) -> list:
        """Set the workspace client and read its history."""
        with self._lock:
            if self._in_flight:
                raise CaseInProgressError("A case is running; wait for it to finish.")
            store = self.history_store
        history = self._read_history(store, client_id)
        with self._lock:
            self._client_id = (client_id or "").strip()
            self._history = history
        return history

    def edit(self):
        """Leave SUCCEEDED/FAILED for IDLE, keeping client and input."""
        with self._lock:
            if self._state == CaseState.PENDING:
                raise CaseInProgressError("A case is running; wait for it to finish.")
            self._state = CaseState.IDLE
            self._result = None
            self._error = None

    def reset_workspace(self):
        """Discard everything and return to IDLE, from any state."""
        with self._lock:
            self._epoch += 1
            self._state = CaseState.IDLE
            self._client_id = ""
            self._history = []
            self._input = None
            self._result = None
            self._error = None
        logger.info("Workspace reset")

    start_next_case = reset_workspace

    # -------------------------------------------------------
    # Run
    # -------------------------------------------------------

    def run_case(self, email: EmailInput, client_id: Optional[str] = None,
                 playbook=None) -> CaseSnapshot:
        """
        Run one case. Raises InvalidInputError before entering PENDING and
        CaseInProgressError when another case holds the workspace. Every
        other failure ends in FAILED and is reported in the snapshot.
        """
        validate_input(email)

        with self._lock:
            if client_id is None:
                client_id = self._client_id
            supplied_id = (client_id or "").strip()
            if self._in_flight or self._state == CaseState.PENDING:
                raise CaseInProgressError("A case is already running in this workspace.")
            if self._state == CaseState.SUCCEEDED:
                raise CaseInProgressError("Start the next case or edit the current one first.")
            self._in_flight = True
            self._epoch += 1
            epoch = self._epoch
            self._state = CaseState.PENDING
            self._input = email
            self._result = None
            self._error = None
            history_store = self.history_store
            generator = self.generator

        start = time.time()
        logger.info(f"CASE START: mode={email.mode}, client={normalize_client_id(supplied_id) or 'unknown'}")
        try:
            try:
                generator.ensure_credential()
                history = self._read_history(history_store, supplied_id)
                if playbook is None:
                    playbook = self.playbook_provider() if self.playbook_provider else PlaybookConfig()
                envelope = self.assembler.assemble(email, supplied_id, history, playbook)
                result = generator.generate(envelope)
            except Exception as e:
                self._finish_failed(epoch, e)
                if not isinstance(e, CopilotError):
                    raise
                return self.snapshot()

            effective_id = supplied_id or (result.extracted_client_name or "").strip()
            record = InteractionRecord.now(
                summary=result.analysis,
                policy_number=result.extracted_policy_number,
                clock=self.clock,
            )
            self._store_back(history_store, effective_id, record)

            if normalize_client_id(effective_id) == normalize_client_id(supplied_id):
                new_history = [record] + history
            else:
                # Identity learned from the result: show that client's history
                new_history = self._read_history(history_store, effective_id)
                if record not in new_history[:1]:
                    new_history = [record] + new_history

            with self._lock:
                if self._epoch == epoch:
                    self._state = CaseState.SUCCEEDED
                    self._result = result
                    self._client_id = effective_id
                    self._history = new_history
            logger.info(f"CASE COMPLETE: {int((time.time() - start) * 1000)}ms, client='{effective_id}'")
            return self.snapshot()
        finally:
            with self._lock:
                self._in_flight = False

    def _finish_failed(self, epoch: int, error: Exception):
        logger.error(f"CASE FAILED: {getattr(error, 'kind', type(error).__name__)}: {error}")
        with self._lock:
            if self._epoch == epoch:
                self._state = CaseState.FAILED
                self._error = error if isinstance(error, CopilotError) else CopilotError(str(error))


# ============================================================
# Wiring
# ============================================================

def build_generator(config_store, settings=None) -> GenerationClient:
    from config.settings import config
    settings = settings or config
    return GenerationClient(
        api_key=config_store.get_api_key(),
        model=settings.claude.model,
        max_output_tokens=settings.claude.max_output_tokens,
        timeout=settings.claude.timeout_seconds,
    )


def build_history(config_store, settings=None) -> HistoryStore:
    from config.settings import config
    settings = settings or config
    return build_history_store(
        config_store.get_cloud_settings(),
        config_store.kv,
        cap=settings.local.history_cap,
        table=settings.supabase.table,
        timeout=settings.supabase.timeout_seconds,
    )


def build_workspace(config_store, settings=None) -> CaseOrchestrator:
    """Wire a workspace from persisted configuration."""
    return CaseOrchestrator(
        history_store=build_history(config_store, settings),
        generator=build_generator(config_store, settings),
        playbook_provider=config_store.get_playbook,
    )
