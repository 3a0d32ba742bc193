from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, Field

from brainf import __version__
from brainf.debugger import DebugSession
from brainf.streams import BytesSink
from brainf.vm import (
    DEFAULT_TAPE_LENGTH,
    BracketError,
    BrainfError,
    ExecutionState,
    InputFailure,
    OutputFailure,
    StepLimitExceeded,
    UnmatchedCloser,
    UnmatchedOpener,
    VirtualMachine,
)

from .session import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

_ERROR_KINDS = {
    UnmatchedCloser: "unmatched_closer",
    UnmatchedOpener: "unmatched_opener",
    InputFailure: "input_failure",
    OutputFailure: "output_failure",
    StepLimitExceeded: "step_limit",
}


def _error_kind(exc: BrainfError) -> str:
    return _ERROR_KINDS.get(type(exc), "error")


def _error_to_dict(exc: BrainfError) -> dict:
    return {
        "kind": _error_kind(exc),
        "message": str(exc),
        "positions": list(getattr(exc, "positions", [])),
    }


def _state_to_dict(state: ExecutionState) -> dict:
    return {
        "step": state.step,
        "cursor": state.cursor,
        "command": state.command,
        "pointer": state.pointer,
        "tape_start": state.tape_start,
        "tape": list(state.tape),
        "stack": list(state.stack),
        "code_length": state.code_length,
    }


def _to_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _calculate_total_steps(
    program: bytes,
    input_template: bytes,
    tape_length: int,
    cap: int = 10000,
) -> Tuple[int, bool]:
    machine = VirtualMachine(tape_length=tape_length)
    total = 0
    try:
        for state in machine.step(program, input_template, max_steps=cap):
            total = max(total, state.step)
    except StepLimitExceeded:
        return cap, True
    except BrainfError:
        # The session reports the error itself once it gets there
        return total, False
    return total, False


class RunRequest(BaseModel):
    program: str
    input: str = ""
    tape_length: int = Field(default=DEFAULT_TAPE_LENGTH, ge=1)
    max_steps: Optional[int] = Field(default=1_000_000, ge=1)


class RunResult(BaseModel):
    output: str
    output_bytes: List[int]


class SessionConfiguration(BaseModel):
    program: str = ""
    input: str = ""
    tape_length: int = Field(default=DEFAULT_TAPE_LENGTH, ge=1)
    tape_window: int = Field(default=10, ge=0)
    max_steps: Optional[int] = Field(default=None, ge=1)
    history_limit: int = Field(default=200, ge=1)


class SessionState(BaseModel):
    step: int
    cursor: int
    command: Optional[str]
    pointer: int
    tape_start: int
    tape: List[int]
    stack: List[int]
    code_length: int


class ErrorInfo(BaseModel):
    kind: str
    message: str
    positions: List[int]


class SessionPayload(BaseModel):
    session_id: str
    program: str
    state: SessionState
    history: List[SessionState]
    finished: bool
    history_size: int
    breakpoints: List[int]
    hit_breakpoint: Optional[int]
    output: str
    error: Optional[ErrorInfo]
    total_steps: int
    total_steps_capped: bool


class StepResponse(BaseModel):
    session_id: str
    states: List[SessionState]
    history: List[SessionState]
    finished: bool
    history_size: int
    breakpoints: List[int]
    hit_breakpoint: Optional[int]
    output: str
    error: Optional[ErrorInfo]
    total_steps: int
    total_steps_capped: bool


class StepRequest(BaseModel):
    count: int = Field(default=1, ge=1)


class RunSessionRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    ignore_breakpoints: bool = False


class BreakpointRequest(BaseModel):
    cursor: int = Field(ge=0)


def create_app(store: Optional[SessionStore] = None) -> FastAPI:
    session_store = store or SessionStore()
    app = FastAPI(title="brainf API", version=__version__)

    def _lookup(session_id: str) -> SessionRecord:
        try:
            return session_store.get(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    def _serialize_states(states: List[ExecutionState]) -> List[SessionState]:
        return [SessionState(**_state_to_dict(state)) for state in states]

    def _error_info(session: DebugSession) -> Optional[ErrorInfo]:
        if session.error is None:
            return None
        return ErrorInfo(**_error_to_dict(session.error))

    def _build_payload(record: SessionRecord) -> SessionPayload:
        session = record.session
        return SessionPayload(
            session_id=record.session_id,
            program=_to_text(session.program),
            state=SessionState(**_state_to_dict(session.current_state())),
            history=_serialize_states(session.history),
            finished=session.is_finished(),
            history_size=len(session.history),
            breakpoints=session.list_breakpoints(),
            hit_breakpoint=session.hit_breakpoint,
            output=_to_text(session.output),
            error=_error_info(session),
            total_steps=record.total_steps,
            total_steps_capped=record.total_steps_capped,
        )

    def _build_step_response(record: SessionRecord, states: List[ExecutionState]) -> StepResponse:
        session = record.session
        return StepResponse(
            session_id=record.session_id,
            states=_serialize_states(states),
            history=_serialize_states(session.history),
            finished=session.is_finished(),
            history_size=len(session.history),
            breakpoints=session.list_breakpoints(),
            hit_breakpoint=session.hit_breakpoint,
            output=_to_text(session.output),
            error=_error_info(session),
            total_steps=record.total_steps,
            total_steps_capped=record.total_steps_capped,
        )

    @app.post("/api/run", response_model=RunResult)
    def run_program(payload: RunRequest) -> RunResult:
        machine = VirtualMachine(tape_length=payload.tape_length)
        sink = BytesSink()
        try:
            machine.run(
                payload.program.encode("utf-8"),
                payload.input.encode("utf-8"),
                sink,
                max_steps=payload.max_steps,
            )
        except StepLimitExceeded as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        except BracketError as exc:
            logger.debug("rejected program: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=_error_to_dict(exc),
            ) from exc
        output = sink.getvalue()
        return RunResult(output=_to_text(output), output_bytes=list(output))

    @app.post("/api/session", response_model=SessionPayload, status_code=status.HTTP_201_CREATED)
    def create_session(payload: SessionConfiguration) -> SessionPayload:
        program = payload.program.encode("utf-8")
        input_bytes = payload.input.encode("utf-8")
        total_steps, total_steps_capped = _calculate_total_steps(
            program,
            input_bytes,
            payload.tape_length,
        )
        record = session_store.create_session(
            program=program,
            input_template=input_bytes,
            tape_length=payload.tape_length,
            tape_window=payload.tape_window,
            max_steps=payload.max_steps,
            history_limit=payload.history_limit,
            total_steps=total_steps,
            total_steps_capped=total_steps_capped,
        )
        with record.lock:
            return _build_payload(record)

    @app.get("/api/session/{session_id}", response_model=SessionPayload)
    def get_session(session_id: str) -> SessionPayload:
        record = _lookup(session_id)
        with record.lock:
            return _build_payload(record)

    @app.post("/api/session/{session_id}/reset", response_model=SessionPayload)
    def reset_session(session_id: str) -> SessionPayload:
        try:
            record = session_store.reset(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        with record.lock:
            return _build_payload(record)

    @app.post("/api/session/{session_id}/step", response_model=StepResponse)
    def step_session(session_id: str, payload: StepRequest) -> StepResponse:
        record = _lookup(session_id)
        with record.lock:
            try:
                states = list(record.session.step_forward(payload.count))
            except StepLimitExceeded as exc:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
            return _build_step_response(record, states)

    @app.post("/api/session/{session_id}/run", response_model=StepResponse)
    def run_session(session_id: str, payload: RunSessionRequest) -> StepResponse:
        record = _lookup(session_id)
        with record.lock:
            session = record.session
            original_breakpoints: Optional[set[int]] = None
            if payload.ignore_breakpoints:
                original_breakpoints = set(session.breakpoints)
                session.clear_breakpoints()
                session.hit_breakpoint = None

            try:
                states = list(session.run_until_break(payload.limit))
            except StepLimitExceeded as exc:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
            finally:
                if original_breakpoints is not None:
                    session.breakpoints = original_breakpoints
                    session.hit_breakpoint = None

            return _build_step_response(record, states)

    @app.post("/api/session/{session_id}/breakpoints", response_model=SessionPayload)
    def add_breakpoint(session_id: str, payload: BreakpointRequest) -> SessionPayload:
        record = _lookup(session_id)
        with record.lock:
            record.session.add_breakpoint(payload.cursor)
            return _build_payload(record)

    @app.delete("/api/session/{session_id}/breakpoints/{cursor}", response_model=SessionPayload)
    def remove_breakpoint(session_id: str, cursor: int) -> SessionPayload:
        record = _lookup(session_id)
        with record.lock:
            if not record.session.remove_breakpoint(cursor):
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Breakpoint not found at cursor={cursor}",
                )
            return _build_payload(record)

    @app.delete("/api/session/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_session(session_id: str) -> Response:
        if not session_store.remove(session_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown session id: {session_id}",
            )
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = ["create_app"]
