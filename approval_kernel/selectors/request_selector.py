"""
Module: approval_kernel.selectors.request_selector
Responsibility: Read-only query access to requests and their stages.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Read-only.
    - Stages are always returned in stage order.

Failure modes:
    - ``get_request`` / ``get_stage`` raise NotFound errors for unknown ids;
      list queries return empty tuples.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select

from approval_kernel.domain.workflow import Request, RequestStatus, Stage, StageStatus
from approval_kernel.exceptions import RequestNotFoundError, StageNotFoundError
from approval_kernel.models.request import RequestModel, StageModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class RequestWithStages:
    request: Request
    stages: tuple[Stage, ...]

    @property
    def active_stage(self) -> Stage | None:
        return next(
            (s for s in self.stages if s.status is StageStatus.IN_PROGRESS), None,
        )


class RequestSelector(BaseSelector[RequestModel]):
    """Queries over requests and stages."""

    @staticmethod
    def _bundle(model: RequestModel) -> RequestWithStages:
        return RequestWithStages(
            request=model.to_dto(),
            stages=tuple(s.to_dto() for s in model.stages),
        )

    def get_request(self, request_id: UUID) -> RequestWithStages:
        model = self.session.get(RequestModel, request_id)
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return self._bundle(model)

    def get_by_sequence_number(self, sequence_number: str) -> RequestWithStages | None:
        model = self.session.execute(
            select(RequestModel).where(RequestModel.sequence_number == sequence_number)
        ).scalar_one_or_none()
        return self._bundle(model) if model is not None else None

    def get_stage(self, stage_id: UUID) -> Stage:
        model = self.session.get(StageModel, stage_id)
        if model is None:
            raise StageNotFoundError(str(stage_id))
        return model.to_dto()

    def list_requests(
        self,
        status: RequestStatus | None = None,
        requester_id: UUID | None = None,
    ) -> tuple[RequestWithStages, ...]:
        """Requests with their stages, newest first."""
        stmt = select(RequestModel)
        if status is not None:
            stmt = stmt.where(RequestModel.status == status.value)
        if requester_id is not None:
            stmt = stmt.where(RequestModel.requester_id == requester_id)
        stmt = stmt.order_by(RequestModel.created_at.desc(), RequestModel.sequence_number.desc())
        return tuple(self._bundle(m) for m in self.session.execute(stmt).scalars())

    def awaiting_approval(self) -> tuple[RequestWithStages, ...]:
        """In-progress requests that have an active stage, oldest first."""
        stmt = (
            select(RequestModel)
            .join(StageModel, StageModel.request_id == RequestModel.id)
            .where(
                RequestModel.status == RequestStatus.IN_PROGRESS.value,
                StageModel.status == StageStatus.IN_PROGRESS.value,
            )
            .order_by(RequestModel.submitted_at, RequestModel.sequence_number)
        )
        return tuple(self._bundle(m) for m in self.session.execute(stmt).scalars().unique())
