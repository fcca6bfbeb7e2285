from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from healthpath.api.deps import verify_api_key_dependency
from healthpath.db.session import SessionLocal
from .completion import MutationResult
from .coordinator import ReminderLifecycleCoordinator
from .notifications import NotificationOutcome, NotificationService
from .repository import SqlAlchemyReminderStore
from .scheduler import CeleryNotificationService
from .unified_schemas import (
    CompletionCreate,
    MutationResponse,
    NotificationOutcomeRead,
    ReminderCompletionRead,
    ReminderCreate,
    ReminderRead,
    ReminderUpdate,
    ResyncResponse,
    ShareRequest,
    UpcomingReminder,
)


router = APIRouter(dependencies=[Depends(verify_api_key_dependency)])


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_notification_service() -> NotificationService:
    return CeleryNotificationService()


def get_coordinator(
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    notifications: NotificationService = Depends(get_notification_service),
) -> ReminderLifecycleCoordinator:
    return ReminderLifecycleCoordinator(SqlAlchemyReminderStore(session_factory), notifications)


def _outcome(outcome: NotificationOutcome) -> NotificationOutcomeRead:
    return NotificationOutcomeRead(**outcome.to_dict())


def _mutation(result: MutationResult) -> MutationResponse:
    return MutationResponse(reminder=result.reminder, notification=_outcome(result.notification))


# Fixed paths are registered before /{reminder_id} so they are not swallowed by it

@router.get("/health")
def health_check():
    return {"status": "healthy", "service": "reminders"}


@router.post("/", response_model=MutationResponse, status_code=201)
async def create_reminder_endpoint(
    payload: ReminderCreate,
    user_id: str = Query(..., min_length=1),
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    return _mutation(await coordinator.create(user_id, payload))


@router.get("/", response_model=List[ReminderRead])
async def list_reminders_endpoint(
    user_id: str = Query(..., min_length=1),
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_for_user(user_id)


@router.get("/upcoming", response_model=List[UpcomingReminder])
async def upcoming_reminders_endpoint(
    user_id: str = Query(..., min_length=1),
    days: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1),
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    """Dashboard widget: enabled reminders due soon, soonest first."""
    return await coordinator.upcoming(user_id, days=days, limit=limit)


@router.post("/resync", response_model=ResyncResponse)
async def resync_reminders_endpoint(
    user_id: str = Query(..., min_length=1),
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    summary = await coordinator.resync(user_id)
    return ResyncResponse(
        user_id=summary.user_id,
        reminders=summary.reminders,
        rescheduled=summary.rescheduled,
        degraded=summary.degraded,
    )


@router.get("/{reminder_id}", response_model=ReminderRead)
async def get_reminder_endpoint(
    reminder_id: str,
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    return await coordinator.get(reminder_id)


@router.patch("/{reminder_id}", response_model=MutationResponse)
async def update_reminder_endpoint(
    reminder_id: str,
    payload: ReminderUpdate,
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    """Apply only the fields present in the request body."""
    return _mutation(await coordinator.update(reminder_id, payload))


@router.delete("/{reminder_id}", response_model=NotificationOutcomeRead)
async def delete_reminder_endpoint(
    reminder_id: str,
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    return _outcome(await coordinator.delete(reminder_id))


@router.post("/{reminder_id}/complete", response_model=MutationResponse)
async def complete_reminder_endpoint(
    reminder_id: str,
    payload: Optional[CompletionCreate] = None,
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    payload = payload or CompletionCreate()
    result = await coordinator.complete(
        reminder_id,
        timestamp=payload.timestamp,
        completed=payload.completed,
        notes=payload.notes,
    )
    return _mutation(result)


@router.get("/{reminder_id}/completions", response_model=List[ReminderCompletionRead])
async def list_completions_endpoint(
    reminder_id: str,
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    return await coordinator.list_completions(reminder_id)


@router.post("/{reminder_id}/share", response_model=MutationResponse, status_code=201)
async def share_reminder_endpoint(
    reminder_id: str,
    payload: ShareRequest,
    coordinator: ReminderLifecycleCoordinator = Depends(get_coordinator),
):
    return _mutation(await coordinator.share(reminder_id, payload.target_user_id))
