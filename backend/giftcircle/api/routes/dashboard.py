from typing import Any

from fastapi import APIRouter

from giftcircle.api.deps import CurrentUserDep, DbSessionDep
from giftcircle.schemas.dashboard import DashboardPublic
from giftcircle.services.dashboard import build_dashboard


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardPublic)
async def get_dashboard(db: DbSessionDep, current_user: CurrentUserDep) -> dict[str, Any]:
    return await build_dashboard(db, current_user)
