from fastapi import APIRouter

from consultpay.core.exceptions import NotImplementedAppError

router = APIRouter()


@router.get("/admins")
async def list_admins():
    """Admin: list admins (coming soon)."""
    raise NotImplementedAppError("Admin listing coming soon")


@router.get("/reports")
async def reports():
    """Admin: platform reports (coming soon)."""
    raise NotImplementedAppError("Reports coming soon")
