from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from magicpaws.core.auth import get_current_principal
from magicpaws.features.notifications.service import get_preferences, update_preferences
from magicpaws.models.principal import Principal


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class PreferencesUpdate(BaseModel):
    booking_reminders: Optional[bool] = None
    booking_updates: Optional[bool] = None
    invoice_notifications: Optional[bool] = None
    marketing_emails: Optional[bool] = None
    training_updates: Optional[bool] = None


@router.get("/preferences")
def preferences(principal: Principal = Depends(get_current_principal)):
    return {"preferences": get_preferences(principal.id)}


@router.put("/preferences")
def save_preferences(body: PreferencesUpdate, principal: Principal = Depends(get_current_principal)):
    return {"preferences": update_preferences(principal.id, body.model_dump(exclude_unset=True))}
