from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from intranet.core.dependencies import get_current_admin
from intranet.database.session import get_db
from intranet.models.user import User
from intranet.schemas.chat import SuccessOut
from intranet.services import conversation_service

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.delete("/conversations/{conversation_id}", response_model=SuccessOut)
def delete_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    conversation_service.delete_conversation(db, conversation_id)
    return SuccessOut(success=True, message="Conversation deleted")
