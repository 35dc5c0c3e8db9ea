from fastapi import APIRouter, Depends

from app.schemas.notification import ProductViewResult
from app.services.notification_service import NotificationService
from app.services.session_service import UserSession
from app.utils.dependencies import get_current_session, get_notification_service


router = APIRouter(prefix="/products", tags=["products"])


@router.post("/{product_id}/view", response_model=ProductViewResult)
async def view_product(product_id: str, current_user: UserSession = Depends(get_current_session), service: NotificationService = Depends(get_notification_service)):
    """Record that the signed-in user opened a product so its owner is notified."""
    notification = await service.notify_product_view(current_user.user_id, product_id)
    return ProductViewResult(notified=notification is not None, notification=notification)
