import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session

from rank_engine.core.clock import utcnow
from rank_engine.core.settings import get_settings
from rank_engine.db.session import get_db
from rank_engine.schemas.payment import SweepResponse
from rank_engine.services.rank_service import RankService
from rank_engine.services.security import is_cron_authorized

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


@router.api_route("/expire-ranks", methods=["GET", "POST"], response_model=SweepResponse)
def expire_ranks(
    request: Request,
    authorization: str = Header(default=""),
    x_cron_secret: str = Header(default=""),
    secret: str = Query(default=""),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    authorized = is_cron_authorized(
        settings,
        authorization=authorization,
        x_cron_secret=x_cron_secret,
        secret_param=secret,
        platform_header=request.headers.get(settings.platform_cron_header, ""),
    )
    if not authorized:
        logger.warning("Unauthorized cron trigger", extra={"client": request.client.host if request.client else None})
        raise HTTPException(status_code=401, detail="Unauthorized")

    result = RankService(db).expire_ranks()
    return SweepResponse(
        success=True,
        removed=result.removed,
        users=result.users,
        failed=result.failed,
        timestamp=utcnow(),
    )
