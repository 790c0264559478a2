from typing import Any, Dict

from fastapi import APIRouter, Depends

from userbase.api.deps import get_health_checker
from userbase.db.base import utcnow
from userbase.services.health import HealthChecker

router = APIRouter()


@router.get("")
async def get_status(checker: HealthChecker = Depends(get_health_checker)) -> Dict[str, Any]:
    services = await checker.check_all()
    healthy = sum(1 for service in services if service.is_healthy)
    if healthy == len(services):
        overall = "operational"
    elif healthy == 0:
        overall = "down"
    else:
        overall = "degraded"
    return {
        "status": overall,
        "services": [service.to_dict() for service in services],
        "timestamp": utcnow().isoformat(),
    }
