from fastapi import APIRouter, Depends, HTTPException

from ..core.dispatcher import DispatchError
from ..core.session import DashboardSession
from ..schemas.fleet import DeploymentOutcome, DeploymentPrompt, FleetUnit
from .deps import get_session

router = APIRouter(tags=["dispatch"])


@router.get("/dispatch/prompt", response_model=DeploymentPrompt)
async def get_prompt(session: DashboardSession = Depends(get_session)) -> DeploymentPrompt:
    return session.dispatcher.prompt


@router.post("/dispatch/deploy", response_model=DeploymentOutcome)
async def deploy(session: DashboardSession = Depends(get_session)) -> DeploymentOutcome:
    """
    Engage the primary unit and raise the activation signal. A failed
    write comes back as success=false; the unit is returned to its
    previous status and the prompt stays open.
    """
    try:
        return await session.dispatcher.deploy()
    except DispatchError as e:
        raise HTTPException(409, detail=str(e))


@router.post("/dispatch/dismiss")
async def dismiss(session: DashboardSession = Depends(get_session)) -> dict:
    closed = session.dispatcher.dismiss()
    return {"dismissed": closed}


@router.get("/fleet", response_model=list[FleetUnit])
async def get_fleet(session: DashboardSession = Depends(get_session)) -> list[FleetUnit]:
    return session.fleet.units()
