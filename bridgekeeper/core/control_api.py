# /bridgekeeper/core/control_api.py
# Operator surface: halt toggle and pending-burn inspection/claim/dismiss.
# The controller is attached to app.state by whoever starts the server.
from fastapi import Depends, FastAPI, Header, HTTPException, Request

from bridgekeeper.core.config import settings
from bridgekeeper.core.controller import TransferController
from bridgekeeper.core.errors import DismissNotAcknowledged, NoPendingTransfer
from bridgekeeper.core.kill import activate_kill_switch, deactivate_kill_switch, is_kill_switch_active
from bridgekeeper.core.logger import get_logger

app = FastAPI(title="bridgekeeper control")
log = get_logger(__name__)


def verify(authorization: str | None = Header(None)):
    token = settings.CONTROL_API_TOKEN
    if not token:
        raise HTTPException(status_code=500, detail="Control token not configured")
    if authorization != f"Bearer {token}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_controller(request: Request) -> TransferController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Transfer controller not attached")
    return controller


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "halt_active": is_kill_switch_active()}


@app.post("/kill/toggle")
async def toggle_kill(reason: str = "", auth: None = Depends(verify)):
    if is_kill_switch_active():
        deactivate_kill_switch()
    else:
        activate_kill_switch(reason or "manual override")
    return {"halt_active": is_kill_switch_active()}


@app.get("/pending/{wallet}")
async def pending(wallet: str, auth: None = Depends(verify), controller: TransferController = Depends(get_controller)):
    status = await controller.pending_status(wallet)
    if status is None:
        raise HTTPException(status_code=404, detail=f"No pending burn for {wallet}")
    return status.model_dump()


@app.post("/pending/{wallet}/claim")
async def claim(wallet: str, auth: None = Depends(verify), controller: TransferController = Depends(get_controller)):
    try:
        event = await controller.claim_pending(wallet)
    except NoPendingTransfer as e:
        raise HTTPException(status_code=404, detail=str(e))
    log.info("OPERATOR_CLAIM", wallet=wallet, outcome=event.kind)
    return event.model_dump()


@app.delete("/pending/{wallet}")
async def dismiss(
    wallet: str,
    acknowledge: bool = False,
    auth: None = Depends(verify),
    controller: TransferController = Depends(get_controller),
):
    try:
        record = await controller.dismiss_pending(wallet, acknowledged=acknowledge)
    except DismissNotAcknowledged as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NoPendingTransfer as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"dismissed": record.model_dump(mode="json")}
