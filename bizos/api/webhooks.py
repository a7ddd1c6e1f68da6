"""
Inbound webhook endpoint

The raw request body is passed through untouched; signatures are computed
over the exact bytes the provider sent.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/{provider}")
async def receive_webhook(provider: str, request: Request):
    raw_body = await request.body()
    gateway = request.app.state.webhook_gateway
    result = await gateway.handle(
        provider,
        raw_body,
        dict(request.headers),
        dict(request.query_params),
    )
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
