import uvicorn
import time
import logging
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from deployer.api.webhooks import router as webhooks_router
from deployer.api.runs import router as runs_router
from deployer.utils.logging_config import setup_logging

setup_logging(level=logging.INFO)
logger = logging.getLogger("main")

app = FastAPI(title="Application Deployment Pipeline")

# ---------------------------------------------------------------------------
# Logging Middleware
# ---------------------------------------------------------------------------
class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_host = request.client.host if request.client else "unknown"
        logger.info("Incoming: %s %s from %s", request.method, request.url.path, client_host)

        try:
            response = await call_next(request)
            process_time = (time.time() - start_time) * 1000
            logger.info(
                "Outgoing: %s %s - Status: %d - Time: %.2fms",
                request.method, request.url.path, response.status_code, process_time,
            )
            return response
        except Exception as e:
            logger.error("Request failed: %s %s - Error: %s", request.method, request.url.path, e)
            raise

app.add_middleware(LoggingMiddleware)

# Health endpoint
@app.get("/health")
async def health_check():
    return {"status": "ok"}

# Register routers
app.include_router(webhooks_router, tags=["Pipeline"])
app.include_router(runs_router, tags=["Pipeline"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000)
