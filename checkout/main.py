from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from checkout.database import Base, engine
from checkout.logging_config import get_logger, setup_logging
from checkout.routes import router

setup_logging()
log = get_logger(__name__)

app = FastAPI(title="Checkout Payment Service")

app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # the intent transports expect {error: "..."} on every failure
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    log.warning(f"Rejected {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})
