import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.server.routers.payment_routes import payment_router
from app.server.routers.promo_code_routes import promo_code_router
from app.services.errors import DomainError, GatewayError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI()

# Define the allowed origins
origins = [
    "http://localhost:8080",
    "http://localhost:5173",
    # Add other origins as needed
]

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,  # Allows requests from these origins
    allow_credentials=True,
    allow_methods=["*"],  # Allows all methods (GET, POST, etc.)
    allow_headers=["*"],  # Allows all headers
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if isinstance(exc, GatewayError):
        logger.warning(
            f"Gateway error on {request.url.path} "
            f"(provider={exc.provider}, retryable={exc.retryable}): {exc.message}"
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/", tags=["root"])
def root():
    return {"message": "success"}


# Include the routers in the main app with a prefix
app.include_router(promo_code_router, prefix="/promo-codes", tags=["promo-codes"])
app.include_router(payment_router, prefix="/payments", tags=["payments"])

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)
