# giftfund/api/main.py

# This is the main FastAPI application entry point.
# It sets up the FastAPI app instance, adds global middleware,
# defines startup/shutdown events, registers the error handlers
# and includes the routers from the feature modules.

import traceback

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# --- Import modules from their locations ---
from ..config.settings import settings
from ..db import mongo_client as database
from ..features.checkout import routes as checkout_routes
from ..features.contributions import routes as contributions_routes
from ..features.contributions.payment_gateway import build_payment_gateway
from ..features.events import routes as events_routes
from ..features.invitations import routes as invitations_routes
from ..features.orders import routes as orders_routes
from ..shared.errors import GiftFundError
from ..shared.notifications import MongoNotifier


# --- FastAPI App Instance ---
app = FastAPI(title="GiftFund Backend")

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # Adjust in production!
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"], # Includes Authorization
)

# Collaborators are set here so they exist even when startup does not run (tests).
app.state.settings = settings
app.state.notifier = MongoNotifier()
app.state.payment_gateway = None


# --- Application Startup Event ---
@app.on_event("startup")
async def startup_event():
    """Connects to MongoDB, ensures indexes and builds the payment gateway."""
    print("Application startup initiated.")
    app.state.db_client = None

    try:
        await database.connect_to_mongo(app.state.settings)
        app.state.db_client = database.mongo_client
        if app.state.db_client is not None:
            await database.ensure_indexes()
            print("Database connection established and collections are accessible.")
    except Exception as e:
        print(f"FATAL ERROR: Database connection failed on startup: {e}")
        traceback.print_exc()
        app.state.db_client = None

    app.state.payment_gateway = build_payment_gateway(app.state.settings)

    if app.state.db_client is None:
        print("FATAL ERROR: MongoDB is not available. Endpoints will answer 503 until it is.")

    print("Application startup complete.")


# --- Application Shutdown Event ---
@app.on_event("shutdown")
async def shutdown_event():
    """Closes the MongoDB connection."""
    print("Application shutdown initiated.")
    if getattr(app.state, "db_client", None) is not None:
        await database.close_mongo_connection(app.state.db_client)


# --- Include Feature Routers ---
app.include_router(events_routes.router)
app.include_router(checkout_routes.router)
app.include_router(invitations_routes.router)
app.include_router(contributions_routes.router)
app.include_router(orders_routes.router)


# --- Root Endpoint ---
@app.get("/")
async def read_root():
    return {"message": "GiftFund Backend is running."}


# --- Global Exception Handlers ---
@app.exception_handler(GiftFundError)
async def giftfund_error_handler(request: Request, exc: GiftFundError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    reasons = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        reasons.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "reasons": reasons},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    print(f"Unhandled exception occurred: {exc}")
    print(traceback.format_exc())
    content = {"success": False, "message": "An internal server error occurred."}
    if settings.is_development:
        content["error"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# --- Main Execution Block ---
if __name__ == "__main__":
    print("Starting FastAPI server with uvicorn...")
    uvicorn.run(
        "giftfund.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
