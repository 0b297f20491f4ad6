# main.py
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import os
from dotenv import load_dotenv

# Load environment variables before any service module reads them
load_dotenv()

from fastapi import FastAPI, Request
from api.meal_scan import router as meal_scan_router
from services.background_tasks import start_background_tasks

# Initialize FastAPI app
app = FastAPI(
    title="Nutrition Tracker Meal Scan API",
    description="Meal photo analysis with rate limiting and provider fallback",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Every error body uses the same {"error": ...} shape
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    print(f"❌ Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

# Initialize services on startup
@app.on_event("startup")
async def startup_event():
    """Initialize services when the app starts"""
    print("🚀 Starting Meal Scan API...")

    try:
        # Initialize Supabase
        from services.supabase_service import init_supabase_service
        init_supabase_service()
        print("✅ Supabase service initialized")

        # Initialize rate limiter (may use Supabase as its store)
        from services.rate_limiter import init_rate_limiter
        init_rate_limiter()

        # Initialize vision providers
        from services.openai_vision_service import init_openai_vision_service
        from services.logmeal_service import init_logmeal_service
        primary = init_openai_vision_service()
        fallback = init_logmeal_service()
        if not primary.is_configured and not fallback.is_configured:
            print("⚠️ No meal vision provider configured - every scan will return 503")

        from services.meal_scan_orchestrator import init_meal_scan_orchestrator
        init_meal_scan_orchestrator()

        start_background_tasks()
        print("✅ Background tasks started")

        print("🎉 Backend startup complete!")

    except Exception as e:
        print(f"❌ Error during startup: {e}")
        raise

# Include API routers
app.include_router(meal_scan_router, tags=["meal-scan"])

# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "Nutrition Tracker Meal Scan API",
        "version": "1.0.0",
        "status": "running",
        "features": ["meal_photo_analysis", "provider_fallback", "rate_limiting"]
    }

# Health check endpoint
@app.get("/health")
async def health_check():
    from services.supabase_service import get_supabase_service
    from services.meal_scan_orchestrator import get_meal_scan_orchestrator
    from services.rate_limiter import get_rate_limit_store

    try:
        supabase_health = await get_supabase_service().health_check()
        orchestrator = get_meal_scan_orchestrator()

        return {
            "status": "healthy",
            "services": {
                "api": "healthy",
                "supabase": supabase_health,
                "rate_limiter": type(get_rate_limit_store()).__name__,
                "providers": {
                    provider.name: "configured" if provider.is_configured else "not configured"
                    for provider in orchestrator.providers
                }
            },
            "message": "All services are running"
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "message": "Some services are down"
        }

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
