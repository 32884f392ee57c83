import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).parent.parent / ".env")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routers.summary_router import create_summary_router
from wallet_summary import WalletSummaryService, create_default_service

# CORS: support both local development and production
allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
# Add Railway production URL if set
railway_url = os.getenv("RAILWAY_PUBLIC_DOMAIN")
if railway_url:
    allowed_origins.append(f"https://{railway_url}")


def create_app(summary_service: WalletSummaryService | None = None) -> FastAPI:
    app = FastAPI()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.get("/health")
    def health():
        return {"ok": True}

    service = summary_service or create_default_service()
    app.include_router(create_summary_router(summary_service=service))
    print(f"[Init] Wallet summary API ready (recency window: {service.recency_days} days)")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
