"""
Dynamic Query API Server

FastAPI server for the dynamic query designer: compiles designer graphs
into persisted traversal patterns, maintains column order, and shapes
query results for tabular display.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import APP_ENV, FRONTEND_ORIGINS, LOG_LEVEL, QUERY_BACKEND_URL
from dynamic_query_api import router as dynamic_query_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Dynamic Query API",
    description="API for designing dynamic queries and shaping their results",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dynamic_query_router)

if not QUERY_BACKEND_URL:
    logger.warning("QUERY_BACKEND_URL is not set; query execution endpoints will return 500.")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "dynamic-query-api", "environment": APP_ENV}


# Development server
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
