import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from citerag.api.routes.documents import router as documents_router
from citerag.api.routes.query import router as query_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(
    title="citerag API",
    description="Document ingestion and cited question answering",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
    ],
    allow_origin_regex=r"https://.*\.vercel\.app|http://localhost:\d+",
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query_router)
app.include_router(documents_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}
