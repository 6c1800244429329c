from fastapi import Depends, FastAPI

from .config import Settings, get_settings
from .routers import catalog, ingest

app = FastAPI(title="Spring Catalog API", version="0.1.0")


@app.get("/health")
def healthcheck(settings: Settings = Depends(get_settings)):
    return {"status": "ok", "env": settings.env}


app.include_router(ingest.router, prefix="/api", tags=["ingest"])
app.include_router(catalog.router, tags=["catalog"])
