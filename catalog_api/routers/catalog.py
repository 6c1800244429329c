from fastapi import APIRouter, Depends, HTTPException, status

from spring_ingest.store import load_snapshot

from ..config import Settings, get_settings

router = APIRouter()


@router.get("/catalog")
def catalog(settings: Settings = Depends(get_settings)):
    snapshot = load_snapshot(settings.catalog_path)
    if snapshot is None:
        return {"generatedAt": None, "store": None, "designs": []}
    return snapshot.to_wire()


@router.get("/catalog/{slug}")
def catalog_entry(slug: str, settings: Settings = Depends(get_settings)):
    snapshot = load_snapshot(settings.catalog_path)
    entry = next((d for d in snapshot.designs if d.slug == slug), None) if snapshot else None
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Design not found")
    return entry.to_wire()
