import gzip, logging, os, tempfile
from pathlib import Path
from typing import Optional, Union

import orjson
from pydantic import ValidationError

from .schema import CatalogSnapshot

logger = logging.getLogger(__name__)


def gz_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".gz")


def read_snapshot_payload(path: Union[str, Path]) -> Optional[bytes]:
    """Raw snapshot JSON, preferring the compressed twin. None when neither exists."""
    path = Path(path)
    gz_path = gz_path_for(path)
    try:
        return gzip.decompress(gz_path.read_bytes())
    except FileNotFoundError:
        pass
    except (OSError, EOFError) as exc:
        logger.warning("[STORE] Failed to read compressed snapshot %s: %s", gz_path, exc)
        return None
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("[STORE] Failed to read snapshot %s: %s", path, exc)
        return None


def load_snapshot(path: Union[str, Path]) -> Optional[CatalogSnapshot]:
    payload = read_snapshot_payload(path)
    if payload is None:
        return None
    try:
        return CatalogSnapshot.model_validate(orjson.loads(payload))
    except (orjson.JSONDecodeError, ValidationError) as exc:
        logger.warning("[STORE] Ignoring unreadable snapshot %s: %s", path, exc)
        return None


def dump_snapshot(snapshot: CatalogSnapshot) -> bytes:
    return orjson.dumps(snapshot.to_wire(), option=orjson.OPT_INDENT_2)


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def write_snapshot(snapshot: CatalogSnapshot, path: Union[str, Path]) -> int:
    """Write inflated and gzip twins, each via write-then-rename. Returns compressed size."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = dump_snapshot(snapshot)
    compressed = gzip.compress(payload)
    # Readers prefer the compressed twin, so it is replaced first.
    _atomic_write(gz_path_for(path), compressed)
    _atomic_write(path, payload)
    logger.info("[STORE] Saved %d product cards to %s", len(snapshot.designs), path)
    logger.info("[STORE] Compressed catalog -> %s (%.1f MB)", gz_path_for(path), len(compressed) / (1024 * 1024))
    return len(compressed)
