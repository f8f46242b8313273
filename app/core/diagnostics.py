"""
Startup diagnostics: configuration problems and connectivity, reported instead of hanging.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import Settings, settings, validate_settings
from app.database.query import check_connectivity

logger = logging.getLogger(__name__)


def run_startup_diagnostics(config: Optional[Settings] = None, client: Any = None) -> Dict[str, Any]:
    """
    Validate configuration and, when it is usable, check database connectivity.

    The connectivity check is bounded by connectivity_timeout_seconds.
    """
    config = config or settings
    missing = validate_settings(config)
    checks: Dict[str, Dict[str, Any]] = {}

    if missing:
        checks["database"] = {"ok": False, "error": "skipped: configuration incomplete"}
    else:
        start = time.perf_counter()
        try:
            if client is None:
                from app.database.supabase_client import SupabaseClient
                client = SupabaseClient.get_client()
        except Exception as e:
            logger.error(f"Could not create Supabase client: {e}")
            ok, error = False, str(e)
        else:
            ok, error = check_connectivity(client, config.connectivity_timeout_seconds)
        checks["database"] = {
            "ok": ok,
            "error": error,
            "latency_ms": round((time.perf_counter() - start) * 1000, 1),
        }

    checks["whatsapp"] = {"ok": config.whatsapp_configured, "error": None if config.whatsapp_configured else "not configured"}
    checks["storage"] = {
        "ok": bool(config.s3_bucket_name and config.aws_access_key_id),
        "error": None if config.s3_bucket_name else "not configured",
    }

    report = {
        "ok": not missing and checks["database"]["ok"],
        "missing": missing,
        "checks": checks,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }
    if report["ok"]:
        logger.info("Startup diagnostics passed")
    else:
        for problem in missing:
            logger.error(f"Configuration problem: {problem}")
        if checks["database"].get("error"):
            logger.error(f"Database check failed: {checks['database']['error']}")
    return report
