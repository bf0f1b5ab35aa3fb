from typing import Any, Dict, Optional

import requests

from blog_migrator.migrators.supabase_migrator import supabase_headers
from blog_migrator.utils.errors import PreFlightCheckError

REQUIRED_STORAGE_KEYS = ("account_id", "access_key_id", "secret_access_key", "bucket", "public_url")


def run_pre_flight_checks(config: Dict[str, Any], *, session: Optional[requests.Session] = None) -> None:
    """
    Verifies that storage and the destination store are configured before a live run.

    Args:
        config: The application configuration dictionary.
        session: Optional HTTP session used for the reachability check.

    Raises:
        PreFlightCheckError: If any check fails.
    """
    print("[INFO] Running pre-flight checks...")
    http = session or requests

    storage = config.get("storage", {})
    missing = [k for k in REQUIRED_STORAGE_KEYS if not storage.get(k)]
    if missing:
        raise PreFlightCheckError(f"Missing object storage settings: {', '.join(missing)}")

    if config.get("migration", {}).get("database_path"):
        print("[INFO] Using local DuckDB store; skipping Supabase checks.")
        print("[INFO] Pre-flight checks passed successfully.")
        return

    supabase = config.get("supabase", {})
    if not supabase.get("url") or not supabase.get("service_role_key"):
        raise PreFlightCheckError("Supabase url or service role key not found in the configuration.")

    # Check: PostgREST answers with the service role key
    rest_url = f"{supabase['url'].rstrip('/')}/rest/v1/"
    try:
        response = http.get(rest_url, headers=supabase_headers(supabase), timeout=10)
        response.raise_for_status()
    except requests.HTTPError as e:
        if e.response is not None and e.response.status_code in (401, 403):
            raise PreFlightCheckError("The Supabase service role key is invalid or lacks access.")
        raise PreFlightCheckError(f"Unexpected error checking the Supabase REST API: {e}")
    except requests.RequestException as e:
        raise PreFlightCheckError(f"Network error connecting to Supabase: {e}")

    print("[INFO] Pre-flight checks passed successfully.")
