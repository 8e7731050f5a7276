from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tradealerts.config import get_settings


def main() -> int:
    settings = get_settings()

    required = {
        "SUPABASE_URL": settings.supabase_url,
        "SUPABASE_SERVICE_KEY": settings.supabase_service_key,
        "POLYGON_API_KEY": settings.polygon_api_key,
    }
    optional = {
        "EXPO_ACCESS_TOKEN": settings.expo_access_token,
        "FUNCTIONS_BASE_URL": settings.functions_base_url,
        "FUNCTION_SECRET": settings.function_secret,
    }

    missing_required = [name for name, value in required.items() if not str(value or "").strip()]

    print("Environment check")
    print("=================")
    for name, value in required.items():
        print(f"[{'ok' if value else 'missing'}] {name} (required)")
    for name, value in optional.items():
        print(f"[{'ok' if value else 'missing'}] {name} (optional)")

    if missing_required:
        print("\nMissing required environment variables:")
        for item in missing_required:
            print(f"- {item}")
        return 1

    print("\nAll required environment variables are present.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
