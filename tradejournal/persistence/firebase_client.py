from __future__ import annotations

import os
import sys
import threading
from typing import Optional

import firebase_admin
from firebase_admin import firestore

# Set by the Cloud Functions (gen2) / Cloud Run runtime.
_MANAGED_RUNTIME_ENV = ("K_SERVICE", "FUNCTION_TARGET")

_init_lock = threading.Lock()


def is_local_execution() -> bool:
    """
    True for ENV=local, or when none of the managed runtime variables are set.
    """
    if (os.getenv("ENV") or "").strip().lower() == "local":
        return True
    if any((os.getenv(name) or "").strip() for name in _MANAGED_RUNTIME_ENV):
        return False
    return not any(k.startswith("GAE_") for k in os.environ)


def require_firestore_emulator_or_allow_prod(*, caller: str) -> None:
    """
    Refuse to touch production Firestore from a developer machine.

    Locally, FIRESTORE_EMULATOR_HOST must be set, or ALLOW_PROD_FIRESTORE=1
    must opt in explicitly. Exits with status 2 otherwise.
    """
    if not is_local_execution():
        return
    if (os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip():
        return
    if (os.getenv("ALLOW_PROD_FIRESTORE") or "").strip() == "1":
        return

    sys.stderr.write(
        f"ERROR: {caller} would write user balances and dashboards in production Firestore.\n"
        "Start the emulator and set FIRESTORE_EMULATOR_HOST (e.g. 127.0.0.1:8080),\n"
        "or set ALLOW_PROD_FIRESTORE=1 if that is really intended.\n"
    )
    raise SystemExit(2)


def _resolve_project_id(explicit_project_id: Optional[str] = None) -> Optional[str]:
    return explicit_project_id or os.getenv("FIREBASE_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT") or None


def init_firebase_admin(*, project_id: Optional[str] = None) -> None:
    """Initialize the default Firebase app once per process."""
    require_firestore_emulator_or_allow_prod(caller="init_firebase_admin")

    with _init_lock:
        if firebase_admin._apps:
            return
        resolved = _resolve_project_id(project_id)
        firebase_admin.initialize_app(options={"projectId": resolved} if resolved else None)


def get_firestore_client(*, project_id: Optional[str] = None):
    """Firestore client for the default app; the runtime supplies credentials."""
    init_firebase_admin(project_id=project_id)
    return firestore.client()
