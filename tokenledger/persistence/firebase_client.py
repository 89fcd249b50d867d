from __future__ import annotations

import os
import threading
from typing import Mapping, Optional

import firebase_admin
import google.auth
from firebase_admin import credentials, firestore

_CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
_MANAGED_RUNTIME_VARS = ("K_SERVICE", "CLOUD_RUN_JOB")

_init_lock = threading.Lock()


class FirestoreConfigError(RuntimeError):
    """Firestore cannot be used as configured (missing ADC, project id, or emulator)."""


def _env(env: Mapping[str, str] | None, name: str) -> str:
    src = os.environ if env is None else env
    return str(src.get(name) or "").strip()


def is_local_execution(env: Mapping[str, str] | None = None) -> bool:
    """
    Local unless ENV says otherwise or a managed runtime (Cloud Run service/job) is detected.
    """
    if _env(env, "ENV").lower() == "local":
        return True
    return not any(_env(env, k) for k in _MANAGED_RUNTIME_VARS)


def require_firestore_emulator_or_allow_prod(*, caller: str, env: Mapping[str, str] | None = None) -> None:
    """
    Fail closed: a local process may only talk to the Firestore emulator.

    Override with ALLOW_PROD_FIRESTORE=1 when a local run really must hit production.
    """
    if not is_local_execution(env):
        return
    if _env(env, "FIRESTORE_EMULATOR_HOST") or _env(env, "ALLOW_PROD_FIRESTORE") == "1":
        return
    raise FirestoreConfigError(
        f"refusing to use production Firestore from local execution (caller={caller}); "
        "set FIRESTORE_EMULATOR_HOST (e.g. 127.0.0.1:8080) or ALLOW_PROD_FIRESTORE=1"
    )


def resolve_project_id(explicit: Optional[str] = None, *, env: Mapping[str, str] | None = None) -> Optional[str]:
    return explicit or _env(env, "FIREBASE_PROJECT_ID") or _env(env, "GOOGLE_CLOUD_PROJECT") or None


def _adc_project_id() -> Optional[str]:
    try:
        _, project_id = google.auth.default(scopes=[_CLOUD_PLATFORM_SCOPE])
    except Exception:  # noqa: BLE001
        return None
    return project_id or None


def init_firebase_admin(*, project_id: Optional[str] = None) -> None:
    """
    Initialize the Firebase Admin SDK once per process with Application Default Credentials.
    """
    require_firestore_emulator_or_allow_prod(caller="tokenledger.persistence.init_firebase_admin")
    if firebase_admin._apps:
        return

    with _init_lock:
        if firebase_admin._apps:
            return
        try:
            cred = credentials.ApplicationDefault()
        except Exception as e:
            raise FirestoreConfigError(
                "no Application Default Credentials for Firebase Admin "
                "(locally: `gcloud auth application-default login`)"
            ) from e

        resolved = resolve_project_id(project_id) or _adc_project_id()
        if not resolved:
            raise FirestoreConfigError("Firestore project id unknown: set FIREBASE_PROJECT_ID or GOOGLE_CLOUD_PROJECT")
        firebase_admin.initialize_app(cred, {"projectId": resolved})


def get_firestore_client(*, project_id: Optional[str] = None):
    init_firebase_admin(project_id=project_id)
    return firestore.client()
