import logging

from .config import settings

logger = logging.getLogger("aiam.firebase")


def _ensure_firebase_admin_initialized():
    """Initialize the default firebase_admin app once per process."""
    import firebase_admin
    from firebase_admin import credentials

    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = {}
    bucket = settings.FIREBASE_STORAGE_BUCKET
    if not bucket and settings.FIREBASE_PROJECT_ID:
        bucket = f"{settings.FIREBASE_PROJECT_ID}.appspot.com"
    if bucket:
        options["storageBucket"] = bucket

    if settings.FIREBASE_PROJECT_ID and settings.FIREBASE_CLIENT_EMAIL and settings.FIREBASE_PRIVATE_KEY:
        if "BEGIN PRIVATE KEY" not in settings.FIREBASE_PRIVATE_KEY:
            logger.warning("Private key may be malformed - missing BEGIN PRIVATE KEY marker")
        cred = credentials.Certificate({
            "type": "service_account",
            "project_id": settings.FIREBASE_PROJECT_ID,
            "client_email": settings.FIREBASE_CLIENT_EMAIL,
            "private_key": settings.FIREBASE_PRIVATE_KEY,
            "token_uri": "https://oauth2.googleapis.com/token",
        })
    else:
        # Requires GOOGLE_APPLICATION_CREDENTIALS or a metadata server
        cred = credentials.ApplicationDefault()

    app = firebase_admin.initialize_app(cred, options or None)
    logger.info("firebase_admin initialized (bucket=%s)", bucket)
    return app


def get_firestore():
    """Async Firestore client bound to the default app."""
    from firebase_admin import firestore_async

    _ensure_firebase_admin_initialized()
    return firestore_async.client()


def get_bucket():
    """Default Cloud Storage bucket."""
    from firebase_admin import storage

    _ensure_firebase_admin_initialized()
    return storage.bucket()
