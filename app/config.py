import os
import json
import logging
import firebase_admin
from firebase_admin import credentials

logger = logging.getLogger("app.firebase")


def init_firebase():
    """Initialize Firebase admin SDK (token verification and FCM push).

    Behavior:
    - If an app is already initialised, keep it.
    - If FIREBASE_CERT_JSON env var is present, parse it as JSON and use it.
    - Else if FIREBASE_CERT_PATH env var is set or file 'firebase_key.json' exists, use that path.
    - Else, do nothing; push delivery is then skipped and only mock tokens authenticate.
    """
    if firebase_admin._apps:
        return

    fb_json = os.environ.get("FIREBASE_CERT_JSON")
    if fb_json:
        try:
            cred = credentials.Certificate(json.loads(fb_json))
            firebase_admin.initialize_app(cred)
            logger.info("Firebase initialised from FIREBASE_CERT_JSON")
            return
        except Exception as e:
            # Fall through to file-based loading which may still work
            logger.error(f"Failed to init Firebase from FIREBASE_CERT_JSON: {e}")

    fb_path = os.environ.get("FIREBASE_CERT_PATH", "firebase_key.json")
    if fb_path and os.path.exists(fb_path):
        try:
            firebase_admin.initialize_app(credentials.Certificate(fb_path))
            logger.info(f"Firebase initialised from {fb_path}")
            return
        except Exception as e:
            logger.error(f"Failed to init Firebase from path {fb_path}: {e}")

    logger.warning("No Firebase credentials found; skipping Firebase initialization.")
