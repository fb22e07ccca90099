import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str = "mongodb://127.0.0.1:27017"
    database_name: str = "threeDModuleToys"

    firebase_service_account_path: Optional[str] = None
    firebase_credentials: Optional[str] = None
    firebase_storage_bucket: Optional[str] = None

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""

    brevo_api_key: str = ""
    email_from: str = ""
    email_sender_name: str = "LayerLabs"
    frontend_url: str = "http://localhost:3000"

    default_state: str = "Tamil Nadu"
    log_level: str = "INFO"
    port: int = 8000

    def firebase_service_account(self) -> Dict[str, Any]:
        """Load the Firebase service account, preferring the file path over inline JSON."""
        if self.firebase_service_account_path:
            path = Path(self.firebase_service_account_path)
            if not path.is_absolute():
                path = Path.cwd() / path
            if not path.exists():
                raise RuntimeError(f"FIREBASE_SERVICE_ACCOUNT_PATH set but file not found: {path}")
            try:
                return json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise RuntimeError(f"Failed to parse JSON from service account file: {e}")

        raw = self.firebase_credentials
        if not raw:
            raise RuntimeError("No FIREBASE_SERVICE_ACCOUNT_PATH or FIREBASE_CREDENTIALS configured")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            pass
        try:
            return json.loads(raw.replace("\\n", "\n"))
        except json.JSONDecodeError:
            raise RuntimeError(
                "Failed to parse FIREBASE_CREDENTIALS JSON. "
                "Use escaped \\n in private_key, or point FIREBASE_SERVICE_ACCOUNT_PATH at a .json file."
            )


def load_settings() -> Settings:
    load_dotenv()
    env = os.getenv
    return Settings(
        database_url=env("DATABASE_URL", "mongodb://127.0.0.1:27017"),
        database_name=env("DATABASE_NAME", "threeDModuleToys"),
        firebase_service_account_path=env("FIREBASE_SERVICE_ACCOUNT_PATH") or None,
        firebase_credentials=env("FIREBASE_CREDENTIALS") or None,
        firebase_storage_bucket=env("FIREBASE_STORAGE_BUCKET") or None,
        razorpay_key_id=env("RAZORPAY_KEY_ID", ""),
        razorpay_key_secret=env("RAZORPAY_KEY_SECRET", ""),
        brevo_api_key=env("BREVO_API_KEY", ""),
        email_from=env("EMAIL_FROM", ""),
        email_sender_name=env("EMAIL_SENDER_NAME", "LayerLabs"),
        frontend_url=env("FRONTEND_URL", "http://localhost:3000"),
        default_state=env("DEFAULT_STATE", "Tamil Nadu"),
        log_level=env("LOG_LEVEL", "INFO"),
        port=int(env("PORT", 8000)),
    )
