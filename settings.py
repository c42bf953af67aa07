# settings.py
import os
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from errors import ConfigurationError

# Field name -> environment variable, for everything the renderer cannot run without.
REQUIRED_ENV: Dict[str, str] = {
    "supabase_url": "PUBLIC_SUPABASE_URL",
    "supabase_service_key": "SUPABASE_SERVICE_ROLE_KEY",
    "remotion_bundle_url": "REMOTION_BUNDLE_URL",
    "r2_account_id": "CLOUDFLARE_ACCOUNT_ID",
    "r2_access_key_id": "CLOUDFLARE_R2_ACCESS_KEY_ID",
    "r2_secret_access_key": "CLOUDFLARE_R2_SECRET_ACCESS_KEY",
    "r2_bucket": "CLOUDFLARE_R2_BUCKET_NAME",
    "r2_public_base": "CLOUDFLARE_R2_PUBLIC_URL",
}

OPTIONAL_ENV: Dict[str, str] = {
    "exports_table": "EXPORTS_TABLE",
    "composition_id": "REMOTION_COMPOSITION",
    "remotion_cli": "REMOTION_CLI",
    "log_level": "LOG_LEVEL",
}


class Settings(BaseModel):
    supabase_url: str
    supabase_service_key: str
    remotion_bundle_url: str
    r2_account_id: str
    r2_access_key_id: str
    r2_secret_access_key: str
    r2_bucket: str
    r2_public_base: str

    exports_table: str = Field(default="exports")
    composition_id: str = Field(default="RenderComposition")
    remotion_cli: str = Field(default="npx remotion")
    log_level: str = Field(default="INFO")

    @property
    def r2_endpoint_url(self) -> str:
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from an environment mapping (os.environ by default).
        Raises ConfigurationError naming every required variable that is unset or blank.
        """
        env = os.environ if environ is None else environ

        values: Dict[str, str] = {}
        missing = []
        for field, var in REQUIRED_ENV.items():
            raw = (env.get(var) or "").strip()
            if not raw:
                missing.append(var)
            values[field] = raw
        if missing:
            raise ConfigurationError(missing)

        for field, var in OPTIONAL_ENV.items():
            raw = (env.get(var) or "").strip()
            if raw:
                values[field] = raw

        return cls(**values)


def load_settings(dotenv_path: Optional[str] = None) -> Settings:
    """Load .env (without overriding real env vars) and build Settings once."""
    load_dotenv(dotenv_path)
    return Settings.from_env()
