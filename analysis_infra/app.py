"""
Modal app, image and secrets shared by every function in the service.
"""

import modal

from .config import APP_NAME

app = modal.App(APP_NAME)

function_image = (
    modal.Image.debian_slim(python_version="3.12")
    .pip_install(
        "fastapi>=0.110",
        "httpx>=0.27",
        "pydantic>=2.6",
        "redis>=5.0",
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "e2b>=1.0",
        "e2b-code-interpreter>=1.0",
        "PyJWT[crypto]>=2.8",
    )
    .add_local_python_source("analysis_infra")
)

# GITHUB_APP_ID, GITHUB_APP_PRIVATE_KEY, GITHUB_WEBHOOK_SECRET, BEETLE_BOT_LOGIN
github_app_secrets = modal.Secret.from_name("beetle-github-app")

# INTERNAL_API_SECRET
internal_api_secret = modal.Secret.from_name("beetle-internal-api")

# REDIS_URL, DATABASE_URL, E2B_API_KEY, E2B_SANDBOX_TEMPLATE
infra_secrets = modal.Secret.from_name("beetle-infra")

# GOOGLE_*, AWS_*, MAIL_*
provider_secrets = modal.Secret.from_name("beetle-providers")
