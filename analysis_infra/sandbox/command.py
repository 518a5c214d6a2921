"""
Analyzer command line construction.

The sandbox template ships the analyzer at /workspace/main.py. Each model
provider needs its credentials delivered differently:

- google:  API key passed on the command line (--api-key)
- vertex:  service account JSON (base64) in the command's environment
- bedrock: AWS credentials in the command's environment
"""

import json
import shlex
from typing import Any, NamedTuple

from ..config import Settings
from ..errors import ProviderCredentialsError, UnknownProviderError
from ..types import AnalysisKind

ANALYZER_WORKDIR = "/workspace"


class AnalysisCommand(NamedTuple):
    """Command line plus per-command environment."""

    command: str
    envs: dict[str, str]


def sandbox_envs(settings: Settings) -> dict[str, str]:
    """Environment every analysis sandbox is created with."""
    envs = {
        "AWS_ACCESS_KEY_ID": settings.aws_access_key_id or "",
        "AWS_SECRET_ACCESS_KEY": settings.aws_secret_access_key or "",
        "AWS_DEFAULT_REGION": settings.aws_region,
        "AWS_REGION": settings.aws_region,
    }
    if settings.aws_bedrock_api_key:
        envs["AWS_BEARER_TOKEN_BEDROCK"] = settings.aws_bedrock_api_key
    if settings.google_credentials_json_base64:
        envs["GOOGLE_CREDENTIALS_JSON_BASE64"] = settings.google_credentials_json_base64
    return envs


def _google(settings: Settings) -> tuple[list[str], dict[str, str]]:
    if not settings.google_api_key:
        raise ProviderCredentialsError("GOOGLE_API_KEY is required for provider 'google'")
    return ["--api-key", settings.google_api_key], {}


def _vertex(settings: Settings) -> tuple[list[str], dict[str, str]]:
    if not settings.google_credentials_json_base64:
        raise ProviderCredentialsError(
            "GOOGLE_CREDENTIALS_JSON_BASE64 is required for provider 'vertex'"
        )
    args = ["--provider", "vertex"]
    if settings.google_cloud_project:
        args += ["--project", settings.google_cloud_project]
    return args, {"GOOGLE_CREDENTIALS_JSON_BASE64": settings.google_credentials_json_base64}


def _bedrock(settings: Settings) -> tuple[list[str], dict[str, str]]:
    envs = {"AWS_REGION": settings.aws_region, "AWS_DEFAULT_REGION": settings.aws_region}
    if settings.aws_bedrock_api_key:
        envs["AWS_BEARER_TOKEN_BEDROCK"] = settings.aws_bedrock_api_key
    elif settings.aws_access_key_id and settings.aws_secret_access_key:
        envs["AWS_ACCESS_KEY_ID"] = settings.aws_access_key_id
        envs["AWS_SECRET_ACCESS_KEY"] = settings.aws_secret_access_key
    else:
        raise ProviderCredentialsError(
            "AWS_BEDROCK_API_KEY or AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY is required "
            "for provider 'bedrock'"
        )
    return ["--provider", "bedrock", "--region", settings.aws_region], envs


PROVIDER_STRATEGIES = {
    "google": _google,
    "vertex": _vertex,
    "bedrock": _bedrock,
}


def validate_provider(settings: Settings, provider: str) -> None:
    """Fail fast on a provider that cannot be run with the current settings."""
    strategy = PROVIDER_STRATEGIES.get(provider.lower())
    if strategy is None:
        raise UnknownProviderError(provider)
    strategy(settings)


def build_analysis_command(
    settings: Settings,
    *,
    provider: str,
    repo_url: str,
    job_id: str,
    user_id: str,
    model_id: str,
    kind: AnalysisKind,
    github_repository_id: int | None = None,
    branch: str | None = None,
    data: dict[str, Any] | None = None,
) -> AnalysisCommand:
    """Build the analyzer invocation for a provider.

    Raises:
        UnknownProviderError: provider has no credential strategy
        ProviderCredentialsError: the provider's credentials are missing
    """
    strategy = PROVIDER_STRATEGIES.get(provider.lower())
    if strategy is None:
        raise UnknownProviderError(provider)
    provider_args, envs = strategy(settings)

    args = [
        "python",
        "-u",
        "main.py",
        repo_url,
        "--user-id",
        user_id,
        "--analysis-id",
        job_id,
        "--model",
        model_id,
        "--mode",
        kind.value,
    ]
    if github_repository_id is not None:
        args += ["--github-repository-id", str(github_repository_id)]
    if branch:
        args += ["--branch", branch]
    args += provider_args
    args += ["--data", json.dumps(data or {}, separators=(",", ":"))]

    command = f"cd {ANALYZER_WORKDIR} && stdbuf -oL -eL " + shlex.join(args)
    return AnalysisCommand(command=command, envs=envs)
