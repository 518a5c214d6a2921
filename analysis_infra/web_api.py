"""
Web API endpoints for the analysis service.

These endpoints expose the analysis pipeline as HTTP APIs called by the
product backend, by the analyzer running inside a sandbox, and by GitHub.

SECURITY: Internal endpoints require an HMAC-signed token in the
Authorization header. The webhook endpoint is authenticated by the GitHub
signature instead, and the comment-recording endpoint by a per-job token.
"""

import json
import time

from fastapi import Header, HTTPException, Request
from fastapi.responses import StreamingResponse
from modal import fastapi_endpoint

from .app import (
    app,
    function_image,
    github_app_secrets,
    infra_secrets,
    internal_api_secret,
    provider_secrets,
)
from .auth.internal import AuthConfigurationError, verify_internal_token
from .log_config import configure_logging, get_logger

configure_logging()
log = get_logger("web_api")

ANALYSIS_FUNCTION_TIMEOUT_SECONDS = 2 * 60 * 60


def require_auth(authorization: str | None) -> None:
    """
    Verify authentication, raising HTTPException on failure.

    Args:
        authorization: The Authorization header value

    Raises:
        HTTPException: 401 if authentication fails, 503 if auth is misconfigured
    """
    try:
        if not verify_internal_token(authorization):
            raise HTTPException(
                status_code=401,
                detail="Unauthorized: Invalid or missing authentication token",
            )
    except AuthConfigurationError as e:
        # Auth system is misconfigured - this is a server error, not client error
        raise HTTPException(
            status_code=503,
            detail=f"Service unavailable: Authentication not configured. {e}",
        )


def parse_analysis_request(body: dict):
    """Validate a request body, raising HTTPException 400 on bad input."""
    from pydantic import ValidationError

    from .types import AnalysisRequest

    try:
        return AnalysisRequest.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid analysis request: {e}")


@app.function(image=function_image)
@fastapi_endpoint(method="GET")
def api_health() -> dict:
    """Health check endpoint. Does not require authentication."""
    return {"success": True, "data": {"status": "healthy", "service": "beetle-analysis"}}


@app.function(
    image=function_image,
    secrets=[internal_api_secret, infra_secrets, provider_secrets],
)
@fastapi_endpoint(method="POST")
async def api_create_analysis(
    request: dict,
    authorization: str | None = Header(None),
    x_request_id: str | None = Header(None),
) -> dict:
    """
    Create a draft analysis job without starting it.

    Requires authentication via Authorization header.

    POST body:
    {
        "repo_url": "https://github.com/owner/repo",
        "user_id": "...",
        "team_id": null,
        "kind": "full_repo_analysis",
        "prompt": "...",
        "repository_ref": null
    }

    The model is resolved now so a misconfigured account fails here rather
    than when the run starts.
    """
    start_time = time.time()
    http_status = 200
    outcome = "success"
    job_id = None

    require_auth(authorization)
    analysis_request = parse_analysis_request(request)

    try:
        from .config import get_settings
        from .db.models import new_id
        from .errors import AnalysisError
        from .resources import build_orchestrator, open_resources
        from .types import JobStatus

        async with open_resources(get_settings()) as resources:
            orchestrator = build_orchestrator(resources)
            try:
                model = await orchestrator.resolve_model(analysis_request)
            except AnalysisError as e:
                raise HTTPException(status_code=400, detail=str(e))

            job_id = new_id()
            await resources.jobs.create(
                job_id, analysis_request.metadata(model.name), JobStatus.DRAFT
            )

        return {"success": True, "data": {"job_id": job_id, "status": JobStatus.DRAFT.value}}
    except HTTPException as e:
        outcome = "error"
        http_status = e.status_code
        raise
    except Exception as e:
        outcome = "error"
        http_status = 500
        log.error("api.error", exc=e, endpoint_name="api_create_analysis")
        return {"success": False, "error": str(e)}
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        log.info(
            "modal.http_request",
            http_method="POST",
            http_path="/api_create_analysis",
            http_status=http_status,
            duration_ms=duration_ms,
            outcome=outcome,
            endpoint_name="api_create_analysis",
            request_id=x_request_id,
            job_id=job_id,
        )


@app.function(
    image=function_image,
    secrets=[internal_api_secret, infra_secrets, provider_secrets, github_app_secrets],
    timeout=ANALYSIS_FUNCTION_TIMEOUT_SECONDS,
)
@fastapi_endpoint(method="POST")
async def api_start_analysis(
    request: dict,
    authorization: str | None = Header(None),
    x_request_id: str | None = Header(None),
):
    """
    Run an analysis and stream its redacted output.

    Requires authentication via Authorization header.

    POST body: same shape as api_create_analysis, plus an optional "job_id"
    of a draft created earlier.

    The response is text/plain: one line per output chunk, followed by a
    final line holding the JSON result prefixed with "__RESULT__ ". The job
    keeps running if the client disconnects.
    """
    start_time = time.time()
    http_status = 200
    outcome = "success"

    require_auth(authorization)
    analysis_request = parse_analysis_request(request)

    try:
        from .analysis.streaming_run import stream_analysis

        return StreamingResponse(
            stream_analysis(analysis_request),
            media_type="text/plain; charset=utf-8",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    except Exception as e:
        outcome = "error"
        http_status = 500
        log.error("api.error", exc=e, endpoint_name="api_start_analysis")
        return {"success": False, "error": str(e)}
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        log.info(
            "modal.http_request",
            http_method="POST",
            http_path="/api_start_analysis",
            http_status=http_status,
            duration_ms=duration_ms,
            outcome=outcome,
            endpoint_name="api_start_analysis",
            request_id=x_request_id,
            job_id=analysis_request.job_id,
        )


@app.function(
    image=function_image,
    secrets=[internal_api_secret, infra_secrets],
)
@fastapi_endpoint(method="POST")
async def api_stop_analysis(
    request: dict,
    authorization: str | None = Header(None),
    x_request_id: str | None = Header(None),
) -> dict:
    """
    Interrupt a running analysis.

    Requires authentication via Authorization header.

    POST body:
    {
        "job_id": "..."
    }

    Returns the job's status after the call. Jobs that already finished keep
    their status.
    """
    start_time = time.time()
    http_status = 200
    outcome = "success"

    require_auth(authorization)

    job_id = request.get("job_id")
    if not job_id:
        raise HTTPException(status_code=400, detail="job_id is required")

    try:
        from .config import get_settings
        from .resources import build_stop_procedure, open_resources

        async with open_resources(get_settings()) as resources:
            status = await build_stop_procedure(resources).stop_job(job_id)

        if status is None:
            raise HTTPException(status_code=404, detail=f"Analysis not found: {job_id}")

        return {"success": True, "data": {"job_id": job_id, "status": status.value}}
    except HTTPException as e:
        outcome = "error"
        http_status = e.status_code
        raise
    except Exception as e:
        outcome = "error"
        http_status = 500
        log.error("api.error", exc=e, endpoint_name="api_stop_analysis")
        return {"success": False, "error": str(e)}
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        log.info(
            "modal.http_request",
            http_method="POST",
            http_path="/api_stop_analysis",
            http_status=http_status,
            duration_ms=duration_ms,
            outcome=outcome,
            endpoint_name="api_stop_analysis",
            request_id=x_request_id,
            job_id=job_id,
        )


@app.function(
    image=function_image,
    secrets=[internal_api_secret, infra_secrets],
)
@fastapi_endpoint(method="GET")
async def api_analysis_logs(
    job_id: str,
    authorization: str | None = Header(None),
    x_request_id: str | None = Header(None),
) -> dict:
    """
    Get an analysis record and its logs.

    Requires authentication via Authorization header.

    Query params: ?job_id=...

    Finished jobs return their stored (decompressed) logs; a running job
    returns what has been buffered so far.
    """
    start_time = time.time()
    http_status = 200
    outcome = "success"

    require_auth(authorization)

    try:
        from .analysis.finalizer import decompress_logs
        from .config import get_settings
        from .resources import open_resources
        from .types import JobStatus

        async with open_resources(get_settings()) as resources:
            record = await resources.jobs.get(job_id)
            if record is None:
                raise HTTPException(status_code=404, detail=f"Analysis not found: {job_id}")

            if record.status == JobStatus.RUNNING:
                raw = await resources.buffer.read(job_id) or b""
            else:
                raw = decompress_logs(record)

        return {
            "success": True,
            "data": {
                "job_id": record.id,
                "status": record.status,
                "kind": record.kind,
                "repo_url": record.repo_url,
                "model": record.model,
                "sandbox_id": record.sandbox_id,
                "exit_code": record.exit_code,
                "error_message": record.error_message,
                "reply_comments_posted": record.reply_comments_posted,
                "logs": raw.decode("utf-8", errors="replace"),
            },
        }
    except HTTPException as e:
        outcome = "error"
        http_status = e.status_code
        raise
    except Exception as e:
        outcome = "error"
        http_status = 500
        log.error("api.error", exc=e, endpoint_name="api_analysis_logs")
        return {"success": False, "error": str(e)}
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        log.info(
            "modal.http_request",
            http_method="GET",
            http_path="/api_analysis_logs",
            http_status=http_status,
            duration_ms=duration_ms,
            outcome=outcome,
            endpoint_name="api_analysis_logs",
            request_id=x_request_id,
            job_id=job_id,
        )


@app.function(
    image=function_image,
    secrets=[internal_api_secret, infra_secrets],
)
@fastapi_endpoint(method="POST")
async def api_record_comment(
    request: dict,
    authorization: str | None = Header(None),
) -> dict:
    """
    Count a PR comment posted by the analyzer.

    Called from inside the sandbox with the per-job token it was given in
    the command's callback data: "Authorization: Bearer <token>".

    POST body:
    {
        "job_id": "...",
        "count": 1
    }
    """
    start_time = time.time()
    http_status = 200
    outcome = "success"

    job_id = request.get("job_id")
    if not job_id:
        raise HTTPException(status_code=400, detail="job_id is required")

    try:
        from .auth.internal import verify_job_token
        from .config import get_settings
        from .resources import open_resources

        token = (authorization or "").removeprefix("Bearer ").strip()
        try:
            if not verify_job_token(job_id, token):
                raise HTTPException(status_code=403, detail="Invalid job token")
        except AuthConfigurationError as e:
            raise HTTPException(status_code=503, detail=f"Service unavailable: {e}")

        count = request.get("count", 1)
        if not isinstance(count, int) or isinstance(count, bool) or count < 1:
            raise HTTPException(status_code=400, detail="count must be a positive integer")

        async with open_resources(get_settings()) as resources:
            total = await resources.buffer.increment_comment_counter(job_id, count)

        return {"success": True, "data": {"job_id": job_id, "comments": total}}
    except HTTPException as e:
        outcome = "error"
        http_status = e.status_code
        raise
    except Exception as e:
        outcome = "error"
        http_status = 500
        log.error("api.error", exc=e, endpoint_name="api_record_comment")
        return {"success": False, "error": str(e)}
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        log.info(
            "modal.http_request",
            http_method="POST",
            http_path="/api_record_comment",
            http_status=http_status,
            duration_ms=duration_ms,
            outcome=outcome,
            endpoint_name="api_record_comment",
            job_id=job_id,
        )


@app.function(
    image=function_image,
    secrets=[github_app_secrets, infra_secrets],
)
@fastapi_endpoint(method="POST")
async def api_github_webhook(
    request: Request,
    x_github_event: str | None = Header(None),
    x_github_delivery: str | None = Header(None),
    x_hub_signature_256: str | None = Header(None),
) -> dict:
    """
    GitHub App webhook receiver.

    Authenticated by X-Hub-Signature-256. The event is acknowledged right
    away and processed by process_github_event.
    """
    start_time = time.time()
    http_status = 200
    outcome = "success"

    if not x_github_event:
        raise HTTPException(status_code=400, detail="X-GitHub-Event header is required")

    try:
        from .config import get_settings
        from .errors import WebhookSignatureError
        from .resources import build_webhook_router, open_resources

        body = await request.body()
        async with open_resources(get_settings()) as resources:
            router = build_webhook_router(resources)
            try:
                payload = await router.accept(body, x_hub_signature_256, x_github_delivery)
            except WebhookSignatureError as e:
                raise HTTPException(status_code=401, detail=str(e))
            except json.JSONDecodeError:
                raise HTTPException(status_code=400, detail="Invalid JSON payload")

            if payload is None:
                outcome = "duplicate"
                return {"success": True, "data": {"status": "duplicate"}}

            await router.hand_off(
                x_github_event, payload, x_github_delivery, process_github_event.spawn.aio
            )
        return {"success": True, "data": {"status": "accepted"}}
    except HTTPException as e:
        outcome = "error"
        http_status = e.status_code
        raise
    except Exception as e:
        outcome = "error"
        http_status = 500
        log.error("api.error", exc=e, endpoint_name="api_github_webhook")
        return {"success": False, "error": str(e)}
    finally:
        duration_ms = int((time.time() - start_time) * 1000)
        log.info(
            "modal.http_request",
            http_method="POST",
            http_path="/api_github_webhook",
            http_status=http_status,
            duration_ms=duration_ms,
            outcome=outcome,
            endpoint_name="api_github_webhook",
            github_event=x_github_event,
            delivery_id=x_github_delivery,
        )


@app.function(
    image=function_image,
    secrets=[github_app_secrets, infra_secrets, provider_secrets, internal_api_secret],
    timeout=10 * 60,
)
async def process_github_event(event: str, payload: dict) -> str:
    """Handle one accepted webhook delivery."""
    from .config import get_settings
    from .resources import build_webhook_router, open_resources

    async with open_resources(get_settings()) as resources:
        return await build_webhook_router(resources).dispatch(event, payload)


@app.function(
    image=function_image,
    secrets=[github_app_secrets, infra_secrets, provider_secrets, internal_api_secret],
    timeout=ANALYSIS_FUNCTION_TIMEOUT_SECONDS,
)
async def run_analysis_job(request_data: dict) -> dict:
    """
    Run one analysis to completion without a streaming client.

    Spawned by the pull request trigger. Output still goes to the log buffer
    and ends up in the job record.
    """
    from .config import get_settings
    from .resources import build_orchestrator, open_resources
    from .types import AnalysisRequest

    analysis_request = AnalysisRequest.model_validate(request_data)
    async with open_resources(get_settings()) as resources:
        result = await build_orchestrator(resources).run(analysis_request)
    return result.model_dump(mode="json")
