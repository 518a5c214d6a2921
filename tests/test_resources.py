"""Tests for opening and closing the per-call resources."""

import json

import httpx
import pytest

from analysis_infra import resources as resources_module
from analysis_infra.config import Settings
from analysis_infra.db.models import UserRecord
from analysis_infra.notifications import MailNotifier, spawn_detached
from analysis_infra.resources import open_resources
from analysis_infra.types import JobStatus


@pytest.fixture
def sent(monkeypatch):
    """Mail API requests captured by a mock transport."""
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "email-1"})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        resources_module.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    return requests


class TestOpenResources:
    @pytest.mark.asyncio
    async def test_detached_mail_is_sent_before_clients_close(self, sent):
        settings = Settings(
            database_url="sqlite://",
            mail_api_url="https://mail.example.com/emails",
            mail_api_key="mail-key",
        )

        async with open_resources(settings) as resources:
            with resources.db.session() as session:
                session.add(UserRecord(id="user-1", email="dev@example.com"))
            notifier = MailNotifier(settings, resources.accounts, resources.http_client)
            spawn_detached(
                notifier.analysis_finished(
                    "job-1", "user-1", "https://github.com/acme/app", JobStatus.COMPLETED
                )
            )
            http_client = resources.http_client

        assert len(sent) == 1
        assert sent[0]["to"] == ["dev@example.com"]
        assert http_client.is_closed
