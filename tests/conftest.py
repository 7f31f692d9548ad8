# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

from collections.abc import Iterator

import httpx
import pytest
from werkzeug.test import Client

from s3gate.config import GatewayConfig
from s3gate.logging import SecretFilter
from s3gate.pipeline import RequestPipeline
from s3gate.server import GatewayServer, build_pipeline
from s3gate.signing.types import Credential
from tests.fake_upstream import FakeUpstream
from tests.vectors import (
    UPSTREAM_ACCESS_KEY_ID,
    UPSTREAM_SECRET_KEY,
    UPSTREAM_URL,
    VERIFY_ACCESS_KEY_ID,
    VERIFY_SECRET_KEY,
)


@pytest.fixture(autouse=True)
def clear_secrets() -> Iterator[None]:
    """Reset the class-level secret registry after each test."""
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(
        verification_credential=Credential(
            VERIFY_ACCESS_KEY_ID, VERIFY_SECRET_KEY
        ),
        upstream_url=UPSTREAM_URL,
        upstream_credential=Credential(
            UPSTREAM_ACCESS_KEY_ID, UPSTREAM_SECRET_KEY
        ),
        allowed_buckets=frozenset({"allowed-bucket", "photos"}),
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def pipeline(config: GatewayConfig, upstream: FakeUpstream) -> RequestPipeline:
    return build_pipeline(
        config, client=httpx.Client(transport=httpx.MockTransport(upstream))
    )


@pytest.fixture
def client(config: GatewayConfig, pipeline: RequestPipeline) -> Client:
    """Werkzeug test client for a gateway backed by ``FakeUpstream``."""
    return Client(GatewayServer(config, pipeline).wsgi_app)
