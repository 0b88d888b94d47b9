"""Key-usage policies wrapped around the completion client.

``RotatingDispatcher`` makes exactly one call with the key chosen by the
batched rotator. ``RetryOrchestrator`` walks the pool in order and stops at
the first key that works. Both expose ``generate(prompt) -> str``.
"""
from __future__ import annotations
import logging
from typing import Sequence, Union

from studybuddy_gateway.common.config import ROTATION_FALLBACK, Settings
from studybuddy_gateway.common.errors import AllProvidersExhausted, ConfigError, ProviderError
from studybuddy_gateway.common.schema import Credential
from studybuddy_gateway.gateway.completion import CompletionClient
from studybuddy_gateway.gateway.rotation import CredentialRotator

LOGGER = logging.getLogger("studybuddy.gateway.dispatch")


class RotatingDispatcher:
    """One generation call per request using the batched rotator."""

    policy = "batched"

    def __init__(self, rotator: CredentialRotator, client: CompletionClient, model: str) -> None:
        self.rotator = rotator
        self.client = client
        self.model = model

    def generate(self, prompt: str) -> str:
        credential = self.rotator.select()
        LOGGER.debug("Generating with key #%s", credential.slot)
        return self.client.complete(self.model, prompt, credential).text


class RetryOrchestrator:
    """Try each credential in pool order until one succeeds."""

    policy = "fallback"

    def __init__(self, pool: Sequence[Credential], client: CompletionClient, model: str) -> None:
        if not pool:
            raise ConfigError("Credential pool cannot be empty")
        self.pool = tuple(pool)
        self.client = client
        self.model = model

    def complete_with_retries(self, prompt: str) -> str:
        failures: list[tuple[int, str]] = []
        for credential in self.pool:
            try:
                text = self.client.complete(self.model, prompt, credential).text
            except ProviderError as e:
                failures.append((credential.slot, str(e)))
                LOGGER.warning("Key #%s failed (%d/%d): %s", credential.slot, len(failures), len(self.pool), e)
                continue
            if failures:
                LOGGER.info("Key #%s succeeded after %d failure(s)", credential.slot, len(failures))
            return text
        raise AllProvidersExhausted(failures)

    generate = complete_with_retries


Dispatcher = Union[RotatingDispatcher, RetryOrchestrator]


def build_dispatcher(settings: Settings, client: CompletionClient | None = None) -> Dispatcher:
    """Build the dispatcher for the configured rotation policy."""
    client = client or CompletionClient(
        base_url=settings.api_base_url,
        timeout=settings.request_timeout,
        generation=settings.generation,
    )
    if settings.rotation == ROTATION_FALLBACK:
        return RetryOrchestrator(settings.credentials, client, settings.model)
    rotator = CredentialRotator(settings.credentials, batch_size=settings.batch_size)
    return RotatingDispatcher(rotator, client, settings.model)
