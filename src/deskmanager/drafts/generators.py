"""Swappable draft generators and the end-to-end draft generation flow.

Every backend implements the ``DraftGenerator`` protocol and returns a
normalized ``GenerationResult``:

- ``ClaudeGenerator``: Anthropic Messages API through the ``anthropic`` SDK
- ``OpenAIGenerator`` and ``GeminiGenerator``: direct REST calls via httpx
- ``BrowserPromptGenerator``: returns the prompt for pasting into a browser AI
- ``SubscriptionGenerator``: a managed relay that owns the provider keys

Transport failures are retried by ``resilient_api_call``; provider
rejections are not.  Both surface as ``GenerationError``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

import anthropic
import httpx
import structlog
from pydantic import SecretStr

from deskmanager.config import Settings
from deskmanager.domain.errors import GenerationError, GenErrorKind
from deskmanager.domain.models import Message, Ticket
from deskmanager.domain.types import AIMode, AIProvider
from deskmanager.drafts.context import build_draft_context
from deskmanager.drafts.models import DraftContext, DraftOptions, GenerationResult
from deskmanager.drafts.prompts import Prompt, build_prompt
from deskmanager.observability.metrics import DRAFTS_GENERATED
from deskmanager.resilience.retry import resilient_api_call

logger = structlog.get_logger()

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models"
PROVIDER_TIMEOUT = 30.0
SUBSCRIPTION_TIMEOUT = 45.0


class DraftGenerator(Protocol):
    """Anything that can turn a prompt into a draft reply."""

    name: str

    def generate(
        self, prompt: Prompt, context: DraftContext, options: DraftOptions
    ) -> GenerationResult: ...


def _poster(api_name: str) -> Callable[..., httpx.Response]:
    @resilient_api_call(api_name)
    def post(http: httpx.Client, url: str, **kwargs: Any) -> httpx.Response:
        return http.post(url, **kwargs)

    return post


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Unknown error occurred"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or "Unknown error occurred")
    if error:
        return str(error)
    return "Unknown error occurred"


def _secret(value: SecretStr | str) -> str:
    return value.get_secret_value() if isinstance(value, SecretStr) else value


class _HttpGenerator:
    """Shared POST-and-decode plumbing for REST-based providers."""

    name = "http"

    def __init__(self, http: httpx.Client) -> None:
        self._http = http
        self._post = _poster(self.name)

    def _call(self, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._post(self._http, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("ai_provider_unreachable", provider=self.name, error=str(exc))
            raise GenerationError(
                GenErrorKind.PROVIDER_UNAVAILABLE,
                f"Failed to connect to {self.name}: {exc}",
                provider=self.name,
            ) from exc

        if response.status_code != 200:
            message = _error_message(response)
            logger.error(
                "ai_provider_rejected",
                provider=self.name,
                status_code=response.status_code,
                message=message,
            )
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                f"{self.name} API error: {message}",
                provider=self.name,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                f"{self.name} returned a non-JSON response",
                provider=self.name,
            ) from exc
        if not isinstance(body, dict):
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                f"{self.name} returned an unexpected payload",
                provider=self.name,
            )
        return body

    def _require_text(self, text: Any) -> str:
        if not isinstance(text, str) or not text.strip():
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                f"Invalid response from {self.name}: no generated text",
                provider=self.name,
            )
        return text


class ClaudeGenerator:
    """Draft replies with Claude through the Anthropic SDK.

    Args:
        client: Configured Anthropic client instance.
        model: Model ID.
        max_tokens: Output token ceiling.
        temperature: Sampling temperature.
    """

    name = AIProvider.CLAUDE.value

    def __init__(
        self,
        client: anthropic.Anthropic,
        model: str = "claude-3-haiku-20240307",
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> None:
        self._client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @resilient_api_call("claude")
    def _create(self, prompt: Prompt) -> Any:
        return self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=prompt.system,
            messages=[{"role": "user", "content": prompt.user}],
        )

    def generate(
        self, prompt: Prompt, context: DraftContext, options: DraftOptions
    ) -> GenerationResult:
        """Call the Messages API and normalize the reply."""
        try:
            response = self._create(prompt)
        except anthropic.APIConnectionError as exc:
            logger.error("ai_provider_unreachable", provider=self.name, error=str(exc))
            raise GenerationError(
                GenErrorKind.PROVIDER_UNAVAILABLE,
                f"Failed to connect to Claude API: {exc}",
                provider=self.name,
            ) from exc
        except anthropic.APIStatusError as exc:
            logger.error("ai_provider_rejected", provider=self.name, status_code=exc.status_code)
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                f"Claude API error: {exc.message}",
                provider=self.name,
            ) from exc

        if not response.content:
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                "Invalid response from Claude: no content",
                provider=self.name,
            )
        text: str = response.content[0].text  # type: ignore[union-attr]
        return GenerationResult(
            text=text,
            provider=self.name,
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


class OpenAIGenerator(_HttpGenerator):
    """Draft replies with the OpenAI Chat Completions API."""

    name = AIProvider.OPENAI.value

    def __init__(
        self,
        http: httpx.Client,
        api_key: SecretStr | str,
        model: str = "gpt-3.5-turbo",
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> None:
        super().__init__(http)
        self._api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def generate(
        self, prompt: Prompt, context: DraftContext, options: DraftOptions
    ) -> GenerationResult:
        """POST the chat completion and normalize the reply."""
        body = self._call(
            OPENAI_URL,
            headers={"Authorization": f"Bearer {_secret(self._api_key)}"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": prompt.system},
                    {"role": "user", "content": prompt.user},
                ],
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
            },
            timeout=PROVIDER_TIMEOUT,
        )
        try:
            raw_text = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raw_text = None
        usage = body.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return GenerationResult(
            text=self._require_text(raw_text),
            provider=self.name,
            model=self.model,
            input_tokens=int(usage.get("prompt_tokens", 0)),
            output_tokens=int(usage.get("completion_tokens", 0)),
        )


class GeminiGenerator(_HttpGenerator):
    """Draft replies with the Google Gemini ``generateContent`` API."""

    name = AIProvider.GEMINI.value

    def __init__(
        self,
        http: httpx.Client,
        api_key: SecretStr | str,
        model: str = "gemini-pro",
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> None:
        super().__init__(http)
        self._api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def generate(
        self, prompt: Prompt, context: DraftContext, options: DraftOptions
    ) -> GenerationResult:
        """POST the combined prompt and normalize the first candidate."""
        body = self._call(
            f"{GEMINI_URL}/{self.model}:generateContent",
            params={"key": _secret(self._api_key)},
            json={
                "contents": [{"parts": [{"text": prompt.combined()}]}],
                "generationConfig": {
                    "temperature": self.temperature,
                    "maxOutputTokens": self.max_tokens,
                },
            },
            timeout=PROVIDER_TIMEOUT,
        )
        try:
            raw_text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raw_text = None
        usage = body.get("usageMetadata") or {}
        return GenerationResult(
            text=self._require_text(raw_text),
            provider=self.name,
            model=self.model,
            input_tokens=int(usage.get("promptTokenCount", 0)),
            output_tokens=int(usage.get("candidatesTokenCount", 0)),
        )


class BrowserPromptGenerator:
    """Return the prompt itself for pasting into ChatGPT or Claude in a browser.

    Makes no network calls; the result has ``prompt_only=True``.
    """

    name = AIMode.BROWSER.value

    def __init__(self, browser_provider: str = "chatgpt") -> None:
        self.browser_provider = browser_provider

    def generate(
        self, prompt: Prompt, context: DraftContext, options: DraftOptions
    ) -> GenerationResult:
        return GenerationResult(
            text=prompt.combined(),
            provider=self.browser_provider,
            prompt_only=True,
        )


class SubscriptionGenerator(_HttpGenerator):
    """Draft replies through the managed subscription relay.

    The relay owns the provider keys and picks the model.  HTTP 401 means
    the subscription key is invalid and 402 that credits are exhausted;
    both are rejections.
    """

    name = AIMode.SUBSCRIPTION.value

    def __init__(
        self,
        http: httpx.Client,
        subscription_key: SecretStr | str,
        email: str = "",
        base_url: str = "https://api.zohodeskmanager.com/v1/",
        max_tokens: int = 1000,
        temperature: float = 0.7,
    ) -> None:
        super().__init__(http)
        self._key = subscription_key
        self.email = email
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.max_tokens = max_tokens
        self.temperature = temperature

    def generate(
        self, prompt: Prompt, context: DraftContext, options: DraftOptions
    ) -> GenerationResult:
        """POST the ticket context to the relay and normalize its answer."""
        try:
            response = self._post(
                self._http,
                f"{self.base_url}generate",
                headers={
                    "Authorization": f"Bearer {_secret(self._key)}",
                    "X-Subscription-Email": self.email,
                },
                json={
                    "context": context.model_dump(mode="json"),
                    "prompt": prompt.model_dump(),
                    "options": options.model_dump(mode="json"),
                    "settings": {
                        "max_tokens": self.max_tokens,
                        "temperature": self.temperature,
                    },
                },
                timeout=SUBSCRIPTION_TIMEOUT,
            )
        except httpx.HTTPError as exc:
            logger.error("ai_provider_unreachable", provider=self.name, error=str(exc))
            raise GenerationError(
                GenErrorKind.PROVIDER_UNAVAILABLE,
                f"Failed to connect to subscription service: {exc}",
                provider=self.name,
            ) from exc

        if response.status_code == 402:
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                "Subscription credits exhausted. Please upgrade your plan.",
                provider=self.name,
            )
        if response.status_code == 401:
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                "Invalid subscription key. Please check your settings.",
                provider=self.name,
            )
        if response.status_code != 200:
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                f"Subscription service error: {_error_message(response)}",
                provider=self.name,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise GenerationError(
                GenErrorKind.PROVIDER_REJECTED,
                "Subscription service returned a non-JSON response",
                provider=self.name,
            ) from exc

        credits_remaining = body.get("credits_remaining")
        return GenerationResult(
            text=self._require_text(body.get("generated_text")),
            provider=str(body.get("provider") or self.name),
            model=body.get("model"),
            credits_remaining=int(credits_remaining) if credits_remaining is not None else None,
        )


def select_generator(
    settings: Settings,
    http: httpx.Client | None = None,
    anthropic_client: anthropic.Anthropic | None = None,
) -> DraftGenerator:
    """Pick the configured draft generator.

    Browser and subscription modes take precedence over direct API keys,
    matching how the modes are toggled in settings.

    Args:
        settings: Application settings.
        http: HTTP client for REST-based providers; a new one is created
            when omitted.
        anthropic_client: Anthropic client for Claude; built from the
            configured key when omitted.

    Raises:
        GenerationError: ``NO_PROVIDER_CONFIGURED`` when no provider is
            selected, the provider is unknown, or its key is missing.
    """
    if settings.ai_mode is AIMode.BROWSER:
        return BrowserPromptGenerator(settings.browser_ai_provider)

    http = http or httpx.Client()

    if settings.ai_mode is AIMode.SUBSCRIPTION:
        if not settings.subscription_key.get_secret_value():
            raise GenerationError(
                GenErrorKind.NO_PROVIDER_CONFIGURED,
                "Subscription key not configured.",
                provider=AIMode.SUBSCRIPTION.value,
            )
        return SubscriptionGenerator(
            http,
            settings.subscription_key,
            email=settings.subscription_email,
            base_url=settings.subscription_url,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
        )

    provider = settings.ai_provider.strip().lower()
    if not provider:
        raise GenerationError(
            GenErrorKind.NO_PROVIDER_CONFIGURED,
            "No AI provider configured. Set AI_PROVIDER to claude, openai or gemini.",
        )
    if provider not in {p.value for p in AIProvider}:
        raise GenerationError(
            GenErrorKind.NO_PROVIDER_CONFIGURED,
            f"Unknown AI provider: {provider}",
            provider=provider,
        )

    key: SecretStr = getattr(settings, f"{provider}_api_key")
    if not key.get_secret_value():
        raise GenerationError(
            GenErrorKind.NO_PROVIDER_CONFIGURED,
            f"{provider.capitalize()} is not properly configured: API key missing.",
            provider=provider,
        )

    if provider == AIProvider.CLAUDE:
        client = anthropic_client or anthropic.Anthropic(api_key=key.get_secret_value())
        return ClaudeGenerator(
            client,
            model=settings.claude_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
        )
    if provider == AIProvider.OPENAI:
        return OpenAIGenerator(
            http,
            key,
            model=settings.openai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
        )
    return GeminiGenerator(
        http,
        key,
        model=settings.gemini_model,
        max_tokens=settings.ai_max_tokens,
        temperature=settings.ai_temperature,
    )


def append_signature(text: str, signature: str) -> str:
    """Append the configured email signature, separated by a blank line."""
    if not signature:
        return text
    return f"{text}\n\n{signature}"


def generate_draft(
    generator: DraftGenerator,
    ticket: Ticket,
    messages: Sequence[Message],
    settings: Settings,
    options: DraftOptions | None = None,
) -> tuple[GenerationResult, DraftContext]:
    """Build context and prompt for *ticket* and run *generator* on it.

    The email signature is appended to generated replies but not to
    prompt-only results.

    Returns:
        The generation result and the context it was built from (the
        context carries follow-up suggestions for the agent).

    Raises:
        GenerationError: If the generator fails.
    """
    options = options or DraftOptions()
    context = build_draft_context(
        ticket,
        messages,
        include_full_conversation=settings.include_full_conversation,
        conversation_limit=settings.conversation_limit,
        knowledge_base=settings.ai_knowledge_base,
        response_style=settings.ai_response_style,
    )
    prompt = build_prompt(context, options, settings.ai_system_prompt)
    result = generator.generate(prompt, context, options)

    if not result.prompt_only:
        result = result.model_copy(
            update={"text": append_signature(result.text, settings.email_signature)}
        )

    DRAFTS_GENERATED.labels(provider=result.provider).inc()
    logger.info(
        "draft_generated",
        ticket_id=ticket.id,
        provider=result.provider,
        model=result.model,
        input_tokens=result.input_tokens,
        output_tokens=result.output_tokens,
        prompt_only=result.prompt_only,
    )
    return result, context
