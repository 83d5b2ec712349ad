"""Generation endpoints: prompt preview, full generation and the two expansions."""

import asyncio
import logging
import time

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool

from backend import storage
from backend.identity import resolve_client_ip
from movie_games.coercion import coerce_character_inputs
from movie_games.errors import IngestError
from movie_games.ingest import ingest
from movie_games.llm import HttpLLM, LLMError, resolve_endpoint
from movie_games.prompts import (
    DEFAULT_ENDINGS,
    DEFAULT_NODES,
    build_character_prompt,
    build_generate_prompt,
    build_worldview_prompt,
)

from .models import ExpandCharacterBody, ExpandWorldviewBody, GenerateBody, LLMOverrides

logger = logging.getLogger(__name__)

router = APIRouter()


def build_llm(overrides: LLMOverrides) -> HttpLLM:
    """HttpLLM from config, honouring the caller's own key, endpoint and model.

    A custom endpoint or model is only used together with the caller's own
    key, so the service key is never sent anywhere but the configured backend.
    """
    config = storage.get_config()["llm"]
    if overrides.own_credentials:
        return HttpLLM(
            endpoint=resolve_endpoint(overrides.base_url or config["base_url"]),
            api_key=overrides.api_key.strip(),
            model=(overrides.model or "").strip() or config["model"],
            timeout=config["timeout"],
        )
    return HttpLLM(
        endpoint=resolve_endpoint(config["base_url"]),
        api_key=storage.server_api_key(),
        model=config["model"],
        timeout=config["timeout"],
    )


def _clean_body(request: Request, body, model):
    """Redact disallowed terms in a request body and re-validate it."""
    payload = request.app.state.sanitizer.check_payload(body.to_json())
    return model.model_validate(payload)


def _prompt_for(body: GenerateBody) -> str:
    nodes = (body.min_nodes or DEFAULT_NODES[0], body.max_nodes or DEFAULT_NODES[1])
    endings = (body.min_endings or DEFAULT_ENDINGS[0], body.max_endings or DEFAULT_ENDINGS[1])
    return build_generate_prompt(
        body.theme or body.free_input or "",
        synopsis=body.synopsis,
        genre=body.genre,
        characters=body.characters,
        language=body.language,
        nodes=(min(nodes), max(nodes)),
        endings=(min(endings), max(endings)),
    )


@router.post("/generate/prompt")
async def generate_prompt(body: GenerateBody):
    """Render the generation prompt without calling the model."""
    return {"prompt": _prompt_for(body)}


@router.post("/generate")
async def generate(body: GenerateBody, request: Request):
    """Gate → LLM → ingest → persist. Returns the validated template and findings."""
    state = request.app.state
    ip = resolve_client_ip(request)
    body = _clean_body(request, body, GenerateBody)

    llm = state.llm_factory(body)
    await run_in_threadpool(state.gate.admit_creation, ip, own_credentials=body.own_credentials)

    prompt = _prompt_for(body)
    request_id = await run_in_threadpool(storage.create_request, ip, "/generate", body.to_json(), prompt)
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        raw = await llm("generate", prompt, json_mode=True)
    except asyncio.CancelledError:
        # the task is cancelled, so no further awaits here
        storage.finish_request(request_id, storage.STATUS_CANCEL, response_time_ms=elapsed_ms())
        raise
    except LLMError as e:
        await run_in_threadpool(
            storage.finish_request,
            request_id, storage.STATUS_ERROR, error_text=e.message, response_time_ms=elapsed_ms(),
        )
        raise

    try:
        result = ingest(
            raw,
            language=body.language or "zh-CN",
            sanitizer=state.sanitizer,
            strict_characters=storage.get_config()["strict_characters"],
            roster=body.characters or None,
        )
    except IngestError as e:
        logger.warning("generated template for %s rejected: %s", request_id, e.code)
        await run_in_threadpool(
            storage.finish_request,
            request_id, storage.STATUS_ERROR, response=raw,
            error_text=f"{e.code}: {e.message}", response_time_ms=elapsed_ms(),
        )
        raise

    result.template.request_id = request_id
    await run_in_threadpool(
        storage.finish_request,
        request_id, storage.STATUS_SUCCESS, response=raw, template=result.template.to_json(),
        response_time_ms=elapsed_ms(),
    )
    return {"id": request_id, **result.to_json()}


@router.post("/expand/worldview")
async def expand_worldview(body: ExpandWorldviewBody, request: Request):
    """Expand a theme into a synopsis (plain text)."""
    state = request.app.state
    ip = resolve_client_ip(request)
    body = _clean_body(request, body, ExpandWorldviewBody)

    llm = state.llm_factory(body)
    await run_in_threadpool(state.gate.admit_creation, ip, own_credentials=body.own_credentials)

    prompt = build_worldview_prompt(
        body.theme, synopsis=body.synopsis, genre=body.genre, language=body.language
    )
    text = await llm("expand_worldview", prompt)
    cleaned = state.sanitizer.check_payload({"text": text.strip()})
    return {"text": cleaned["text"]}


@router.post("/expand/character")
async def expand_character(body: ExpandCharacterBody, request: Request):
    """Suggest additional cast members for a world."""
    state = request.app.state
    ip = resolve_client_ip(request)
    body = _clean_body(request, body, ExpandCharacterBody)

    llm = state.llm_factory(body)
    await run_in_threadpool(state.gate.admit_creation, ip, own_credentials=body.own_credentials)

    prompt = build_character_prompt(
        body.theme,
        body.worldview,
        synopsis=body.synopsis,
        existing=body.existing_characters,
        genre=body.genre,
        language=body.language,
    )
    raw = await llm("expand_character", prompt, json_mode=True)
    characters = [c.to_json() for c in coerce_character_inputs(raw)]
    cleaned = state.sanitizer.check_payload({"characters": characters})
    return {"characters": cleaned["characters"]}
