from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
from pathlib import Path
from typing import Any

from .config.loader import load_settings
from .config.settings import Settings
from .domain.admission import AdmissionLimiter, WindowConfig
from .domain.errors import INVALID_ARGUMENT, NOT_CONFIGURED, DomainError, ok
from .domain.styles import DEFAULT_STYLE_PROMPT, ILLUSTRATION_STYLES
from .domain.sweeper import PeriodicSweeper
from .domain.watcher import AttemptBudget, JobWatcher
from .observability.logging import bind_request_context, configure_logging, get_logger
from .provider.fal import FalClient
from .provider.replicate import ReplicateClient
from .service import PersonalizationService

MAX_PHOTO_BYTES = 10 * 1024 * 1024


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="storybook-gate")

    p.add_argument("--config", type=Path, default=None, help="YAML config path (defaults to ./config.yaml or ./config/config.yaml)")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None)
    p.add_argument("--max-attempts", type=int, default=None)
    p.add_argument("--poll-interval", type=float, default=None, help="Seconds between status polls")

    sub = p.add_subparsers(dest="command", required=True)

    pers = sub.add_parser("personalize", help="Submit a photo and wait for the illustration")
    pers.add_argument("--photo", type=Path, required=True)
    pers.add_argument("--style", required=True, help="Illustration style key (see `styles`)")
    pers.add_argument("--identifier", default="cli", help="Caller identifier used for admission")

    watch = sub.add_parser("watch", help="Wait for an already submitted job")
    watch.add_argument("job_id")

    sub.add_parser("styles", help="List illustration styles")

    return p


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    o: dict[str, Any] = {}

    if args.log_level is not None:
        o.setdefault("logging", {})["level"] = args.log_level
    if args.max_attempts is not None:
        o.setdefault("watcher", {})["max_attempts"] = args.max_attempts
    if args.poll_interval is not None:
        o.setdefault("watcher", {})["poll_interval_s"] = args.poll_interval

    return o


def read_photo_data_url(path: Path) -> str:
    if not path.is_file():
        raise DomainError(code=INVALID_ARGUMENT, message="photo file not found.", details={"path": str(path)})

    data = path.read_bytes()
    if len(data) > MAX_PHOTO_BYTES:
        raise DomainError(
            code=INVALID_ARGUMENT,
            message="photo exceeds 10MB.",
            details={"path": str(path), "size": len(data)},
        )

    mime, _ = mimetypes.guess_type(path.name)
    if mime is None or not mime.startswith("image/"):
        raise DomainError(code=INVALID_ARGUMENT, message="photo must be an image file.", details={"path": str(path)})

    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def build_limiter(settings: Settings) -> AdmissionLimiter:
    return AdmissionLimiter(
        WindowConfig(interval_s=settings.limiter.interval_s, max_requests=settings.limiter.max_requests),
        shards=settings.limiter.shards,
    )


def build_watcher(settings: Settings, *, logger) -> JobWatcher:
    w = settings.watcher
    budget = AttemptBudget(
        max_attempts=w.max_attempts,
        poll_interval_s=w.poll_interval_s,
        transport_retries=w.transport_retries,
        transport_retry_delay_s=w.transport_retry_delay_s,
    )
    return JobWatcher(budget, logger=logger)


def build_provider(settings: Settings, *, logger) -> ReplicateClient | FalClient:
    """Replicate when a token is configured, else fal.ai, else NOT_CONFIGURED."""

    p = settings.provider
    if p.api_token:
        return ReplicateClient(
            api_token=p.api_token,
            model_version=p.model_version,
            base_url=p.base_url,
            timeout_s=p.timeout_s,
            logger=logger,
        )
    if p.fal_key:
        return FalClient(
            api_key=p.fal_key,
            model=p.fal_model,
            base_url=p.fal_base_url,
            timeout_s=p.timeout_s,
            logger=logger,
        )
    raise DomainError(
        code=NOT_CONFIGURED,
        message="No AI service configured. Please set REPLICATE_API_TOKEN or FAL_KEY in environment variables.",
    )


def _styles_payload() -> dict[str, Any]:
    return ok({"styles": dict(ILLUSTRATION_STYLES), "default": DEFAULT_STYLE_PROMPT})


async def _run(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    configure_logging(level=settings.logging.level, json_logs=settings.logging.json_logs)
    logger = get_logger().bind(component="app")

    if args.command == "styles":
        return _styles_payload()

    provider = build_provider(settings, logger=get_logger().bind(component="provider"))
    watcher = build_watcher(settings, logger=get_logger().bind(component="watcher"))

    logger.info(
        "app.start",
        command=args.command,
        provider=type(provider).__name__,
        max_attempts=settings.watcher.max_attempts,
        poll_interval_s=settings.watcher.poll_interval_s,
    )

    try:
        if args.command == "personalize":
            result_url = await _personalize(settings, args, provider=provider, watcher=watcher)
        else:
            result_url = await watcher.watch(args.job_id, provider.status)
        return ok({"result_url": result_url})
    finally:
        await provider.aclose()


async def _personalize(settings: Settings, args: argparse.Namespace, *, provider, watcher: JobWatcher) -> str:
    limiter = build_limiter(settings)
    sweeper = PeriodicSweeper(
        limiter=limiter,
        interval_s=settings.limiter.effective_cleanup_interval_s(),
        logger=get_logger().bind(component="sweeper"),
    )
    service = PersonalizationService(
        limiter=limiter,
        provider=provider,
        watcher=watcher,
        logger=get_logger().bind(component="admission"),
    )

    bind_request_context(identifier=args.identifier)
    photo = read_photo_data_url(args.photo)

    await sweeper.start()
    try:
        return await service.personalize(identifier=args.identifier, photo=photo, style=args.style)
    finally:
        await sweeper.close()


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    project_root = Path(__file__).resolve().parents[1]
    try:
        loaded = load_settings(project_root=project_root, config_path=args.config, cli_overrides=_cli_overrides(args))
        payload = asyncio.run(_run(loaded.settings, args))
    except DomainError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False))
        return 1

    print(json.dumps(payload, ensure_ascii=False))
    return 0
