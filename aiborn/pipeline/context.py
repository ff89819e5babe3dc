"""
Everything the receipt pipeline needs, built once at startup.

The app keeps one PipelineContext on `app.state.pipeline`; routes get it via
`get_pipeline_context`, background jobs receive it explicitly. Tests build
their own with fake collaborators.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy.orm import Session

from aiborn.core.config import Settings
from aiborn.core.mailer import Mailer, build_mailer
from aiborn.core.ratelimit import RateLimiter, build_rate_limiter
from aiborn.core.storage import build_storage
from aiborn.core.timeutil import from_ms, now_ms
from aiborn.pipeline.llm import LlmClient
from aiborn.pipeline.ocr import ReceiptTextExtractor, TextractOcr
from aiborn.pipeline.parser import ReceiptParser
from aiborn.pipeline.scoring import FraudPolicy


@dataclass
class PipelineContext:
    settings: Settings
    limiter: RateLimiter
    mailer: Mailer
    storage: object  # LocalStorage | S3Storage
    extractor: ReceiptTextExtractor
    parser: ReceiptParser
    session_factory: Callable[[], Session]
    policy: FraudPolicy = field(default_factory=FraudPolicy)
    clock: Callable[[], int] = now_ms

    def now(self) -> datetime:
        return from_ms(self.clock())


def build_context(settings: Settings, session_factory: Callable[[], Session] | None = None) -> PipelineContext:
    if session_factory is None:
        from aiborn.db.session import SessionLocal

        session_factory = SessionLocal

    llm = LlmClient(settings.OPENAI_API_KEY, settings.LLM_MODEL, timeout=settings.LLM_TIMEOUT_S)
    return PipelineContext(
        settings=settings,
        limiter=build_rate_limiter(settings.REDIS_URL),
        mailer=build_mailer(settings),
        storage=build_storage(settings),
        extractor=ReceiptTextExtractor(TextractOcr(settings.AWS_TEXTRACT_REGION), llm),
        parser=ReceiptParser(llm, expected_title=settings.EXPECTED_BOOK_TITLE),
        session_factory=session_factory,
        policy=FraudPolicy.from_settings(settings),
    )


def get_pipeline_context(request: Request) -> PipelineContext:
    return request.app.state.pipeline
