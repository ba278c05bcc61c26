from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional

import pytest
import pytest_asyncio
from apscheduler.jobstores.base import JobLookupError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from joinguard.models.base import close_db, init_db
from joinguard.services.content import ApplicantProfile
from joinguard.services.errors import ErrorReporter
from joinguard.services.gateway import ChatTarget, MessageRef
from joinguard.services.lifecycle import LifecycleManager
from joinguard.services.store import RequestStore


MODERATOR_CHAT_ID = -1001
MODERATOR_TARGET = ChatTarget(MODERATOR_CHAT_ID, thread_id=7)
LIFETIME_MINUTES = 1440


@dataclass
class SentMessage:
    chat_id: int
    text: str
    reply_markup: Any
    message_id: int
    media: Any = None


@dataclass
class Edit:
    method: str
    ref: MessageRef
    text: Optional[str]
    reply_markup: Any


def callback_datas(markup) -> list[str]:
    """Flat list of callback_data of an inline keyboard (empty for None)."""
    if markup is None:
        return []
    return [button.callback_data for row in markup.inline_keyboard for button in row]


class FakeGateway:
    """In-memory TelegramGateway that records every call.

    fail(method, error, ...) queues exceptions raised by the next calls of method;
    a None entry lets that call succeed.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.sent: list[SentMessage] = []
        self.edits: list[Edit] = []
        self.member_statuses: dict[int, str] = {}
        self._errors: dict[str, list[Optional[Exception]]] = defaultdict(list)
        self._next_message_id = 100

    def fail(self, method: str, *errors: Optional[Exception]) -> None:
        self._errors[method].extend(errors)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if self._errors[method]:
            error = self._errors[method].pop(0)
            if error is not None:
                raise error

    def called(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def messages_to(self, chat_id: int) -> list[SentMessage]:
        return [message for message in self.sent if message.chat_id == chat_id]

    def _store_message(self, chat_id: int, text: str, reply_markup: Any, media: Any = None) -> MessageRef:
        self._next_message_id += 1
        self.sent.append(SentMessage(chat_id, text, reply_markup, self._next_message_id, media))
        return MessageRef(chat_id, self._next_message_id)

    async def approve_join_request(self, applicant_id: int) -> None:
        self._record("approve_join_request", applicant_id)

    async def decline_join_request(self, applicant_id: int) -> None:
        self._record("decline_join_request", applicant_id)

    async def ban_member(self, applicant_id: int) -> None:
        self._record("ban_member", applicant_id)

    async def get_member_status(self, applicant_id: int) -> str:
        self._record("get_member_status", applicant_id)
        return self.member_statuses.get(applicant_id, "left")

    async def send_message(self, target, text: str, reply_markup=None) -> MessageRef:
        chat_id = target if isinstance(target, int) else target.chat_id
        self._record("send_message", chat_id, text)
        return self._store_message(chat_id, text, reply_markup)

    async def send_media(self, target, media, caption: str, reply_markup=None) -> MessageRef:
        self._record("send_media", target.chat_id, media)
        return self._store_message(target.chat_id, caption, reply_markup, media)

    async def edit_message_text(self, ref: MessageRef, text: str, reply_markup=None) -> None:
        self._record("edit_message_text", ref, text)
        self.edits.append(Edit("text", ref, text, reply_markup))

    async def edit_message_caption(self, ref: MessageRef, caption: str, reply_markup=None) -> None:
        self._record("edit_message_caption", ref, caption)
        self.edits.append(Edit("caption", ref, caption, reply_markup))

    async def edit_message_reply_markup(self, ref: MessageRef, reply_markup=None) -> None:
        self._record("edit_message_reply_markup", ref)
        self.edits.append(Edit("markup", ref, None, reply_markup))

    async def answer_callback(self, callback_id: str, text: Optional[str] = None) -> None:
        self._record("answer_callback", callback_id)


@dataclass
class FakeJob:
    func: Any
    trigger: str
    kwargs: dict = field(default_factory=dict)


class FakeScheduler:
    """Records add_job/remove_job like an APScheduler scheduler."""

    def __init__(self) -> None:
        self.jobs: dict[str, FakeJob] = {}

    def add_job(self, func, trigger, id=None, replace_existing=False, **kwargs) -> FakeJob:
        job = FakeJob(func, trigger, kwargs)
        self.jobs[id] = job
        return job

    def remove_job(self, job_id: str) -> None:
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    async def fire(self, job_id: str) -> None:
        """Run a one-shot job the way the scheduler would at its run_date."""
        job = self.jobs.pop(job_id)
        await job.func(*job.kwargs.get("args", []))


def make_profile(applicant_id: int = 42, first_name: str = "Иван", **kwargs) -> ApplicantProfile:
    return ApplicantProfile(applicant_id=applicant_id, first_name=first_name, **kwargs)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'joinguard-test.db'}")
    await init_db(engine)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    finally:
        await close_db(engine)


@pytest.fixture
def store(session_factory) -> RequestStore:
    return RequestStore(session_factory)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def reporter(gateway) -> ErrorReporter:
    return ErrorReporter(gateway, MODERATOR_TARGET)


@pytest.fixture
def lifecycle(store, gateway, reporter) -> LifecycleManager:
    return LifecycleManager(store, gateway, reporter, MODERATOR_TARGET, lifetime_minutes=LIFETIME_MINUTES)
