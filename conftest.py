import pytest

from quest_manager.collaborators import RecordingNotifier, StaticIdentity
from quest_manager.config import Settings
from quest_manager.context import QuestContext
from quest_manager.inventory import ItemDescriptor, MemoryInventory
from quest_manager.operations import QuestOperations
from quest_manager.storage import MemoryStorage
from quest_manager.sync import InMemoryChannel, SyncProtocol

GM = "gm"
PLAYER = "alice"
OTHER_PLAYER = "bob"


class ScriptedConfirm:
    """Answers confirmation prompts from a queue and records the questions."""

    def __init__(self, *answers: bool) -> None:
        self.answers = list(answers)
        self.asked: list[tuple[str, str]] = []

    async def confirm(self, title: str, message: str) -> bool:
        self.asked.append((title, message))
        return self.answers.pop(0) if self.answers else True


@pytest.fixture
def store() -> MemoryStorage:
    """One shared store; every context built from it acts as a client of the same world."""
    return MemoryStorage()


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


@pytest.fixture
def make_client(store, channel):
    """Connect a client for ``user_id``; returns (ops, notifier) sharing store and channel."""

    async def _make(user_id: str = GM, settings: Settings | None = None, **kwargs):
        ctx = QuestContext(store, StaticIdentity(user_id, [GM]), settings or Settings())
        ctx.load()
        notifier = kwargs.pop("notifier", RecordingNotifier())
        sync = SyncProtocol(ctx, channel, notifier=notifier)
        ops = QuestOperations(ctx, sync=sync, notifier=notifier, **kwargs)
        await sync.connect(delay=0)
        return ops, notifier

    return _make


@pytest.fixture
async def gm_ops(make_client):
    return await make_client(GM)


@pytest.fixture
def scripted_confirm():
    return ScriptedConfirm


@pytest.fixture
def inventory() -> MemoryInventory:
    return MemoryInventory([
        ItemDescriptor(ref="item-sword", name="Silver Sword", type="weapon"),
        ItemDescriptor(ref="item-potion", name="Healing Potion", type="consumable"),
    ])
