import asyncio
from types import SimpleNamespace

import discord
import pytest

from CrystalStore.order_store import OrderStore

GUILD_ID = 900000000000000001
BUYER_ID = 111111111111111111
STAFF_ID = 222222222222222222
STRANGER_ID = 333333333333333333
SUPPORT_ROLE_ID = 444444444444444444


class FakeRole:
    def __init__(self, role_id: int):
        self.id = role_id


class FakeMember:
    def __init__(self, user_id: int, name: str = "user", *, roles=None, administrator: bool = False):
        self.id = user_id
        self.name = name
        self.bot = False
        self.roles = list(roles or [])
        self.mention = f"<@{user_id}>"
        self.guild_permissions = SimpleNamespace(administrator=administrator)
        self.dms: list[dict] = []

    def __str__(self) -> str:
        return self.name

    async def send(self, content=None, **kwargs):
        self.dms.append({"content": content, **kwargs})


class FakeChannel:
    def __init__(self, channel_id: int, name: str, *, topic: str = "", managers=()):
        self.id = channel_id
        self.name = name
        self.topic = topic
        self.type = discord.ChannelType.text
        self.mention = f"<#{channel_id}>"
        self.sent: list[dict] = []
        self.deleted = False
        self._managers = set(managers)

    async def send(self, content=None, **kwargs):
        self.sent.append({"content": content, **kwargs})

    async def delete(self, reason=None):
        self.deleted = True

    def permissions_for(self, member):
        return SimpleNamespace(manage_channels=getattr(member, "id", 0) in self._managers)


class FakeGuild:
    def __init__(self, guild_id: int = GUILD_ID):
        self.id = guild_id
        self.default_role = object()
        self.me = object()
        self.channels: list[FakeChannel] = []
        self.members: dict[int, FakeMember] = {}
        self.create_calls = 0
        self._next_channel_id = 500000000000000000

    async def fetch_channels(self):
        await asyncio.sleep(0)
        return list(self.channels)

    async def fetch_channel(self, channel_id):
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "unknown channel")

    def get_channel(self, channel_id):
        return None

    def get_role(self, role_id):
        return None

    def get_member(self, user_id):
        return self.members.get(int(user_id))

    async def create_text_channel(self, name, *, category=None, topic=None, overwrites=None, reason=None):
        self.create_calls += 1
        await asyncio.sleep(0)
        self._next_channel_id += 1
        ch = FakeChannel(self._next_channel_id, name, topic=topic or "")
        self.channels.append(ch)
        return ch


class FakeResponse:
    def __init__(self):
        self.messages: list[dict] = []
        self.deferred = False

    def is_done(self) -> bool:
        return self.deferred or bool(self.messages)

    async def send_message(self, content=None, **kwargs):
        self.messages.append({"content": content, **kwargs})

    async def defer(self, **kwargs):
        self.deferred = True


class FakeFollowup:
    def __init__(self):
        self.messages: list[dict] = []

    async def send(self, content=None, **kwargs):
        self.messages.append({"content": content, **kwargs})


class FakeBot:
    def __init__(self):
        self.channels: dict[int, FakeChannel] = {}
        self.users: dict[int, FakeMember] = {}

    def get_channel(self, channel_id):
        return self.channels.get(int(channel_id))

    async def fetch_channel(self, channel_id):
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "unknown channel")

    def get_user(self, user_id):
        return self.users.get(int(user_id))

    async def fetch_user(self, user_id):
        raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "unknown user")


def make_interaction(custom_id: str, *, user, guild=None, channel=None):
    return SimpleNamespace(
        type=discord.InteractionType.component,
        data={"custom_id": custom_id},
        user=user,
        guild=guild,
        channel=channel,
        response=FakeResponse(),
        followup=FakeFollowup(),
    )


def all_replies(interaction) -> list[dict]:
    return interaction.response.messages + interaction.followup.messages


@pytest.fixture
def store(tmp_path) -> OrderStore:
    return OrderStore(tmp_path / "data" / "orders.json")


@pytest.fixture
def guild() -> FakeGuild:
    return FakeGuild()


@pytest.fixture
def buyer() -> FakeMember:
    return FakeMember(BUYER_ID, "buyer#0001")


@pytest.fixture
def staff() -> FakeMember:
    return FakeMember(STAFF_ID, "staff#0001", roles=[FakeRole(SUPPORT_ROLE_ID)])


@pytest.fixture
def stranger() -> FakeMember:
    return FakeMember(STRANGER_ID, "stranger#0001")


@pytest.fixture
def ticket_channel() -> FakeChannel:
    return FakeChannel(600000000000000001, f"ticket-{BUYER_ID}")


@pytest.fixture
def fake_bot() -> FakeBot:
    return FakeBot()
