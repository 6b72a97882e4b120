import asyncio
import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace

from channel_registry import ChannelRegistry, MonitoredChannelSet

# ロガーを取得
logger = logging.getLogger(__name__)


def utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class MembershipEvent:
    """一人のメンバーのVCチャンネル間の移動 (入室、退出、移動)"""
    guild_id: int
    channel_id_before: int | None
    channel_id_after: int | None
    subject_id: int


@dataclass(frozen=True)
class ActiveSession:
    channel_id: int
    started_at: datetime.datetime
    started_by: int


@dataclass(frozen=True)
class CallStarted:
    guild_id: int
    log_target_id: int
    channel_id: int
    started_by: int
    started_at: datetime.datetime


@dataclass(frozen=True)
class CallEnded:
    guild_id: int
    log_target_id: int
    channel_id: int
    duration: datetime.timedelta
    started_by: int
    started_at: datetime.datetime


@dataclass(frozen=True)
class TrackerState:
    """
    監視対象チャンネルごとの在室メンバーと進行中の通話セッション。
    members のキー: channel_id, 値: 在室メンバーIDの frozenset
    sessions のキー: channel_id, 値: ActiveSession
    """
    members: dict = field(default_factory=dict)
    sessions: dict = field(default_factory=dict)

    def member_count(self, channel_id: int) -> int:
        return len(self.members.get(channel_id, frozenset()))

    def is_active(self, channel_id: int) -> bool:
        return channel_id in self.sessions


def _leave(state: TrackerState, channel_set: MonitoredChannelSet, guild_id: int, channel_id: int, subject_id: int, now):
    members = dict(state.members)
    remaining = members.get(channel_id, frozenset()) - {subject_id}
    if remaining:
        members[channel_id] = remaining
    else:
        members.pop(channel_id, None)
    state = replace(state, members=members)

    if remaining:
        logger.debug(f"Member {subject_id} left channel {channel_id}. {len(remaining)} member(s) remain.")
        return state, []

    session = state.sessions.get(channel_id)
    if session is None:
        # 通話セッションが存在しない退出 (重複イベントや起動前からの在室者など) は無視する
        logger.debug(f"Channel {channel_id} is empty but has no active session. Ignoring stale leave of member {subject_id}.")
        return state, []

    sessions = dict(state.sessions)
    sessions.pop(channel_id)
    duration = max(now - session.started_at, datetime.timedelta(0))
    logger.info(f"Call ended in channel {channel_id} ({guild_id}). Duration: {duration}")
    ended = CallEnded(
        guild_id=guild_id,
        log_target_id=channel_set.log_target_id,
        channel_id=channel_id,
        duration=duration,
        started_by=session.started_by,
        started_at=session.started_at,
    )
    return replace(state, sessions=sessions), [ended]


def _join(state: TrackerState, channel_set: MonitoredChannelSet, guild_id: int, channel_id: int, subject_id: int, now):
    members = dict(state.members)
    present = members.get(channel_id, frozenset()) | {subject_id}
    members[channel_id] = present
    state = replace(state, members=members)

    if len(present) != 1 or state.is_active(channel_id):
        logger.debug(f"Member {subject_id} joined channel {channel_id}. {len(present)} member(s) present.")
        return state, []

    sessions = dict(state.sessions)
    sessions[channel_id] = ActiveSession(channel_id=channel_id, started_at=now, started_by=subject_id)
    logger.info(f"Call started in channel {channel_id} ({guild_id}) by member {subject_id}.")
    started = CallStarted(
        guild_id=guild_id,
        log_target_id=channel_set.log_target_id,
        channel_id=channel_id,
        started_by=subject_id,
        started_at=now,
    )
    return replace(state, sessions=sessions), [started]


def _prune(state: TrackerState, channel_set: MonitoredChannelSet) -> TrackerState:
    """監視対象から外れたチャンネルの在室メンバーと通話セッションを破棄する"""
    stale_members = [channel_id for channel_id in state.members if channel_id not in channel_set]
    stale_sessions = [channel_id for channel_id in state.sessions if channel_id not in channel_set]
    if not stale_members and not stale_sessions:
        return state
    for channel_id in stale_sessions:
        logger.info(f"Channel {channel_id} is no longer monitored. Discarding its active session without notification.")
    members = {k: v for k, v in state.members.items() if k in channel_set}
    sessions = {k: v for k, v in state.sessions.items() if k in channel_set}
    return replace(state, members=members, sessions=sessions)


def apply_event(state: TrackerState, event: MembershipEvent, channel_set: MonitoredChannelSet | None, now):
    """
    メンバーの移動イベントを状態に適用し、(新しい状態, 通知イベントのリスト) を返します。
    state は変更しません。

    - ギルドが未設定 (channel_set が None) の場合は何もしない
    - 監視対象チャンネルから退出して誰もいなくなった場合、セッションがあれば CallEnded
    - 監視対象チャンネルに入室して一人目になった場合、セッションがなければ CallStarted
    - 監視対象チャンネル間の移動は退出、入室の順に処理する
    """
    if channel_set is None:
        logger.debug(f"Guild {event.guild_id} is not configured. Ignoring event.")
        return state, []

    # 設定変更で監視対象から外れたチャンネルの状態は持ち越さない
    state = _prune(state, channel_set)

    before = event.channel_id_before
    after = event.channel_id_after
    if before == after:
        # 同一チャンネル内での状態変化 (ミュートなど) は対象外
        return state, []

    notifications = []
    if before in channel_set:
        state, emitted = _leave(state, channel_set, event.guild_id, before, event.subject_id, now)
        notifications.extend(emitted)
    if after in channel_set:
        state, emitted = _join(state, channel_set, event.guild_id, after, event.subject_id, now)
        notifications.extend(emitted)
    return state, notifications


def sync_channel(state: TrackerState, channel_id: int, member_ids) -> TrackerState:
    """
    チャンネルの在室メンバーを実際のメンバー一覧で置き換えます。
    通知は発生させません。誰もいないチャンネルに残っていた通話セッションは破棄します。
    """
    members = dict(state.members)
    sessions = state.sessions
    present = frozenset(member_ids)
    if present:
        members[channel_id] = present
    else:
        members.pop(channel_id, None)
        if channel_id in sessions:
            logger.info(f"Channel {channel_id} is empty after roster sync. Discarding its active session without notification.")
            sessions = {k: v for k, v in sessions.items() if k != channel_id}
    return replace(state, members=members, sessions=sessions)


class SessionTracker:
    """
    apply_event をギルド単位のロックで直列化し、通知イベントを送信キューに渡します。
    通知の送信自体は待たないため、送信の遅延や失敗がイベント処理を止めることはありません。
    """
    def __init__(self, registry: ChannelRegistry, outbox: asyncio.Queue, clock=utc_now):
        self.registry = registry
        self.outbox = outbox
        self.clock = clock
        # キー: guild_id, 値: TrackerState
        self._states = {}
        self._locks = defaultdict(asyncio.Lock)
        logger.info("SessionTracker initialized.")

    def _state(self, guild_id: int) -> TrackerState:
        return self._states.get(guild_id, TrackerState())

    async def handle_event(self, event: MembershipEvent):
        async with self._locks[event.guild_id]:
            channel_set = self.registry.lookup(event.guild_id)
            new_state, notifications = apply_event(self._state(event.guild_id), event, channel_set, self.clock())
            self._states[event.guild_id] = new_state
            for notification in notifications:
                self.outbox.put_nowait(notification)
        return notifications

    async def sync_channel(self, guild_id: int, channel_id: int, member_ids):
        async with self._locks[guild_id]:
            self._states[guild_id] = sync_channel(self._state(guild_id), channel_id, member_ids)
        logger.debug(f"Synced roster of channel {channel_id} ({guild_id}).")
