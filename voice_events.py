import discord
import logging
from discord.ext import commands # Cog を使用するためにインポート

from channel_registry import ChannelRegistry
from session_tracker import MembershipEvent, SessionTracker

# ロガーを取得
logger = logging.getLogger(__name__)


def build_membership_event(member, before, after):
    """
    on_voice_state_update の引数から MembershipEvent を作成します。
    ギルドやメンバーのIDが欠けているなど、処理できないイベントの場合は None を返します。
    """
    guild = getattr(member, "guild", None)
    guild_id = getattr(guild, "id", None)
    member_id = getattr(member, "id", None)
    channel_before = getattr(before, "channel", None)
    channel_after = getattr(after, "channel", None)

    if guild_id is None or member_id is None:
        logger.warning(f"Malformed voice state update: guild {guild_id}, member {member_id}. Ignoring.")
        return None
    if channel_before is None and channel_after is None:
        logger.warning(f"Malformed voice state update for member {member_id}: no channel before or after. Ignoring.")
        return None

    return MembershipEvent(
        guild_id=guild_id,
        channel_id_before=channel_before.id if channel_before is not None else None,
        channel_id_after=channel_after.id if channel_after is not None else None,
        subject_id=member_id,
    )


class VoiceEvents(commands.Cog):
    def __init__(self, bot, registry: ChannelRegistry, tracker: SessionTracker):
        self.bot = bot
        self.registry = registry
        self.tracker = tracker
        logger.info("VoiceEvents Cog initialized.")

    async def sync_channels(self, guild_id: int, channel_ids):
        """
        指定されたVCチャンネルの現在のメンバーを SessionTracker に反映します。
        キャッシュに存在しないチャンネルは読み飛ばします。
        """
        for channel_id in channel_ids:
            channel = self.bot.get_channel(channel_id)
            if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
                logger.debug(f"Voice channel {channel_id} ({guild_id}) not found in cache. Skipping roster sync.")
                continue
            await self.tracker.sync_channel(guild_id, channel_id, [m.id for m in channel.members])

    async def sync_monitored_channels(self):
        """起動時に、設定済みの全ギルドの対象VCのメンバーを反映します。"""
        for guild_id in self.registry.guild_ids():
            channel_set = self.registry.lookup(guild_id)
            if channel_set is not None:
                await self.sync_channels(guild_id, channel_set.channel_ids)
        logger.info("Synced rosters of monitored voice channels.")

    @commands.Cog.listener()
    async def on_voice_state_update(self, member, before, after):
        logger.debug(f"on_voice_state_update event occurred: Member {member.id}, Before: {before.channel}, After: {after.channel}")
        if before.channel == after.channel:
            # 同一チャンネル内での状態変化 (ミュート、デフなど) は対象外
            return

        event = build_membership_event(member, before, after)
        if event is None:
            return
        await self.tracker.handle_event(event)
