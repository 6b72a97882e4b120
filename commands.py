import discord
from discord import app_commands
from discord.ext import commands # Cog を使用するためにインポート
import datetime
import logging

from channel_registry import ChannelRegistry
from database import get_recent_call_sessions
import config
import formatters
import constants

# ロガーを取得
logger = logging.getLogger(__name__)

# --- コマンドを格納する Cog クラス ---
class BotCommands(commands.Cog):
    def __init__(self, bot, registry: ChannelRegistry, voice_events):
        self.bot = bot
        self.registry = registry
        self.voice_events = voice_events
        logger.info("BotCommands Cog initialized.")

    # 指定されたチャンネルの表示用文字列 (`#name`, `#name`) を作成する
    @staticmethod
    def _format_channel_names(channels):
        return ", ".join(f"`#{channel.name}`" for channel in channels)

    def _save_registry(self, guild_id: int, previous):
        """
        設定を保存する。保存に失敗した場合はギルドの設定を変更前の値に戻して False を返す
        """
        try:
            config.save_registry(self.registry)
            return True
        except OSError:
            self.registry.restore(guild_id, previous)
            return False

    # --- /setch コマンド ---
    # ログ転送先チャンネルと対象VCを追加設定するコマンドのコールバック関数
    @app_commands.command(name="setch", description="VC通話ログの転送先チャンネルと対象VCを追加設定します。")
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.describe(
        log_channel="ログを送信するテキストチャンネル",
        vc_channel1="ログを記録するVCチャンネル (必須)",
        vc_channel2="ログを記録するVCチャンネル (任意)",
        vc_channel3="ログを記録するVCチャンネル (任意)",
    )
    @app_commands.guild_only()
    async def setch_callback(self, interaction: discord.Interaction, log_channel: discord.TextChannel, vc_channel1: discord.VoiceChannel, vc_channel2: discord.VoiceChannel = None, vc_channel3: discord.VoiceChannel = None):
        guild_id = interaction.guild.id
        vc_channels = [ch for ch in (vc_channel1, vc_channel2, vc_channel3) if ch is not None]
        logger.info(f"Received /setch command from {interaction.user.id} in guild {guild_id}: log channel {log_channel.id}, voice channels {[ch.id for ch in vc_channels]}")

        previous = self.registry.lookup(guild_id)
        self.registry.add_channels(guild_id, log_channel.id, [ch.id for ch in vc_channels])
        if not self._save_registry(guild_id, previous):
            await interaction.response.send_message(constants.MESSAGE_SAVE_ERROR, ephemeral=True)
            return

        # 追加したVCに既にいるメンバーを反映
        await self.voice_events.sync_channels(guild_id, [ch.id for ch in vc_channels])

        await interaction.response.send_message(
            constants.MESSAGE_CHANNELS_SAVED.format(log_channel=log_channel.name, channels=self._format_channel_names(vc_channels)),
            ephemeral=True
        )
        logger.info("/setch command executed successfully.")

    # --- /delch コマンド ---
    # 登録されているVCチャンネルを削除するコマンドのコールバック関数
    @app_commands.command(name="delch", description="登録されているVCチャンネルを削除します。")
    @app_commands.default_permissions(manage_channels=True)
    @app_commands.describe(
        vc_channel1="削除するVCチャンネル (必須)",
        vc_channel2="削除するVCチャンネル (任意)",
        vc_channel3="削除するVCチャンネル (任意)",
    )
    @app_commands.guild_only()
    async def delch_callback(self, interaction: discord.Interaction, vc_channel1: discord.VoiceChannel, vc_channel2: discord.VoiceChannel = None, vc_channel3: discord.VoiceChannel = None):
        guild_id = interaction.guild.id
        vc_channels = [ch for ch in (vc_channel1, vc_channel2, vc_channel3) if ch is not None]
        logger.info(f"Received /delch command from {interaction.user.id} in guild {guild_id}: voice channels {[ch.id for ch in vc_channels]}")

        previous = self.registry.lookup(guild_id)
        if previous is None:
            await interaction.response.send_message(constants.MESSAGE_NO_SETTINGS, ephemeral=True)
            return

        self.registry.remove_channels(guild_id, [ch.id for ch in vc_channels])
        if not self._save_registry(guild_id, previous):
            await interaction.response.send_message(constants.MESSAGE_SAVE_ERROR, ephemeral=True)
            return

        await interaction.response.send_message(
            constants.MESSAGE_CHANNELS_DELETED.format(channels=self._format_channel_names(vc_channels)),
            ephemeral=True
        )
        logger.info("/delch command executed successfully.")

    # --- /showch コマンド ---
    @app_commands.command(name="showch", description="現在の通話ログ設定を表示します。")
    @app_commands.guild_only()
    async def showch_callback(self, interaction: discord.Interaction):
        guild_id = interaction.guild.id
        logger.info(f"Received /showch command from {interaction.user.id} in guild {guild_id}")
        channel_set = self.registry.lookup(guild_id)
        if channel_set is None:
            await interaction.response.send_message(constants.MESSAGE_NO_SETTINGS, ephemeral=True)
            return

        if channel_set.channel_ids:
            monitored = "\n".join(f"<#{channel_id}>" for channel_id in sorted(channel_set.channel_ids))
        else:
            monitored = constants.MESSAGE_NO_MONITORED_CHANNELS
        embed = discord.Embed(title=constants.EMBED_TITLE_CHANNEL_SETTINGS, color=constants.EMBED_COLOR_INFO)
        embed.add_field(name=constants.EMBED_FIELD_LOG_CHANNEL, value=f"<#{channel_set.log_target_id}>", inline=False)
        embed.add_field(name=constants.EMBED_FIELD_MONITORED_CHANNELS, value=monitored, inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    # --- /call_history コマンド ---
    # 最近終了した通話を表示するコマンドのコールバック関数
    @app_commands.command(name="call_history", description="最近の通話履歴を表示します")
    @app_commands.describe(count=f"表示する件数（省略時は{constants.CALL_HISTORY_DEFAULT_COUNT}件）")
    @app_commands.guild_only()
    async def call_history_callback(self, interaction: discord.Interaction, count: int = constants.CALL_HISTORY_DEFAULT_COUNT):
        guild_id = interaction.guild.id
        logger.info(f"Received /call_history command from {interaction.user.id} in guild {guild_id} with count: {count}")
        if count < 1 or count > constants.CALL_HISTORY_MAX_COUNT:
            await interaction.response.send_message(
                constants.MESSAGE_CALL_HISTORY_COUNT_ERROR.format(max_count=constants.CALL_HISTORY_MAX_COUNT),
                ephemeral=True
            )
            return

        # データベースエラーは database.py 内で処理され、空のリストが返されます。
        sessions = await get_recent_call_sessions(guild_id, count)
        if not sessions:
            await interaction.response.send_message(constants.MESSAGE_NO_CALL_HISTORY, ephemeral=True)
            return

        lines = []
        for session in sessions:
            start_time = datetime.datetime.fromisoformat(session[constants.COLUMN_START_TIME])
            lines.append(
                f"{discord.utils.format_dt(start_time, style='f')} <#{session[constants.COLUMN_CHANNEL_ID]}> "
                f"<@{session[constants.COLUMN_STARTED_BY]}> {formatters.format_duration(session[constants.COLUMN_DURATION])}"
            )
        embed = discord.Embed(title=constants.EMBED_TITLE_CALL_HISTORY, description="\n".join(lines), color=constants.EMBED_COLOR_INFO)
        await interaction.response.send_message(embed=embed, ephemeral=True)
        logger.info(f"/call_history command executed successfully for guild {guild_id}.")

    # --- /help コマンド ---
    @app_commands.command(name="help", description="コマンド一覧を表示します")
    @app_commands.guild_only()
    async def help_callback(self, interaction: discord.Interaction):
        logger.info(f"Received /help command from {interaction.user.id} in guild {interaction.guild.id}")
        embed = discord.Embed(title=constants.EMBED_TITLE_COMMAND_LIST, color=constants.EMBED_COLOR_INFO)
        embed.add_field(name="`/setch`", value="VC通話ログの転送先チャンネルと対象VCを追加設定します（チャンネル管理権限）", inline=False)
        embed.add_field(name="`/delch`", value="登録されているVCチャンネルを削除します（チャンネル管理権限）", inline=False)
        embed.add_field(name="`/showch`", value="現在の通話ログ設定を表示します", inline=False)
        embed.add_field(name="`/call_history`", value="最近の通話履歴を表示します", inline=False)
        embed.add_field(name="`/help`", value="このコマンド一覧を表示します", inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)
